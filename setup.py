#!/usr/bin/env python3
"""Setup script for Endpoint Guard"""

from setuptools import setup, find_packages

setup(
    name="endpoint-guard",
    version="0.1.0",
    author="Agent OS Team",
    description="Endpoint protection engine: signature and heuristic scanning, encrypted quarantine, realtime watching",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["endpoint_guard", "endpoint_guard.*"]),
    py_modules=["run_guard"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Topic :: Security",
        "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "psutil>=5.9.0",
        "cryptography>=41.0.0",
        "watchdog>=3.0.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'endpoint-guard=endpoint_guard.cli:main',
        ],
    },
)
