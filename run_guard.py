#!/usr/bin/env python3
"""
Endpoint Guard Entry Point

Runs the CLI from a source checkout or a frozen executable:

    python run_guard.py scan quick
    endpoint-guard.exe watch

It handles the import path setup required for PyInstaller builds.
"""

import os
import sys


def setup_path():
    """Setup Python path for standalone execution."""
    if getattr(sys, 'frozen', False):
        base_path = sys._MEIPASS
    else:
        base_path = os.path.dirname(os.path.abspath(__file__))

    if base_path not in sys.path:
        sys.path.insert(0, base_path)


def main():
    """Main entry point."""
    setup_path()

    try:
        from endpoint_guard.cli import main as cli_main
    except ImportError as e:
        print(f"Failed to import endpoint_guard: {e}")
        sys.exit(1)

    sys.exit(cli_main())


if __name__ == '__main__':
    main()
