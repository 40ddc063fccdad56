"""
Shared fixtures for the Endpoint Guard test suite.
"""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.config import GuardConfig
from endpoint_guard.constants import EICAR_TEST_STRING
from endpoint_guard.events import EventBus
from endpoint_guard.quarantine import QuarantineCipher, QuarantineVault
from endpoint_guard.scanner import HeuristicScorer, ScanOrchestrator, SignatureStore
from endpoint_guard.storage import HistoryStore


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests spanning several components")
    config.addinivalue_line("markers", "security: permission and tamper-resistance tests")


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    return tmp_path


@pytest.fixture
def guard_config(temp_dir) -> GuardConfig:
    for name in ('quick', 'full', 'watched', 'fallback'):
        (temp_dir / name).mkdir(exist_ok=True)
    return GuardConfig.from_dict({
        'paths': {'data_dir': str(temp_dir / 'data')},
        'scan_paths': {
            'quick': [str(temp_dir / 'quick')],
            'full': [str(temp_dir / 'full')],
        },
        'exclusions': {
            'paths': [],
            'extensions': ['.log'],
            'max_file_size': 1024 * 1024,
        },
        'quarantine': {
            'encryption_key': 'unit-test-quarantine-key',
            'restore_fallback_dir': str(temp_dir / 'fallback'),
        },
        'realtime': {
            'watch_paths': [str(temp_dir / 'watched')],
            'settle_delay': 0,
        },
        'logging': {'console': False},
    })


@pytest.fixture
def history():
    store = HistoryStore(':memory:')
    yield store
    store.close()


@pytest.fixture
def signature_store(history) -> SignatureStore:
    store = SignatureStore(history, pattern_extensions=['.ps1', '.bat', '.exe'])
    store.load()
    return store


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def orchestrator(guard_config, signature_store, history, event_bus) -> ScanOrchestrator:
    return ScanOrchestrator(
        guard_config,
        signature_store,
        HeuristicScorer(guard_config.detection.heuristic_sensitivity),
        history,
        event_bus,
    )


@pytest.fixture
def vault(temp_dir) -> QuarantineVault:
    fallback = temp_dir / 'fallback'
    fallback.mkdir(exist_ok=True)
    return QuarantineVault(
        str(temp_dir / 'vault'),
        QuarantineCipher('unit-test-quarantine-key'),
        restore_fallback_dir=str(fallback),
    )


@pytest.fixture
def eicar_file(temp_dir) -> Path:
    path = temp_dir / 'quick' / 'harmless-name.dat'
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(EICAR_TEST_STRING)
    return path
