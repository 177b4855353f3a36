"""
Pytest configuration and shared fixtures for the fee updater

This module provides shared fixtures for:
- Threshold and full updater configuration
- Mock chain clients
- Event capture
"""

import os
import itertools
import pytest
from typing import List
from unittest.mock import Mock

from fee_updater.config import (
    FeeUpdaterConfig, RPCConfig, ContractConfig, ThresholdConfig,
    LifecycleConfig, MonitoringConfig
)
from fee_updater.types import UpdateEvent, UpdateEventType, TxStatus


CONTRACT_ADDRESS = '0x1234567890123456789012345678901234567890'
OWNER_ADDRESS = '0x2234567890123456789012345678901234567890'


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: fast tests with no I/O")
    config.addinivalue_line("markers", "integration: tests wiring several modules together")
    config.addinivalue_line("markers", "decision_engine: decision engine tests")
    config.addinivalue_line("markers", "lifecycle: lifecycle manager tests")
    config.addinivalue_line("markers", "control_loop: control loop tests")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file location"""
    for item in items:
        if "test_decision_engine" in item.nodeid:
            item.add_marker(pytest.mark.decision_engine)
        elif "test_lifecycle_manager" in item.nodeid:
            item.add_marker(pytest.mark.lifecycle)
        elif "test_control_loop" in item.nodeid:
            item.add_marker(pytest.mark.control_loop)

        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def thresholds():
    """120% / 80% band, 120% buffers"""
    return ThresholdConfig(
        upward_threshold_pct=120,
        downward_threshold_pct=80,
        upward_buffer_pct=120,
        downward_buffer_pct=120
    )


@pytest.fixture
def updater_config(thresholds):
    """Complete updater configuration without Redis"""
    return FeeUpdaterConfig(
        chain_id=1,
        network_name='testnet',
        rpc=RPCConfig(
            http_url='http://localhost:8545',
            ws_url='ws://localhost:8546'
        ),
        contract=ContractConfig(
            address=CONTRACT_ADDRESS,
            owner_address=OWNER_ADDRESS
        ),
        thresholds=thresholds,
        lifecycle=LifecycleConfig(max_wait_blocks=3, max_retries=3),
        monitoring=MonitoringConfig(metrics_enabled=False)
    )


# ============================================================================
# Chain Client Fixtures
# ============================================================================

@pytest.fixture
def mock_chain_client():
    """
    Chain client mock.

    submit_update returns a fresh hash per call, get_tx_status reports
    PENDING and the contract holds 100 until a test overrides it.
    """
    client = Mock()
    counter = itertools.count(1)
    client.submit_update = Mock(side_effect=lambda price: f"0x{next(counter):064x}")
    client.get_tx_status = Mock(return_value=TxStatus.PENDING)
    client.read_contract_price = Mock(return_value=100)
    client.read_network_gas_price = Mock(return_value=100)
    client.current_block_number = Mock(return_value=0)
    return client


# ============================================================================
# Event Fixtures
# ============================================================================

class EventRecorder:
    """Collects emitted update events"""

    def __init__(self):
        self.events: List[UpdateEvent] = []

    def __call__(self, event: UpdateEvent):
        self.events.append(event)

    def types(self) -> List[UpdateEventType]:
        return [e.event_type for e in self.events]

    def of_type(self, event_type: UpdateEventType) -> List[UpdateEvent]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def event_recorder():
    return EventRecorder()


# ============================================================================
# Utility Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test"""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
