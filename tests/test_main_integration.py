"""
Integration tests for FeeUpdaterBot

Covers startup checks, event routing, the run/stop cycle against a scripted
block feed, and the command line entry point.
"""

import asyncio
import pytest
from unittest.mock import Mock, patch
from prometheus_client import REGISTRY

from fee_updater.main import FeeUpdaterBot, main, parse_args
from fee_updater.control_loop import ControlLoop
from fee_updater.lifecycle_manager import TransactionLifecycleManager
from fee_updater.config import ENV_OVERRIDES
from fee_updater.types import (
    BlockNotification, TxStatus, UpdateEvent, UpdateEventType,
    ConfigurationError, RPCError
)


OWNER_KEY = '0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80'


class ScriptedFeed:
    """Block feed replaying a fixed list of notifications"""

    def __init__(self, notifications, error=None):
        self.notifications = list(notifications)
        self.error = error
        self.started = False
        self.stopped = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for notification in self.notifications:
            yield notification
        if self.error is not None:
            raise self.error


def create_mock_web3(chain_id=1, code=b'\x60\x80', connected=True):
    w3 = Mock()
    w3.is_connected.return_value = connected
    w3.eth.chain_id = chain_id
    w3.eth.block_number = 100
    w3.eth.get_code.return_value = code
    return w3


def wire_bot(bot, chain_client, feed, thresholds):
    bot.manager = TransactionLifecycleManager(
        chain_client=chain_client,
        max_wait_blocks=3,
        max_retries=3,
        on_event=bot._handle_event
    )
    bot.control_loop = ControlLoop(
        chain_client=chain_client,
        manager=bot.manager,
        thresholds=thresholds,
        on_event=bot._handle_event
    )
    bot.block_feed = feed


def event_count(event_type):
    value = REGISTRY.get_sample_value('fee_updater_events_total', {'event_type': event_type.value})
    return value or 0.0


# ============================================================================
# Initialization
# ============================================================================

class TestInitialize:

    @pytest.mark.asyncio
    async def test_initialize_builds_modules(self, updater_config, monkeypatch):
        monkeypatch.setenv('OWNER_PRIVATE_KEY', OWNER_KEY)
        bot = FeeUpdaterBot(updater_config, dry_run=True)

        with patch('fee_updater.main.Web3') as web3_cls:
            web3_cls.return_value = create_mock_web3()
            await bot.initialize()

        assert bot.manager.is_idle
        assert bot.manager.max_retries == 3
        assert bot.control_loop.dry_run is True
        assert bot.block_feed.primary_ws_url == 'ws://localhost:8546'
        assert bot.metrics_server is None

    @pytest.mark.asyncio
    async def test_missing_owner_key(self, updater_config, monkeypatch):
        monkeypatch.delenv('OWNER_PRIVATE_KEY', raising=False)
        bot = FeeUpdaterBot(updater_config)

        with patch('fee_updater.main.Web3') as web3_cls:
            web3_cls.return_value = create_mock_web3()
            with pytest.raises(ConfigurationError, match="OWNER_PRIVATE_KEY"):
                await bot.initialize()

    @pytest.mark.asyncio
    async def test_chain_id_mismatch(self, updater_config, monkeypatch):
        monkeypatch.setenv('OWNER_PRIVATE_KEY', OWNER_KEY)
        bot = FeeUpdaterBot(updater_config)

        with patch('fee_updater.main.Web3') as web3_cls:
            web3_cls.return_value = create_mock_web3(chain_id=8453)
            with pytest.raises(ConfigurationError, match="8453"):
                await bot.initialize()

    @pytest.mark.asyncio
    async def test_contract_without_code(self, updater_config, monkeypatch):
        monkeypatch.setenv('OWNER_PRIVATE_KEY', OWNER_KEY)
        bot = FeeUpdaterBot(updater_config)

        with patch('fee_updater.main.Web3') as web3_cls:
            web3_cls.return_value = create_mock_web3(code=b'')
            with pytest.raises(ConfigurationError, match="not found"):
                await bot.initialize()

    @pytest.mark.asyncio
    async def test_unreachable_rpc(self, updater_config):
        bot = FeeUpdaterBot(updater_config)

        with patch('fee_updater.main.Web3') as web3_cls:
            web3_cls.return_value = create_mock_web3(connected=False)
            with pytest.raises(RPCError):
                await bot.initialize()


# ============================================================================
# Running
# ============================================================================

class TestRunCycle:

    @pytest.mark.asyncio
    async def test_feed_drives_update_to_confirmation(self, updater_config, mock_chain_client, thresholds):
        mock_chain_client.read_contract_price.return_value = 1000
        mock_chain_client.get_tx_status.return_value = TxStatus.CONFIRMED
        feed = ScriptedFeed([
            BlockNotification(block_number=10, network_gas_price=1300),
            BlockNotification(block_number=11, network_gas_price=1300),
        ])
        bot = FeeUpdaterBot(updater_config)
        bot.audit_logger = Mock()
        wire_bot(bot, mock_chain_client, feed, thresholds)
        confirmed_before = event_count(UpdateEventType.UPDATE_CONFIRMED)

        await asyncio.wait_for(bot.start(), timeout=5)

        assert feed.started and feed.stopped
        mock_chain_client.submit_update.assert_called_once_with(1560)
        assert bot.manager.is_idle
        assert event_count(UpdateEventType.UPDATE_CONFIRMED) == confirmed_before + 1
        logged = [c.args[0] for c in bot.audit_logger.info.call_args_list]
        assert logged == ["DecisionMade", "UpdateSubmitted", "UpdateConfirmed"]
        assert bot._stop_task is not None

    @pytest.mark.asyncio
    async def test_feed_failure_stops_bot(self, updater_config, mock_chain_client, thresholds):
        feed = ScriptedFeed(
            [BlockNotification(block_number=10, network_gas_price=100)],
            error=RPCError("All WebSocket providers failed")
        )
        bot = FeeUpdaterBot(updater_config)
        wire_bot(bot, mock_chain_client, feed, thresholds)

        with pytest.raises(RPCError):
            await asyncio.wait_for(bot.start(), timeout=5)

        assert feed.stopped

    @pytest.mark.asyncio
    async def test_stop_before_start_is_noop(self, updater_config):
        bot = FeeUpdaterBot(updater_config)

        await bot.stop()

        assert not bot._shutdown_event.is_set()

    @pytest.mark.asyncio
    async def test_request_stop_schedules_one_stop(self, updater_config):
        bot = FeeUpdaterBot(updater_config)
        bot._running = True

        first = bot.request_stop()
        second = bot.request_stop()
        await first

        assert first is second
        assert bot._shutdown_event.is_set()
        assert not bot._running


# ============================================================================
# Event routing
# ============================================================================

def test_handle_event_logs_and_counts(updater_config):
    bot = FeeUpdaterBot(updater_config)
    bot.audit_logger = Mock()
    before = event_count(UpdateEventType.UPDATE_FAILED_PERMANENTLY)

    bot._handle_event(UpdateEvent(
        event_type=UpdateEventType.UPDATE_FAILED_PERMANENTLY,
        block_number=42,
        target_price=1560,
        attempt_count=3,
        reason="transaction failed"
    ))

    bot.audit_logger.error.assert_called_once()
    context = bot.audit_logger.error.call_args.kwargs['context']
    assert context['block_number'] == 42
    assert context['reason'] == "transaction failed"
    assert event_count(UpdateEventType.UPDATE_FAILED_PERMANENTLY) == before + 1


# ============================================================================
# Command line
# ============================================================================

def test_parse_args():
    args = parse_args(['--config', 'custom.yaml', '--dry-run', '--log-level', 'DEBUG'])

    assert str(args.config) == 'custom.yaml'
    assert args.dry_run is True
    assert args.log_level == 'DEBUG'


def test_parse_args_defaults():
    args = parse_args([])

    assert args.config is None
    assert args.dry_run is False
    assert args.log_level is None


@pytest.mark.asyncio
async def test_main_reports_configuration_error(tmp_path, monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)

    assert await main(['--config', str(tmp_path / 'absent.yaml')]) == 2
