"""
Main Updater Orchestrator

Entry point for the gas price updater.
Wires configuration, chain access, the block feed and the control loop, and
manages startup and graceful shutdown.
"""

import asyncio
import os
import sys
import signal
import time
import argparse
from pathlib import Path
from typing import Optional
from web3 import Web3

from . import __version__
from .logging_config import init_logging, get_logger, log_update_event, AUDIT_LOGGER_NAME
from .config import FeeUpdaterConfig, init_config
from .database import RedisManager, PendingUpdateStore
from .chain_client import Web3ChainClient
from .block_feed import WebSocketBlockFeed
from .lifecycle_manager import TransactionLifecycleManager
from .control_loop import ControlLoop
from .metrics_server import MetricsServer
from .types import UpdateEvent, FeeUpdaterError, ConfigurationError, RPCError


class FeeUpdaterBot:
    """
    Main updater orchestrator.

    Responsibilities:
    - Initialize all modules from configuration
    - Run the block feed and control loop
    - Route lifecycle events to the audit log and metrics
    - Shut down gracefully
    """

    def __init__(self, config: FeeUpdaterConfig, dry_run: bool = False):
        self.logger = get_logger("fee_updater")
        self.audit_logger = get_logger(AUDIT_LOGGER_NAME)
        self.config = config
        self.dry_run = dry_run
        self.web3: Optional[Web3] = None

        # Modules
        self.chain_client: Optional[Web3ChainClient] = None
        self.manager: Optional[TransactionLifecycleManager] = None
        self.control_loop: Optional[ControlLoop] = None
        self.block_feed: Optional[WebSocketBlockFeed] = None
        self.metrics_server: Optional[MetricsServer] = None

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._loop_error: Optional[BaseException] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._start_time = time.time()

    async def initialize(self):
        """Connect to the chain, verify the contract and owner key, build modules"""
        try:
            self.logger.info(
                "Initializing fee updater...",
                extra={
                    "network": self.config.network_name,
                    "contract": self.config.contract.address,
                    "dry_run": self.dry_run
                }
            )

            # Step 1: RPC provider
            self.web3 = Web3(Web3.HTTPProvider(self.config.rpc.http_url))
            if not self.web3.is_connected():
                raise RPCError(f"RPC provider not reachable: {self.config.rpc.http_url}")

            chain_id = self.web3.eth.chain_id
            if self.config.chain_id is not None and chain_id != self.config.chain_id:
                raise ConfigurationError(
                    f"Connected to chain {chain_id}, configured chain_id is {self.config.chain_id}"
                )
            self.logger.info(
                "RPC provider connected",
                extra={"chain_id": chain_id, "current_block": self.web3.eth.block_number}
            )

            # Step 2: Verify the gas price contract exists
            contract_address = Web3.to_checksum_address(self.config.contract.address)
            code = self.web3.eth.get_code(contract_address)
            if code == b'' or code == '0x':
                raise ConfigurationError(f"Gas price contract not found at {contract_address}")

            # Step 3: Owner key from environment only
            owner_key = os.getenv('OWNER_PRIVATE_KEY')
            if not owner_key:
                raise ConfigurationError("OWNER_PRIVATE_KEY not set")

            self.chain_client = Web3ChainClient(
                w3=self.web3,
                contract_config=self.config.contract,
                owner_private_key=owner_key,
                chain_id=chain_id
            )

            # Step 4: Optional pending update persistence
            store = None
            if self.config.redis is not None:
                redis_manager = RedisManager(self.config.redis)
                store = PendingUpdateStore(redis_manager, self.config.contract.address)
                self.logger.info(
                    "Pending update store ready",
                    extra={"redis": "fallback" if redis_manager.using_fallback else "connected"}
                )

            # Step 5: Core modules
            self.manager = TransactionLifecycleManager(
                chain_client=self.chain_client,
                max_wait_blocks=self.config.lifecycle.max_wait_blocks,
                max_retries=self.config.lifecycle.max_retries,
                store=store,
                on_event=self._handle_event
            )
            restored = self.manager.restore()
            if restored is not None:
                self.logger.warning(
                    "Resuming pending update from previous run",
                    extra={"tx_hash": restored.tx_handle, "target_price": restored.target_price}
                )

            self.control_loop = ControlLoop(
                chain_client=self.chain_client,
                manager=self.manager,
                thresholds=self.config.thresholds,
                on_event=self._handle_event,
                dry_run=self.dry_run
            )

            self.block_feed = WebSocketBlockFeed(
                primary_ws_url=self.config.rpc.ws_url,
                backup_ws_url=self.config.rpc.backup_ws_url
            )

            if self.config.monitoring.metrics_enabled:
                self.metrics_server = MetricsServer(port=self.config.monitoring.metrics_port)

            self.logger.info("Fee updater initialization complete", extra={"status": "ready"})

        except Exception as e:
            self.logger.critical(f"Initialization failed: {e}", exc_info=True)
            raise

    async def start(self):
        """Start the updater and wait for shutdown"""
        try:
            self._running = True

            if self.metrics_server:
                await self.metrics_server.start()
                MetricsServer.set_updater_info(
                    network=self.config.network_name,
                    contract=self.config.contract.address,
                    version=__version__
                )
                MetricsServer.set_start_time(self._start_time)
                MetricsServer.record_engine_state(self.manager.state)

            await self.block_feed.start()

            self._loop_task = asyncio.create_task(self.control_loop.run(self.block_feed))
            self._loop_task.add_done_callback(self._on_loop_done)

            self.logger.info("Fee updater started")

            await self._shutdown_event.wait()

            if self._loop_error is not None:
                raise self._loop_error

        except Exception as e:
            self.logger.critical(f"Updater startup failed: {e}", exc_info=True)
            raise

    async def stop(self):
        """Stop the updater gracefully"""
        if not self._running:
            return
        self.logger.info("Stopping fee updater...")
        self._running = False

        if self.block_feed:
            await self.block_feed.stop()

        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

        if self.metrics_server:
            await self.metrics_server.stop()

        self._shutdown_event.set()
        self.logger.info("Fee updater stopped")

    def request_stop(self) -> asyncio.Task:
        """Schedule stop() from a callback; repeated requests share one task"""
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self.stop())
        return self._stop_task

    def _on_loop_done(self, task: asyncio.Task):
        """Control loop exits only on shutdown or when every provider failed"""
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._loop_error = error
            self.logger.critical(f"Control loop terminated: {error}")
        if self._running:
            self.request_stop()

    def _handle_event(self, event: UpdateEvent):
        """Route a lifecycle event to the audit trail and metrics"""
        log_update_event(self.audit_logger, event)
        MetricsServer.record_event(event)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Gas price contract updater')
    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='Path to config.yaml (default: $FEE_UPDATER_CONFIG or ./config.yaml)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Evaluate and log decisions, but do not submit transactions'
    )
    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override the configured log level'
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """
    Main entry point for the updater.

    Loads configuration, initializes logging and runs until SIGINT/SIGTERM.
    """
    args = parse_args(argv)

    # Load configuration first (before logging)
    try:
        config = init_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    init_logging(
        log_dir=Path(config.monitoring.log_dir),
        log_level=args.log_level or config.monitoring.log_level
    )

    logger = get_logger("main")
    logger.info(
        "fee_updater_starting",
        extra={
            "network": config.network_name,
            "contract": config.contract.address,
            "dry_run": args.dry_run,
            "version": __version__
        }
    )

    if args.dry_run:
        logger.warning("=" * 80)
        logger.warning("DRY-RUN MODE ENABLED")
        logger.warning("Decisions will be evaluated and logged, but NO transactions will be submitted")
        logger.warning("=" * 80)

    bot = FeeUpdaterBot(config, dry_run=args.dry_run)

    # Setup signal handlers for graceful shutdown
    def signal_handler(sig: signal.Signals):
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        bot.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        await bot.initialize()
        await bot.start()

    except FeeUpdaterError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await bot.stop()
        return 1

    logger.info("Fee updater shutdown complete")
    return 0


def run():
    """Console script entry point"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
