"""
Prometheus Metrics Server

Exposes updater metrics via HTTP endpoint for Prometheus scraping.
"""

from typing import Optional
from aiohttp import web
from prometheus_client import (
    Counter, Gauge, Info,
    generate_latest, CONTENT_TYPE_LATEST
)

from .logging_config import get_logger
from .types import UpdateEvent, EngineState


# Update lifecycle events, labelled by event type
update_events_counter = Counter(
    'fee_updater_events_total',
    'Gas price update lifecycle events',
    ['event_type']
)

read_errors_counter = Counter(
    'fee_updater_read_errors_total',
    'Chain read failures while processing blocks'
)

blocks_processed_counter = Counter(
    'fee_updater_blocks_processed_total',
    'Block notifications processed by the control loop'
)

blocks_skipped_counter = Counter(
    'fee_updater_blocks_skipped_total',
    'Duplicate or out-of-order block notifications ignored'
)

# Prices
network_gas_price_gauge = Gauge(
    'fee_updater_network_gas_price',
    'Network gas price of the last processed block'
)

contract_gas_price_gauge = Gauge(
    'fee_updater_contract_gas_price',
    'Gas price stored in the contract at the last processed block'
)

# Lifecycle
engine_state_gauge = Gauge(
    'fee_updater_engine_state',
    'Lifecycle state (0=IDLE, 1=AWAITING_CONFIRMATION)'
)

pending_attempt_gauge = Gauge(
    'fee_updater_pending_attempt_count',
    'Attempt count of the pending update (0 when idle)'
)

current_block_gauge = Gauge(
    'fee_updater_current_block',
    'Last processed block number'
)

updater_info = Info(
    'fee_updater',
    'Information about the fee updater'
)

start_time_gauge = Gauge(
    'fee_updater_start_time_seconds',
    'Unix timestamp when the updater started'
)


class MetricsServer:
    """
    HTTP server that exposes Prometheus metrics.

    Serves metrics at /metrics and a liveness check at /health.
    """

    def __init__(self, port: int = 8000):
        self.port = port
        self.logger = get_logger("metrics_server")
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._running = False

    async def start(self):
        """Start the metrics HTTP server"""
        try:
            self.logger.info(f"Starting metrics server on port {self.port}...")

            self.app = web.Application()
            self.app.router.add_get('/metrics', self.handle_metrics)
            self.app.router.add_get('/health', self.handle_health)

            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, '0.0.0.0', self.port)
            await self.site.start()

            self._running = True
            self.logger.info(f"Metrics server started on http://0.0.0.0:{self.port}/metrics")

        except Exception as e:
            self.logger.error(f"Failed to start metrics server: {e}", exc_info=True)
            raise

    async def stop(self):
        """Stop the metrics HTTP server"""
        try:
            self.logger.info("Stopping metrics server...")
            self._running = False

            if self.site:
                await self.site.stop()

            if self.runner:
                await self.runner.cleanup()

            self.logger.info("Metrics server stopped")

        except Exception as e:
            self.logger.error(f"Error stopping metrics server: {e}", exc_info=True)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Handle /metrics endpoint - return Prometheus metrics"""
        # CONTENT_TYPE_LATEST carries a charset, which aiohttp wants separately
        return web.Response(
            body=generate_latest(),
            headers={'Content-Type': CONTENT_TYPE_LATEST}
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle /health endpoint - simple health check"""
        return web.Response(text="OK", status=200)

    @staticmethod
    def record_event(event: UpdateEvent):
        """Count a lifecycle event"""
        update_events_counter.labels(event_type=event.event_type.value).inc()

    @staticmethod
    def record_block(block_number: int, network_price: Optional[int], contract_price: Optional[int]):
        """Update per-block gauges"""
        current_block_gauge.set(block_number)
        if network_price is not None:
            network_gas_price_gauge.set(network_price)
        if contract_price is not None:
            contract_gas_price_gauge.set(contract_price)

    @staticmethod
    def record_engine_state(state: EngineState):
        """Update lifecycle gauges"""
        engine_state_gauge.set(0 if state.is_idle else 1)
        pending_attempt_gauge.set(state.pending.attempt_count if state.pending else 0)

    @staticmethod
    def increment_blocks_processed():
        blocks_processed_counter.inc()

    @staticmethod
    def increment_read_errors():
        read_errors_counter.inc()

    @staticmethod
    def increment_blocks_skipped():
        blocks_skipped_counter.inc()

    @staticmethod
    def set_updater_info(network: str, contract: str, version: str):
        """Set updater information"""
        updater_info.info({
            'network': network,
            'contract': contract,
            'version': version
        })

    @staticmethod
    def set_start_time(timestamp: float):
        """Set updater start time"""
        start_time_gauge.set(timestamp)

