"""
ControlLoop Module - Per-block driver binding feed, decision engine and lifecycle

For every new block:
1. Drop duplicate or out-of-order notifications
2. Read contract price and resolve network price into a GasSnapshot
3. IDLE: decide and hand any update to the lifecycle manager
   AWAITING_CONFIRMATION: reconcile the pending update only

Blocks are processed strictly one at a time; a failure in one block is logged
and never stops the loop.
"""

import logging
from typing import Optional, Callable

from .types import (
    BlockNotification, Decision, GasSnapshot,
    UpdateEvent, UpdateEventType, ReadError
)
from .config import ThresholdConfig
from .decision_engine import decide_snapshot
from .lifecycle_manager import TransactionLifecycleManager
from .metrics_server import MetricsServer

logger = logging.getLogger(__name__)

EventHandler = Callable[[UpdateEvent], None]


class ControlLoop:
    """
    Block-driven control loop.

    In dry-run mode decisions are made and reported as DecisionMade events,
    but nothing is handed to the lifecycle manager.
    """

    def __init__(
        self,
        chain_client,
        manager: TransactionLifecycleManager,
        thresholds: ThresholdConfig,
        on_event: Optional[EventHandler] = None,
        dry_run: bool = False
    ):
        self.chain_client = chain_client
        self.manager = manager
        self.thresholds = thresholds
        self.on_event = on_event
        self.dry_run = dry_run

        self._last_processed_block: Optional[int] = None
        self._blocks_processed = 0
        self._read_errors = 0

    @property
    def last_processed_block(self) -> Optional[int]:
        return self._last_processed_block

    @property
    def blocks_processed(self) -> int:
        return self._blocks_processed

    @property
    def read_errors(self) -> int:
        return self._read_errors

    async def run(self, feed):
        """Consume block notifications until the feed is exhausted"""
        logger.info("Control loop started")
        async for notification in feed:
            try:
                await self.process_block(notification)
            except Exception as e:
                # One bad block must not stop the updater
                logger.error(
                    f"Unhandled error processing block {notification.block_number}: {e}",
                    exc_info=True
                )
        logger.info("Control loop stopped")

    async def process_block(self, notification: BlockNotification) -> Optional[Decision]:
        """
        Process a single block notification.

        Returns:
            The decision made for this block, or None when the block was
            skipped, failed to read, or only drove reconciliation
        """
        block_number = notification.block_number

        if self._last_processed_block is not None and block_number <= self._last_processed_block:
            logger.debug(
                f"Ignoring block {block_number}: already processed up to {self._last_processed_block}"
            )
            MetricsServer.increment_blocks_skipped()
            return None

        if self._last_processed_block is not None and block_number > self._last_processed_block + 1:
            logger.info(f"Block gap: {self._last_processed_block} -> {block_number}")

        self._last_processed_block = block_number
        self._blocks_processed += 1
        MetricsServer.increment_blocks_processed()

        try:
            snapshot = self._take_snapshot(notification)
        except ReadError as e:
            self._read_errors += 1
            MetricsServer.increment_read_errors()
            logger.warning(f"Skipping decision for block {block_number}: {e}")
            # Pending status does not depend on the prices that failed to read
            if not self.manager.is_idle:
                self._reconcile(block_number)
            return None

        MetricsServer.record_block(block_number, snapshot.network_price, snapshot.contract_price)

        if not self.manager.is_idle:
            self._reconcile(block_number, snapshot)
            return None

        decision = decide_snapshot(snapshot, self.thresholds)
        logger.debug(
            f"Block {block_number}: network={snapshot.network_price} "
            f"contract={snapshot.contract_price} -> {decision}"
        )

        if not decision.requires_update:
            return decision

        self._emit(UpdateEvent(
            event_type=UpdateEventType.DECISION_MADE,
            block_number=block_number,
            target_price=decision.target_price,
            network_price=snapshot.network_price,
            contract_price=snapshot.contract_price,
            reason=str(decision)
        ))

        if self.dry_run:
            logger.info(f"[DRY-RUN] {decision} at block {block_number} not submitted")
            return decision

        self.manager.submit(decision, block_number, snapshot)
        MetricsServer.record_engine_state(self.manager.state)
        return decision

    def _take_snapshot(self, notification: BlockNotification) -> GasSnapshot:
        contract_price = self.chain_client.read_contract_price()

        network_price = notification.network_gas_price
        if network_price is None:
            network_price = self.chain_client.read_network_gas_price(notification.block_number)

        return GasSnapshot(
            network_price=network_price,
            contract_price=contract_price,
            observed_at_block=notification.block_number
        )

    def _reconcile(self, block_number: int, snapshot: Optional[GasSnapshot] = None):
        state = self.manager.reconcile(block_number, snapshot)
        MetricsServer.record_engine_state(state)

    def _emit(self, event: UpdateEvent):
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Event handler failed for {event.event_type.value}: {e}", exc_info=True)
