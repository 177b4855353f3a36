"""
TransactionLifecycleManager Module - Single in-flight update state machine

Owns the only pending gas price update, if any. Two states:
- IDLE: a non-NoAction decision may be submitted
- AWAITING_CONFIRMATION: the pending update is reconciled against chain
  status once per block; no other submission is possible

Submission is gated here rather than by the caller, so no sequence of calls
can produce a second concurrent update.
"""

import logging
from typing import Optional, Callable

from .types import (
    Decision, EngineState, GasSnapshot, PendingUpdate, TxStatus,
    UpdateEvent, UpdateEventType, ReadError, SubmitError
)
from .database import PendingUpdateStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[UpdateEvent], None]


class TransactionLifecycleManager:
    """
    Lifecycle manager for on-chain gas price updates.

    Responsibilities:
    - Submit an update only while IDLE
    - Reconcile the pending update each block (confirm, wait, time out)
    - Resubmit the same target price on failure, up to max_retries attempts
    - Persist the pending update when a store is configured
    - Emit observability events for every transition
    """

    def __init__(
        self,
        chain_client,
        max_wait_blocks: int,
        max_retries: int,
        store: Optional[PendingUpdateStore] = None,
        on_event: Optional[EventHandler] = None
    ):
        if max_wait_blocks < 1 or max_retries < 1:
            raise ValueError("max_wait_blocks and max_retries must be >= 1")

        self.chain_client = chain_client
        self.max_wait_blocks = max_wait_blocks
        self.max_retries = max_retries
        self.store = store
        self.on_event = on_event

        self._pending: Optional[PendingUpdate] = None
        self._submission_count = 0

        logger.info(
            f"TransactionLifecycleManager initialized "
            f"(max_wait_blocks={max_wait_blocks}, max_retries={max_retries})"
        )

    # ========================================================================
    # State
    # ========================================================================

    @property
    def state(self) -> EngineState:
        if self._pending is None:
            return EngineState.idle()
        return EngineState.awaiting(self._pending)

    @property
    def is_idle(self) -> bool:
        return self._pending is None

    @property
    def pending(self) -> Optional[PendingUpdate]:
        return self._pending

    @property
    def submission_count(self) -> int:
        """Number of submit_update calls made to the chain client"""
        return self._submission_count

    def restore(self) -> Optional[PendingUpdate]:
        """
        Load a persisted pending update, if any, into AWAITING_CONFIRMATION.

        Only valid while IDLE; the restored update is reconciled on the next
        block like any other. A record submitted max_wait_blocks or more before
        the current head is stale (its outcome was already settled or timed
        out before the restart) and is discarded instead of resumed.
        """
        if self.store is None or not self.is_idle:
            return None

        pending = self.store.load()
        if pending is None:
            return None

        try:
            head = self.chain_client.current_block_number()
        except ReadError as e:
            logger.warning(f"Cannot check age of persisted pending update, resuming it: {e}")
            head = None

        if head is not None and head - pending.submitted_at_block >= self.max_wait_blocks:
            logger.warning(
                f"Discarding stale pending update: target={pending.target_price} "
                f"tx={pending.tx_handle} submitted at block {pending.submitted_at_block}, head {head}"
            )
            self._clear_pending()
            return None

        self._pending = pending
        logger.warning(
            f"Restored pending update: target={pending.target_price} "
            f"tx={pending.tx_handle} attempt={pending.attempt_count}"
        )
        return pending

    # ========================================================================
    # Submission
    # ========================================================================

    def submit(
        self,
        decision: Decision,
        block_number: int,
        snapshot: Optional[GasSnapshot] = None
    ) -> bool:
        """
        Act on a decision.

        Args:
            decision: Output of the decision engine
            block_number: Block the decision was evaluated at
            snapshot: Prices observed at block_number, attached to events

        Returns:
            True if an update was accepted into the lifecycle (broadcast, or
            rejected with retries left), False if nothing was done
        """
        if not decision.requires_update:
            return False

        if not self.is_idle:
            logger.warning(
                f"Ignoring {decision} at block {block_number}: update "
                f"{self._pending.tx_handle} still awaiting confirmation"
            )
            return False

        pending = PendingUpdate(
            target_price=decision.target_price,
            tx_handle=None,
            submitted_at_block=block_number,
            attempt_count=0,
            action=decision.action
        )
        self._attempt(pending, block_number, snapshot)
        return self._pending is not None

    def _attempt(self, pending: PendingUpdate, block_number: int, snapshot: Optional[GasSnapshot]):
        """Broadcast pending.target_price, counting one attempt"""
        pending.attempt_count += 1
        pending.submitted_at_block = block_number
        self._submission_count += 1

        try:
            tx_handle = self.chain_client.submit_update(pending.target_price)
        except SubmitError as e:
            pending.tx_handle = None
            logger.error(
                f"Update submission rejected (attempt {pending.attempt_count}/{self.max_retries}): {e}"
            )
            if pending.attempt_count >= self.max_retries:
                self._fail_permanently(pending, block_number, snapshot, f"submission rejected: {e}")
            else:
                self._set_pending(pending)
            return

        pending.tx_handle = tx_handle
        self._set_pending(pending)

        logger.info(
            f"Update submitted: target={pending.target_price} tx={tx_handle} "
            f"attempt={pending.attempt_count} block={block_number}"
        )
        self._emit(self._event(UpdateEventType.UPDATE_SUBMITTED, block_number, pending, snapshot))

    # ========================================================================
    # Reconciliation
    # ========================================================================

    def reconcile(self, block_number: int, snapshot: Optional[GasSnapshot] = None) -> EngineState:
        """
        Drive the pending update forward for a newly observed block.

        A ReadError from the status query leaves the state untouched; the
        same query is repeated on the next block.
        """
        pending = self._pending
        if pending is None:
            return self.state

        # Previous attempt was rejected before broadcast
        if pending.tx_handle is None:
            self._retry(pending, block_number, snapshot, "previous submission rejected")
            return self.state

        try:
            status = self.chain_client.get_tx_status(pending.tx_handle)
        except ReadError as e:
            logger.warning(f"Status check for {pending.tx_handle} failed, retrying next block: {e}")
            return self.state

        logger.debug(f"Pending update {pending.tx_handle} status at block {block_number}: {status.value}")

        if status == TxStatus.CONFIRMED:
            self._clear_pending()
            logger.info(f"Update confirmed: target={pending.target_price} tx={pending.tx_handle}")
            self._emit(self._event(UpdateEventType.UPDATE_CONFIRMED, block_number, pending, snapshot))

        elif status == TxStatus.PENDING:
            waited = block_number - pending.submitted_at_block
            if waited >= self.max_wait_blocks:
                self._clear_pending()
                logger.warning(
                    f"Update {pending.tx_handle} still pending after {waited} blocks, "
                    f"releasing for re-evaluation"
                )
                self._emit(self._event(
                    UpdateEventType.UPDATE_TIMED_OUT, block_number, pending, snapshot,
                    reason=f"pending for {waited} blocks"
                ))

        else:
            self._retry(pending, block_number, snapshot, f"transaction {status.value}")

        return self.state

    def _retry(self, pending: PendingUpdate, block_number: int, snapshot: Optional[GasSnapshot], reason: str):
        if pending.attempt_count >= self.max_retries:
            self._fail_permanently(pending, block_number, snapshot, reason)
            return

        logger.warning(
            f"Retrying update target={pending.target_price} ({reason}), "
            f"attempt {pending.attempt_count + 1}/{self.max_retries}"
        )
        self._emit(self._event(UpdateEventType.UPDATE_RETRIED, block_number, pending, snapshot, reason=reason))
        self._attempt(pending, block_number, snapshot)

    def _fail_permanently(
        self,
        pending: PendingUpdate,
        block_number: int,
        snapshot: Optional[GasSnapshot],
        reason: str
    ):
        self._clear_pending()
        logger.error(
            f"Update target={pending.target_price} failed permanently after "
            f"{pending.attempt_count} attempts: {reason}"
        )
        self._emit(self._event(
            UpdateEventType.UPDATE_FAILED_PERMANENTLY, block_number, pending, snapshot, reason=reason
        ))

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _event(
        event_type: UpdateEventType,
        block_number: int,
        pending: PendingUpdate,
        snapshot: Optional[GasSnapshot],
        reason: Optional[str] = None
    ) -> UpdateEvent:
        """Event for pending, carrying the block's prices when they were read"""
        return UpdateEvent(
            event_type=event_type,
            block_number=block_number,
            target_price=pending.target_price,
            network_price=snapshot.network_price if snapshot else None,
            contract_price=snapshot.contract_price if snapshot else None,
            tx_hash=pending.tx_handle,
            attempt_count=pending.attempt_count,
            reason=reason
        )

    def _set_pending(self, pending: PendingUpdate):
        self._pending = pending
        if self.store is not None:
            try:
                self.store.save(pending)
            except Exception as e:
                logger.error(f"Failed to persist pending update: {e}")

    def _clear_pending(self):
        self._pending = None
        if self.store is not None:
            try:
                self.store.clear()
            except Exception as e:
                logger.error(f"Failed to clear persisted pending update: {e}")

    def _emit(self, event: UpdateEvent):
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            # Observers never affect lifecycle state
            logger.error(f"Event handler failed for {event.event_type.value}: {e}", exc_info=True)
