"""
Core Data Models and Types

Defines the data structures shared by the decision engine, the transaction
lifecycle manager and the control loop.
"""

from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime
from dataclasses import dataclass, field
from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Enums
# ============================================================================

class TxStatus(str, Enum):
    """On-chain status of a submitted update transaction"""
    PENDING = "pending"          # Broadcast, no receipt yet
    CONFIRMED = "confirmed"      # Included and contract holds the target price
    FAILED = "failed"            # Reverted, or included without effect
    NOT_FOUND = "not_found"      # Unknown to the node (dropped or never seen)


class DecisionAction(str, Enum):
    """Outcome of a price evaluation"""
    NO_ACTION = "no_action"
    RAISE = "raise"
    LOWER = "lower"


class EngineStatus(str, Enum):
    """Lifecycle manager state"""
    IDLE = "IDLE"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"


class UpdateEventType(str, Enum):
    """Observability events produced by the core"""
    DECISION_MADE = "DecisionMade"
    UPDATE_SUBMITTED = "UpdateSubmitted"
    UPDATE_CONFIRMED = "UpdateConfirmed"
    UPDATE_RETRIED = "UpdateRetried"
    UPDATE_TIMED_OUT = "UpdateTimedOut"
    UPDATE_FAILED_PERMANENTLY = "UpdateFailedPermanently"


# ============================================================================
# Error Types
# ============================================================================

class FeeUpdaterError(Exception):
    """Base exception for all fee updater errors"""
    pass


class ConfigurationError(FeeUpdaterError):
    """Configuration validation or loading error (fatal at startup)"""
    pass


class ReadError(FeeUpdaterError):
    """Chain read failed (transport or decoding), retried next block"""
    pass


class SubmitError(FeeUpdaterError):
    """Update transaction rejected before broadcast (nonce, funds, signature)"""
    pass


class RPCError(FeeUpdaterError):
    """WebSocket provider connection or response error"""
    pass


# ============================================================================
# Core Data Models
# ============================================================================

class BlockNotification(BaseModel):
    """New block head as delivered by the block feed"""
    block_number: int = Field(..., ge=0, description="Block height")
    network_gas_price: Optional[int] = Field(
        default=None, description="Network gas price signaled by the block, if present in the header"
    )
    block_hash: Optional[str] = Field(default=None)

    @field_validator('network_gas_price')
    @classmethod
    def validate_price(cls, v):
        if v is not None and v < 0:
            raise ValueError("Gas price must be non-negative")
        return v


class GasSnapshot(BaseModel):
    """Prices observed for a single block evaluation"""
    network_price: int = Field(..., description="Network gas price for the block")
    contract_price: int = Field(..., description="Gas price stored in the contract")
    observed_at_block: int = Field(..., description="Block the snapshot was taken at")

    @field_validator('network_price', 'contract_price', 'observed_at_block')
    @classmethod
    def validate_non_negative(cls, v):
        """Prices and block numbers are non-negative integers"""
        if v < 0:
            raise ValueError(f"Value must be non-negative, got {v}")
        return v


@dataclass(frozen=True)
class Decision:
    """Result of comparing network and contract price"""
    action: DecisionAction
    target_price: Optional[int] = None

    @classmethod
    def no_action(cls) -> "Decision":
        return cls(DecisionAction.NO_ACTION)

    @classmethod
    def raise_to(cls, price: int) -> "Decision":
        return cls(DecisionAction.RAISE, price)

    @classmethod
    def lower_to(cls, price: int) -> "Decision":
        return cls(DecisionAction.LOWER, price)

    @property
    def requires_update(self) -> bool:
        return self.action != DecisionAction.NO_ACTION

    def __str__(self) -> str:
        if not self.requires_update:
            return "NoAction"
        verb = "RaiseTo" if self.action == DecisionAction.RAISE else "LowerTo"
        return f"{verb}({self.target_price})"


# ============================================================================
# State Tracking Models
# ============================================================================

@dataclass
class PendingUpdate:
    """Update transaction submitted and not yet confirmed or given up on.

    ``tx_handle`` is None while the latest submission attempt was rejected by
    the chain client and a resubmission is due at the next reconciliation.
    """
    target_price: int
    tx_handle: Optional[str]
    submitted_at_block: int
    attempt_count: int
    action: DecisionAction = DecisionAction.RAISE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-safe dictionary"""
        return {
            'target_price': str(self.target_price),
            'tx_handle': self.tx_handle,
            'submitted_at_block': self.submitted_at_block,
            'attempt_count': self.attempt_count,
            'action': self.action.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingUpdate":
        return cls(
            target_price=int(data['target_price']),
            tx_handle=data.get('tx_handle'),
            submitted_at_block=int(data['submitted_at_block']),
            attempt_count=int(data['attempt_count']),
            action=DecisionAction(data.get('action', DecisionAction.RAISE.value)),
        )


@dataclass(frozen=True)
class EngineState:
    """Idle, or awaiting confirmation of exactly one pending update"""
    status: EngineStatus
    pending: Optional[PendingUpdate] = None

    @classmethod
    def idle(cls) -> "EngineState":
        return cls(EngineStatus.IDLE)

    @classmethod
    def awaiting(cls, pending: PendingUpdate) -> "EngineState":
        return cls(EngineStatus.AWAITING_CONFIRMATION, pending)

    @property
    def is_idle(self) -> bool:
        return self.status == EngineStatus.IDLE


@dataclass
class UpdateEvent:
    """Audit event emitted by the core"""
    event_type: UpdateEventType
    block_number: int
    target_price: Optional[int] = None
    network_price: Optional[int] = None
    contract_price: Optional[int] = None
    tx_hash: Optional[str] = None
    attempt_count: Optional[int] = None
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'timestamp': self.timestamp.isoformat(),
            'event_type': self.event_type.value,
            'block_number': self.block_number,
            'target_price': self.target_price,
            'network_price': self.network_price,
            'contract_price': self.contract_price,
            'tx_hash': self.tx_hash,
            'attempt_count': self.attempt_count,
            'reason': self.reason,
        }
