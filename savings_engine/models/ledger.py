"""
Ledger Models

Goals, assets, transactions and allocations. These records are owned by
the transaction/allocation management side of the application; the
engine only ever reads them.

DESIGN DECISION: Amounts are plain floats in the asset's (or goal's)
native currency. Conversion to a display currency happens at the edges,
never inside the funding arithmetic.
"""

from datetime import date
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_id() -> str:
    return str(uuid4())


class TransactionSource(str, Enum):
    """Where a ledger entry came from."""
    MANUAL = "manual"
    ON_CHAIN = "onChain"
    IMPORT = "import"


class GoalLifecycleStatus(str, Enum):
    """Lifecycle of a savings goal. Only ACTIVE goals are planned."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Goal(BaseModel):
    """A savings goal with a target amount and a deadline."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    currency: str = Field(..., min_length=1, max_length=16)
    target_amount: float = Field(..., ge=0)
    deadline: date
    start_date: Optional[date] = None
    lifecycle_status: GoalLifecycleStatus = GoalLifecycleStatus.ACTIVE

    @field_validator("currency")
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def is_active(self) -> bool:
        return self.lifecycle_status == GoalLifecycleStatus.ACTIVE


class Asset(BaseModel):
    """
    A holding of one currency.

    Assets with both `address` and `chain_id` can also report an
    on-chain balance on top of their manual ledger.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    currency: str = Field(..., min_length=1, max_length=16)
    address: Optional[str] = None
    chain_id: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def has_on_chain_source(self) -> bool:
        return bool(self.address) and bool(self.chain_id)


class Transaction(BaseModel):
    """
    Append-only ledger entry for an asset.

    Positive amounts are deposits, negative amounts withdrawals.
    """

    id: str = Field(default_factory=new_id)
    asset_id: str
    amount: float
    date_millis: int = Field(..., description="When the transaction happened (epoch ms, UTC)")
    source: TransactionSource = TransactionSource.MANUAL
    comment: Optional[str] = None
    created_at_millis: int = 0


class Allocation(BaseModel):
    """The live earmark of part of an asset's balance toward a goal."""

    id: str = Field(default_factory=new_id)
    asset_id: str
    goal_id: str
    amount: float = Field(..., ge=0)


class AllocationHistory(BaseModel):
    """
    One version of an allocation target.

    The history is append-only. A deletion is recorded as an entry with
    amount 0.
    """

    id: str = Field(default_factory=new_id)
    asset_id: str
    goal_id: str
    amount: float
    month_label: str
    timestamp: int = Field(..., description="When the target took effect (epoch ms)")
    created_at: int = Field(..., description="When the entry was written (epoch ms)")


class OnChainBalance(BaseModel):
    """A balance reported by the on-chain capability."""

    asset_id: str
    balance: float
    fetched_at_millis: int
    is_stale: bool = False
