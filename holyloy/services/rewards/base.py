"""
Shared building blocks for reward cascade steps.

A step evaluates one reward rule for one merchant -> customer credit:
    evaluate condition -> engine credit (commit=False) -> record

The coordinator owns the transaction: it commits the step's ledger entries,
records and run row together, or rolls all of them back.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, List, Tuple, Optional

from ...models.account import Account
from ...models.ledger import PointDistribution
from ...models.rewards import StepRunStatus


Notification = Tuple[Optional[int], str, Dict[str, Any]]


def percentage_of(points: int, rate: float) -> int:
    """points * rate rounded half-up to a whole point."""
    value = Decimal(points) * Decimal(str(rate))
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


@dataclass
class CascadeContext:
    """What a step sees: the source credit, its two parties and the engine."""
    source: PointDistribution
    merchant: Account
    customer: Account
    engine: Any
    config: Dict[str, Any]

    @property
    def source_id(self) -> int:
        return self.source.id


@dataclass
class StepOutcome:
    """Result of one step run."""
    status: str
    detail: Dict[str, Any] = field(default_factory=dict)
    notifications: List[Notification] = field(default_factory=list)

    @classmethod
    def not_eligible(cls, reason: str, **detail) -> 'StepOutcome':
        detail['reason'] = reason
        return cls(StepRunStatus.NOT_ELIGIBLE.value, detail)

    @classmethod
    def assigned(cls, detail: Dict[str, Any], notifications: List[Notification] = None) -> 'StepOutcome':
        return cls(StepRunStatus.ASSIGNED.value, detail, notifications or [])


class RewardStep:
    """Base class for cascade steps."""

    name: str = None
    # Steps whose records this step reads. A successful replay of one of
    # them re-runs this step.
    depends_on: Tuple[str, ...] = ()

    def lock_keys(self, ctx: CascadeContext) -> List[str]:
        """Extra locks held for the whole step, including its commit."""
        return []

    def run(self, ctx: CascadeContext) -> StepOutcome:
        raise NotImplementedError
