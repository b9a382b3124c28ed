"""
Reward Cascade Coordinator.

Runs after every completed merchant -> customer credit, whichever route made
it. Steps run in order, each in its own transaction:

    global_number -> stepup -> affiliate_commission -> instant_cashback
    -> ripple -> infinity -> shopping_voucher

A step's ledger entries, reward records and its cascade_step_runs row commit
together. A failing step is rolled back, logged, recorded as 'error' and the
next step still runs; the original credit is never touched. Steps already
recorded as assigned / not_eligible are not run again, which is what makes
replay by the reconciliation job safe.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from flask import current_app

from ..extensions import db
from ..models.account import Account
from ..models.ledger import PointDistribution, DistributionType, DistributionStatus
from ..models.rewards import CascadeStepRun, StepRunStatus
from ..utils.exceptions import CascadeStepFailure, ValidationError, AccountNotFound
from .distribution_engine import DistributionEngine
from .merchant_customers import MerchantCustomerProjector
from .rewards import default_steps, CascadeContext, RewardStep

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    step: str
    status: str
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {'step': self.step, 'status': self.status, 'detail': self.detail}
        if self.error:
            data['error'] = self.error
        if self.replayed:
            data['replayed'] = True
        return data


@dataclass
class CascadeResult:
    distribution_id: int
    steps: List[StepResult] = field(default_factory=list)

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.step == name:
                return result
        return None

    @property
    def fired(self) -> List[str]:
        return [s.step for s in self.steps if s.status == StepRunStatus.ASSIGNED.value]

    @property
    def errors(self) -> List[str]:
        return [s.step for s in self.steps if s.status == StepRunStatus.ERROR.value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'distribution_id': self.distribution_id,
            'fired': self.fired,
            'errors': self.errors,
            'steps': [s.to_dict() for s in self.steps],
        }


class CascadeCoordinator:
    """
    Usage:
        entry = engine.transfer(merchant_id, customer_id, points, ...,
                                DistributionType.MERCHANT_TO_CUSTOMER.value)
        result = CascadeCoordinator(engine).run(entry)
    """

    def __init__(self, engine: DistributionEngine = None, steps: List[RewardStep] = None,
                 read_model: MerchantCustomerProjector = None):
        self.engine = engine or DistributionEngine()
        self.steps = steps if steps is not None else default_steps()
        self.read_model = read_model or MerchantCustomerProjector()

    @property
    def notifier(self):
        return self.engine.notifier

    def run(self, distribution: PointDistribution) -> CascadeResult:
        """Run every step for a completed merchant_to_customer entry."""
        self._check_source(distribution)
        source_id = distribution.id
        merchant_id = distribution.from_account_id
        customer_id = distribution.to_account_id

        result = CascadeResult(distribution_id=source_id)
        for step in self.steps:
            result.steps.append(self._run_step(step, source_id))

        try:
            self.read_model.refresh(merchant_id, customer_id)
        except Exception as e:
            db.session.rollback()
            logger.exception(f"Merchant customer refresh failed for {merchant_id}/{customer_id}: {e}")

        current_app.logger.info(
            f"Cascade for distribution {source_id}: fired={result.fired} errors={result.errors}"
        )
        return result

    def run_step(self, distribution: PointDistribution, step_name: str) -> StepResult:
        """
        Run (or replay) a single named step.

        When a replay assigns rewards, later steps that depend on it are
        evaluated again even if they already recorded 'not_eligible'.
        """
        self._check_source(distribution)
        for step in self.steps:
            if step.name == step_name:
                result = self._run_step(step, distribution.id)
                if result.replayed and result.status == StepRunStatus.ASSIGNED.value:
                    self._rerun_dependents(step.name, distribution.id)
                return result
        raise ValidationError(f"Unknown cascade step '{step_name}'", field='step')

    def pending_steps(self, distribution_id: int) -> List[str]:
        """Steps with no run record or an 'error' record."""
        runs = {
            run.step: run.status
            for run in CascadeStepRun.query.filter_by(source_distribution_id=distribution_id).all()
        }
        return [
            step.name for step in self.steps
            if runs.get(step.name) in (None, StepRunStatus.ERROR.value)
        ]

    # ==================== Internals ====================

    def _check_source(self, distribution: PointDistribution) -> None:
        if distribution.distribution_type != DistributionType.MERCHANT_TO_CUSTOMER.value:
            raise ValidationError('Cascades only run for merchant_to_customer entries', field='distribution_type')
        if distribution.status != DistributionStatus.COMPLETED.value:
            raise ValidationError('Cascades only run for completed entries', field='status')

    def _context(self, source_id: int) -> CascadeContext:
        source = db.session.get(PointDistribution, source_id)
        merchant = db.session.get(Account, source.from_account_id)
        customer = db.session.get(Account, source.to_account_id)
        if not merchant or not customer:
            raise AccountNotFound(source.from_account_id if not merchant else source.to_account_id)
        return CascadeContext(
            source=source,
            merchant=merchant,
            customer=customer,
            engine=self.engine,
            config=current_app.config,
        )

    def _rerun_dependents(self, step_name: str, source_id: int) -> None:
        for step in self.steps:
            if step_name in step.depends_on:
                result = self._run_step(step, source_id, rerun=True)
                if result.status == StepRunStatus.ASSIGNED.value:
                    self._rerun_dependents(step.name, source_id)

    def _run_step(self, step: RewardStep, source_id: int, rerun: bool = False) -> StepResult:
        existing = CascadeStepRun.query.filter_by(source_distribution_id=source_id, step=step.name).first()
        if existing and existing.status != StepRunStatus.ERROR.value and not rerun:
            return StepResult(step.name, existing.status, existing.detail_dict)

        replayed = existing is not None
        timeout = current_app.config.get('TRANSFER_LOCK_TIMEOUT', 5)
        try:
            ctx = self._context(source_id)
            with self.engine.locks.acquire(step.lock_keys(ctx), timeout):
                outcome = step.run(ctx)
                self._record(source_id, step.name, outcome.status, outcome.detail)
                db.session.commit()
        except Exception as e:
            db.session.rollback()
            failure = CascadeStepFailure(step.name, source_id, e)
            logger.exception(failure.message)
            self._record_error(source_id, step.name, e)
            return StepResult(step.name, StepRunStatus.ERROR.value, {}, error=str(e), replayed=replayed)

        current_app.logger.info(
            f"Cascade step {step.name} for distribution {source_id}: {outcome.status}"
        )
        for account_id, event_type, payload in outcome.notifications:
            self.notifier.emit(account_id, event_type, payload)

        return StepResult(step.name, outcome.status, outcome.detail, replayed=replayed)

    def _record(self, source_id: int, step_name: str, status: str,
                detail: Dict[str, Any] = None, error: str = None) -> CascadeStepRun:
        run = CascadeStepRun.query.filter_by(source_distribution_id=source_id, step=step_name).first()
        if run is None:
            run = CascadeStepRun(source_distribution_id=source_id, step=step_name, attempts=0)
            db.session.add(run)
        run.status = status
        run.detail = json.dumps(detail or {}, default=str)
        run.error = error
        run.attempts = (run.attempts or 0) + 1
        return run

    def _record_error(self, source_id: int, step_name: str, error: Exception) -> None:
        try:
            self._record(source_id, step_name, StepRunStatus.ERROR.value, error=str(error)[:2000])
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Could not record cascade failure {source_id}:{step_name}: {e}")
