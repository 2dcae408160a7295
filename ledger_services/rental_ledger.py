"""
ledger_services.rental_ledger -- the public face of the residence ledger.

Responsibility:
    Owns the engine, the session factory, the settings, the clock and the
    in-process student lock registry.  Every exposed operation opens its
    own session, runs one service call and commits or rolls back.

Architecture position:
    Services -- top of the stack.  Scripts and integrations talk to
    RentalLedger only; services below it never commit.

Invariants enforced:
    - One transaction per operation; batch runs commit per student and
      period so one failure never undoes another student's work.
    - Per-student serialization: the in-process lock is taken before the
      session opens, the database row lock inside it.
    - Lazy reads (``query_ledger``) stream inside a dedicated session that
      is closed when the generator is exhausted or discarded.

Failure modes:
    - Accounting and correction errors propagate after rollback.
    - Batch runs report per-student errors in BatchAccrualResult instead of
      raising.

Usage:
    from ledger_config import load_settings
    from ledger_services import RentalLedger

    ledger = RentalLedger.from_settings(load_settings())
    ledger.initialize()
    ledger.create_monthly_accruals_batch("2025-06", directory)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import LedgerSettings
from ledger_engines.accrual import ChargeRates, lease_periods
from ledger_kernel.db.engine import build_engine, create_tables, session_scope
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.periods import BillingPeriod
from ledger_kernel.exceptions import LedgerError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.transaction_entry import TransactionEntry
from ledger_kernel.selectors.ledger_selector import (
    AccountBalanceDTO,
    LedgerFilter,
    LedgerSelector,
    TransactionEntryDTO,
)
from ledger_kernel.selectors.obligation_selector import ObligationDTO, ObligationSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.reversal_service import ReversalResult
from ledger_kernel.services.student_lock_service import StudentLockRegistry
from ledger_services.accrual_service import (
    AccrualOutcome,
    AccrualService,
    AccrualStatus,
    AccrualSummary,
    BatchAccrualResult,
)
from ledger_services.allocation_service import (
    AdvanceReleaseResult,
    AllocationOutcome,
    AllocationService,
    PaymentEvent,
)
from ledger_services.correction_service import (
    CorrectionService,
    DepositWriteOffResult,
    DuplicateCleanupReport,
    ForfeitureResult,
    LedgerAuditReport,
)
from ledger_services.debtors import DebtorDirectory, DebtorRecord

logger = get_logger("services.rental_ledger")


class RentalLedger:
    """
    Contract:
        Each public method is a complete unit of work.  Returned objects are
        DTOs or detached, fully loaded ORM rows.

    Non-goals:
        - Does NOT schedule accrual runs; callers (cron, CLI) do.
        - Does NOT hold sessions between calls.
    """

    def __init__(
        self,
        engine: Engine,
        settings: LedgerSettings,
        clock: Clock | None = None,
        lock_registry: StudentLockRegistry | None = None,
    ):
        self.engine = engine
        self.settings = settings
        self.clock = clock or SystemClock()
        self.locks = lock_registry or StudentLockRegistry()
        self.session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)
        register_immutability_listeners()

    @classmethod
    def from_settings(cls, settings: LedgerSettings, clock: Clock | None = None,
                      echo: bool = False) -> RentalLedger:
        return cls(build_engine(settings.database_url, echo=echo), settings, clock=clock)

    @contextmanager
    def transaction_scope(self) -> Iterator[Session]:
        with session_scope(self.session_factory) as session:
            yield session

    @contextmanager
    def _student_scope(self, student_id: str) -> Iterator[Session]:
        with self.locks.hold(student_id), self.transaction_scope() as session:
            yield session

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self) -> list[str]:
        """Create tables and seed the configured chart of accounts."""
        create_tables(self.engine)
        with self.transaction_scope() as session:
            accounts = AccountRegistry(session, self.clock).seed_chart(self.settings.accounts)
            codes = [a.code for a in accounts]
        logger.info("ledger_initialized", extra={"account_count": len(codes)})
        return codes

    # ------------------------------------------------------------------
    # Accruals
    # ------------------------------------------------------------------

    def create_accrual(
        self,
        student_id: str,
        period: BillingPeriod | str,
        rates: ChargeRates,
        student_name: str | None = None,
        residence_id: str | None = None,
        created_by: str = "system",
    ) -> AccrualOutcome:
        with self._student_scope(student_id) as session:
            return AccrualService(session, self.settings, self.clock).create_accrual(
                student_id, period, rates,
                student_name=student_name, residence_id=residence_id, created_by=created_by,
            )

    def accrue_debtor(self, debtor: DebtorRecord, period: BillingPeriod | str,
                      created_by: str = "system") -> AccrualOutcome:
        with self._student_scope(debtor.student_id) as session:
            return AccrualService(session, self.settings, self.clock).accrue_debtor(
                debtor, period, created_by=created_by
            )

    def _accrue_isolated(self, debtor: DebtorRecord, period: BillingPeriod,
                         result: BatchAccrualResult) -> None:
        try:
            outcome = self.accrue_debtor(debtor, period)
        except (LedgerError, SQLAlchemyError, ValueError) as exc:
            logger.error(
                "accrual_failed",
                extra={"student_id": debtor.student_id, "period": period.key, "error": str(exc)},
                exc_info=True,
            )
            outcome = AccrualOutcome(AccrualStatus.ERROR, debtor.student_id, period.key, reason=str(exc))
        result.record(outcome)

    def create_monthly_accruals_batch(self, period: BillingPeriod | str,
                                      directory: DebtorDirectory) -> BatchAccrualResult:
        """Accrue every active debtor whose lease covers ``period``."""
        period = BillingPeriod.parse(period)
        result = BatchAccrualResult()
        with LogContext.bind(correlation_id=uuid4().hex):
            logger.info("accrual_batch_started", extra={"period": period.key})
            for debtor in directory.active_debtors():
                if not debtor.covers(period):
                    continue
                self._accrue_isolated(debtor, period, result)
            logger.info(
                "accrual_batch_completed",
                extra={
                    "period": period.key,
                    "created_count": result.created,
                    "skipped_count": result.skipped,
                    "error_count": result.errors,
                },
            )
        return result

    def backfill_lease_accruals(self, directory: DebtorDirectory,
                                through: BillingPeriod | str | None = None) -> BatchAccrualResult:
        """
        Accrue every month of every active lease.  Safe to re-run: months
        already accrued come back as SKIPPED.
        """
        cap = BillingPeriod.parse(through) if through is not None else None
        result = BatchAccrualResult()
        with LogContext.bind(correlation_id=uuid4().hex):
            logger.info("accrual_backfill_started", extra={"through": cap.key if cap else None})
            for debtor in directory.active_debtors():
                for period in lease_periods(debtor.terms, cap):
                    self._accrue_isolated(debtor, period, result)
            logger.info(
                "accrual_backfill_completed",
                extra={
                    "created_count": result.created,
                    "skipped_count": result.skipped,
                    "error_count": result.errors,
                },
            )
        return result

    def accrual_summary(self, period: BillingPeriod | str) -> AccrualSummary:
        with self.transaction_scope() as session:
            return AccrualService(session, self.settings, self.clock).accrual_summary(period)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def allocate_payment(self, event: PaymentEvent, created_by: str = "system") -> AllocationOutcome:
        with self._student_scope(event.student_id) as session:
            return AllocationService(session, self.settings, self.clock).allocate_payment(
                event, created_by=created_by
            )

    def apply_advance_balance(self, student_id: str, as_of: date | None = None,
                              created_by: str = "system") -> AdvanceReleaseResult:
        with self._student_scope(student_id) as session:
            return AllocationService(session, self.settings, self.clock).apply_advance_balance(
                student_id, as_of=as_of, created_by=created_by
            )

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def _student_of(self, transaction_id: str) -> str | None:
        with self.transaction_scope() as session:
            return session.execute(
                select(TransactionEntry.student_id).where(TransactionEntry.transaction_id == transaction_id)
            ).scalar_one_or_none()

    @contextmanager
    def _entry_scope(self, transaction_id: str) -> Iterator[Session]:
        student_id = self._student_of(transaction_id)
        if student_id is None:
            with self.transaction_scope() as session:
                yield session
        else:
            with self._student_scope(student_id) as session:
                yield session

    def reverse_transaction(self, transaction_id: str, reason: str,
                            created_by: str = "system") -> ReversalResult:
        with self._entry_scope(transaction_id) as session:
            return CorrectionService(session, self.settings, self.clock).reverse_transaction(
                transaction_id, reason, created_by=created_by
            )

    def reverse_forfeiture(self, transaction_id: str, reason: str, forfeit_payments: bool = True,
                           created_by: str = "system") -> ForfeitureResult:
        with self._entry_scope(transaction_id) as session:
            return CorrectionService(session, self.settings, self.clock).reverse_forfeiture(
                transaction_id, reason, forfeit_payments=forfeit_payments, created_by=created_by
            )

    def reverse_unpaid_deposit(self, student_id: str, reason: str,
                               created_by: str = "system") -> DepositWriteOffResult:
        with self._student_scope(student_id) as session:
            return CorrectionService(session, self.settings, self.clock).reverse_unpaid_deposit(
                student_id, reason, created_by=created_by
            )

    def cleanup_duplicate_reversals(self, student_id: str | None = None) -> DuplicateCleanupReport:
        with self.transaction_scope() as session:
            return CorrectionService(session, self.settings, self.clock).cleanup_duplicate_reversals(
                student_id
            )

    def audit_ledger(self, criteria: LedgerFilter | None = None,
                     tolerance: Decimal | str = ZERO) -> LedgerAuditReport:
        with self.transaction_scope() as session:
            return CorrectionService(session, self.settings, self.clock).audit_ledger(
                criteria, tolerance=tolerance
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_outstanding(self, student_id: str) -> list[ObligationDTO]:
        with self.transaction_scope() as session:
            return ObligationSelector(
                session, receivable_control=self.settings.codes.receivable
            ).outstanding(student_id)

    def has_accrual_history(self, student_id: str) -> bool:
        with self.transaction_scope() as session:
            return ObligationSelector(
                session, receivable_control=self.settings.codes.receivable
            ).has_accrual_history(student_id)

    def query_ledger(self, criteria: LedgerFilter | None = None) -> Iterator[TransactionEntryDTO]:
        """Lazily stream entries matching ``criteria``."""
        session = self.session_factory()
        try:
            yield from LedgerSelector(session).query(criteria)
        finally:
            session.close()

    def account_balance(self, account_code: str, as_of: date | None = None,
                        include_subaccounts: bool = False) -> AccountBalanceDTO:
        with self.transaction_scope() as session:
            return LedgerSelector(session).account_balance(
                account_code, as_of=as_of, include_subaccounts=include_subaccounts
            )
