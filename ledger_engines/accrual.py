"""
Module: ledger_engines.accrual
Responsibility:
    Monthly charge calculation for a lease and the balanced line set of a
    rental accrual entry.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  AccrualService resolves
    accounts and posts the lines.

Invariants enforced:
    - The lease-start month carries the admin fee and the deposit exactly
      once; later months carry rent only; months outside the lease carry
      nothing.
    - Prorated rent = room_price / days_in_month * days from the lease start
      to month end inclusive, rounded half-up to cents.
    - Accrual lines balance: each receivable debit has a matching credit of
      the same amount on the income or liability account of its component.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_engines.tracer import traced_engine
from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.domain.periods import BillingPeriod
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.accrual")


@dataclass(frozen=True)
class LeaseTerms:
    """Pricing and span of one student's lease."""

    start_date: date
    end_date: date
    room_price: Decimal
    admin_fee: Decimal = ZERO
    deposit_amount: Decimal = ZERO

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError(f"Lease ends before it starts: {self.start_date} > {self.end_date}")
        for name in ("room_price", "admin_fee", "deposit_amount"):
            if getattr(self, name) < ZERO:
                raise ValueError(f"{name} cannot be negative")

    @property
    def first_period(self) -> BillingPeriod:
        return BillingPeriod.from_date(self.start_date)

    @property
    def last_period(self) -> BillingPeriod:
        return BillingPeriod.from_date(self.end_date)

    def covers(self, period: BillingPeriod) -> bool:
        return self.first_period <= period <= self.last_period


@dataclass(frozen=True)
class ChargeRates:
    """Amounts to accrue for one period."""

    rent: Decimal
    admin: Decimal = ZERO
    deposit: Decimal = ZERO
    lease_start: bool = False

    @property
    def total(self) -> Decimal:
        return self.rent + self.admin + self.deposit


@dataclass(frozen=True)
class AccrualAccounts:
    """Credit-side accounts for each component."""

    rental_income: str
    admin_income: str
    deposit_liability: str


def prorated_rent(room_price: Decimal, start_date: date) -> Decimal:
    """Rent for the days from ``start_date`` through the end of its month."""
    period = BillingPeriod.from_date(start_date)
    days = period.days_in_month - start_date.day + 1
    return round_money(room_price / Decimal(period.days_in_month) * Decimal(days))


def lease_periods(terms: LeaseTerms, through: BillingPeriod | None = None) -> list[BillingPeriod]:
    """Every billing period the lease covers, optionally capped at ``through``."""
    last = terms.last_period if through is None else min(terms.last_period, through)
    return list(BillingPeriod.span(terms.first_period, last))


class AccrualCalculator:
    """
    Charge and line builder for rental accruals.

    Contract:
        ``rates_for_period`` returns None for a period outside the lease.
    """

    def __init__(self, prorate_lease_start: bool = True):
        self.prorate_lease_start = prorate_lease_start

    @traced_engine("rental_accrual_rates", "1.0", fingerprint_fields=("terms", "period"))
    def rates_for_period(self, *, terms: LeaseTerms, period: BillingPeriod) -> ChargeRates | None:
        if not terms.covers(period):
            return None
        if period != terms.first_period:
            return ChargeRates(rent=round_money(terms.room_price))

        rent = round_money(terms.room_price)
        if self.prorate_lease_start and terms.start_date.day != 1:
            rent = prorated_rent(terms.room_price, terms.start_date)
            logger.debug(
                "lease_start_prorated",
                extra={
                    "period": period.key,
                    "room_price": str(terms.room_price),
                    "prorated_rent": str(rent),
                },
            )
        return ChargeRates(
            rent=rent,
            admin=round_money(terms.admin_fee),
            deposit=round_money(terms.deposit_amount),
            lease_start=True,
        )

    @staticmethod
    def build_lines(
        receivable_code: str,
        rates: ChargeRates,
        accounts: AccrualAccounts,
        period: BillingPeriod,
    ) -> tuple[LineSpec, ...]:
        """Receivable debits per component followed by their credits."""
        components = (
            ("rent", rates.rent, accounts.rental_income, "Rental income"),
            ("admin", rates.admin, accounts.admin_income, "Administrative fee"),
            ("deposit", rates.deposit, accounts.deposit_liability, "Security deposit"),
        )
        debits = []
        credits = []
        for charge_type, amount, credit_code, label in components:
            if amount <= ZERO:
                continue
            debits.append(
                LineSpec.debit_line(
                    receivable_code,
                    amount,
                    description=f"{label} receivable {period.key}",
                    charge_type=charge_type,
                )
            )
            credits.append(
                LineSpec.credit_line(
                    credit_code,
                    amount,
                    description=f"{label} {period.key}",
                    charge_type=charge_type,
                )
            )
        return tuple(debits + credits)
