"""
Configuration Schema (``ledger_config.schema``).

Responsibility
--------------
Frozen dataclass definitions for the ledger's runtime configuration: the
chart of accounts, the well-known account codes used by the services, and
engine switches such as lease-start proration.

Architecture position
---------------------
**Config layer** -- pure data definitions.  Populated by
``ledger_config.loader``; consumed by ``ledger_services``.  The kernel never
imports this module.

Invariants enforced
-------------------
* All dataclasses are ``frozen=True``; settings are immutable once loaded.
* Every well-known code in ``AccountCodes`` must be present in the chart.
* Account codes are unique within a chart.

Failure modes
-------------
* ``ValueError`` from ``__post_init__`` on any structural violation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

VALID_ACCOUNT_TYPES = ("Asset", "Liability", "Equity", "Income", "Expense")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AccountDefinition:
    """One chart-of-accounts row seeded at initialization."""

    code: str
    name: str
    account_type: str
    category: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.code or not self.code.strip():
            raise ValueError("Account code cannot be empty")
        if "-" in self.code:
            raise ValueError(f"Chart account {self.code} cannot be a sub-account")
        if self.account_type not in VALID_ACCOUNT_TYPES:
            raise ValueError(
                f"Account {self.code}: account_type must be one of {VALID_ACCOUNT_TYPES}, "
                f"got '{self.account_type}'"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountDefinition:
        return cls(
            code=str(data["code"]),
            name=data["name"],
            account_type=data.get("account_type") or data["type"],
            category=data.get("category"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class AccountCodes:
    """Codes of the accounts the posting services address directly."""

    cash: str = "1000"
    bank: str = "1001"
    receivable: str = "1100"
    deposits_held: str = "2020"
    advance: str = "2200"
    rental_income: str = "4000"
    admin_income: str = "4100"
    forfeited_income: str = "4900"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AccountCodes:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown account roles: {sorted(unknown)}")
        return cls(**{k: str(v) for k, v in data.items()})

    def as_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class LedgerSettings:
    """
    Complete ledger configuration.

    ``bank_methods`` are case-insensitive substrings: a payment whose method
    contains any of them is debited to ``codes.bank`` instead of
    ``codes.cash``.
    """

    accounts: tuple[AccountDefinition, ...]
    codes: AccountCodes = field(default_factory=AccountCodes)
    bank_methods: tuple[str, ...] = ("bank", "transfer", "ecocash")
    prorate_lease_start: bool = True
    database_url: str = "sqlite:///residence_ledger.db"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        codes = [a.code for a in self.accounts]
        if len(codes) != len(set(codes)):
            duplicates = sorted({c for c in codes if codes.count(c) > 1})
            raise ValueError(f"Duplicate account codes in chart: {duplicates}")
        missing = sorted(set(self.codes.as_dict().values()) - set(codes))
        if missing:
            raise ValueError(f"Account codes referenced but not in chart: {missing}")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'")
        if not self.database_url:
            raise ValueError("database_url cannot be empty")
        object.__setattr__(self, "bank_methods", tuple(m.lower() for m in self.bank_methods))
        object.__setattr__(self, "log_level", self.log_level.upper())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerSettings:
        kwargs: dict[str, Any] = {
            "accounts": tuple(AccountDefinition.from_dict(a) for a in data.get("accounts", [])),
            "codes": AccountCodes.from_dict(data.get("codes")),
        }
        if "bank_methods" in data:
            kwargs["bank_methods"] = tuple(data["bank_methods"])
        for key in ("prorate_lease_start", "database_url", "log_level"):
            if key in data:
                kwargs[key] = data[key]
        return cls(**kwargs)

    def with_overrides(self, **changes: Any) -> LedgerSettings:
        return replace(self, **changes)

    def account(self, code: str) -> AccountDefinition | None:
        for definition in self.accounts:
            if definition.code == code:
                return definition
        return None

    def settlement_account(self, method: str | None) -> str:
        """Cash or bank account for a payment method."""
        lowered = (method or "").lower()
        if any(m in lowered for m in self.bank_methods):
            return self.codes.bank
        return self.codes.cash
