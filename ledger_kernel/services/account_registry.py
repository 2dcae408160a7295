"""
AccountRegistry -- chart of accounts and per-student sub-accounts.

Responsibility:
    Maps account codes to (name, type, category, parent) and creates the
    per-student receivable (``1100-<studentId>``) and advance
    (``2200-<studentId>``) sub-accounts on first use.

Architecture position:
    Kernel > Services.  Called by LedgerStore (strict resolution at post
    time), AccrualService and AllocationService (sub-account creation) and
    RentalLedger.initialize (seeding).

Invariants enforced:
    - A code maps to exactly one account type (AccountConflictError).
    - Accounts are never deleted; ``deactivate`` blocks new postings.

Failure modes:
    - UnknownAccountError from strict ``resolve``.
    - AccountConflictError from ``get_or_create`` on type mismatch.
"""

from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ledger_kernel.exceptions import AccountConflictError, UnknownAccountError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import SUBACCOUNT_SEPARATOR, Account, AccountType
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")

# Control accounts the registry knows how to derive sub-accounts from
RECEIVABLE_CONTROL = "1100"
ADVANCE_CONTROL = "2200"


class AccountRegistry(BaseService[Account]):
    """
    Chart-of-accounts service.

    Contract:
        ``get_or_create`` is idempotent for identical (code, type).  Lookups
        are cached per instance; the cache only ever holds rows already
        flushed in this session.

    Non-goals:
        - Hierarchies deeper than control + one sub-account level.
    """

    def __init__(self, session, clock=None, receivable_control: str = RECEIVABLE_CONTROL,
                 advance_control: str = ADVANCE_CONTROL):
        super().__init__(session, clock)
        self.receivable_control = receivable_control
        self.advance_control = advance_control
        self._cache: dict[str, Account] = {}

    def _find(self, code: str) -> Account | None:
        cached = self._cache.get(code)
        if cached is not None:
            return cached
        account = self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        if account is not None:
            self._cache[code] = account
        return account

    def resolve(self, code: str, strict: bool = True) -> Account | None:
        """Look up an account by code."""
        account = self._find(code)
        if account is None and strict:
            raise UnknownAccountError(code)
        return account

    def get_or_create(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        category: str | None = None,
        parent_code: str | None = None,
        description: str | None = None,
    ) -> Account:
        """Return the account for ``code``, creating it if absent."""
        account_type = AccountType(account_type)
        existing = self._find(code)
        if existing is not None:
            self._assert_same_type(existing, account_type)
            return existing

        savepoint = self.session.begin_nested()
        try:
            account = Account(
                code=code,
                name=name,
                account_type=account_type.value,
                normal_balance=account_type.normal_balance.value,
                category=category,
                parent_code=parent_code,
                description=description,
                is_active=True,
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Created concurrently by another transaction
            savepoint.rollback()
            account = self.session.execute(
                select(Account).where(Account.code == code)
            ).scalar_one()
            self._assert_same_type(account, account_type)

        self._cache[code] = account
        logger.info(
            "account_created",
            extra={
                "account_code": code,
                "account_type": account_type.value,
                "parent_code": parent_code,
            },
        )
        return account

    @staticmethod
    def _assert_same_type(account: Account, requested: AccountType) -> None:
        if AccountType(account.account_type) != requested:
            logger.warning(
                "account_type_conflict",
                extra={
                    "account_code": account.code,
                    "existing_type": AccountType(account.account_type).value,
                    "requested_type": requested.value,
                },
            )
            raise AccountConflictError(
                account.code, AccountType(account.account_type).value, requested.value
            )

    def _ensure_subaccount(self, control_code: str, student_id: str, label: str) -> Account:
        control = self.resolve(control_code)
        code = f"{control_code}{SUBACCOUNT_SEPARATOR}{student_id}"
        return self.get_or_create(
            code=code,
            name=f"{control.name} - {label}",
            account_type=control.account_type,
            category=control.category,
            parent_code=control_code,
        )

    def ensure_student_receivable(self, student_id: str, student_name: str | None = None) -> Account:
        """Receivable sub-account ``1100-<studentId>``."""
        return self._ensure_subaccount(self.receivable_control, student_id, student_name or student_id)

    def ensure_student_advance(self, student_id: str, student_name: str | None = None) -> Account:
        """Deferred-income sub-account ``2200-<studentId>``."""
        return self._ensure_subaccount(self.advance_control, student_id, student_name or student_id)

    def receivable_code(self, student_id: str) -> str:
        return f"{self.receivable_control}{SUBACCOUNT_SEPARATOR}{student_id}"

    def advance_code(self, student_id: str) -> str:
        return f"{self.advance_control}{SUBACCOUNT_SEPARATOR}{student_id}"

    def deactivate(self, code: str) -> Account:
        account = self.resolve(code)
        account.is_active = False
        self.session.flush()
        logger.info("account_deactivated", extra={"account_code": code})
        return account

    def rollup_code(self, code: str) -> str:
        """Control account a code rolls up to (itself for control accounts)."""
        account = self.resolve(code, strict=False)
        if account is not None and account.parent_code:
            return account.parent_code
        return code

    def seed_chart(self, definitions: Iterable[Any]) -> list[Account]:
        """
        Create every configured account.

        ``definitions`` are objects with code, name, account_type, category
        and optional description attributes (ledger_config.AccountDefinition).
        """
        created = [
            self.get_or_create(
                code=d.code,
                name=d.name,
                account_type=d.account_type,
                category=d.category,
                description=getattr(d, "description", None),
            )
            for d in definitions
        ]
        logger.info("chart_seeded", extra={"account_count": len(created)})
        return created

    def list_accounts(self, include_inactive: bool = False) -> list[Account]:
        stmt = select(Account).order_by(Account.code)
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return list(self.session.execute(stmt).scalars())
