"""
AccountRegistry tests: chart seeding, student sub-accounts, conflicts.
"""

import pytest

from ledger_kernel.exceptions import AccountConflictError, UnknownAccountError
from ledger_kernel.models.account import AccountType


class TestSeedChart:
    def test_seed_creates_configured_accounts(self, seeded, registry, settings):
        codes = [a.code for a in registry.list_accounts()]
        assert codes == sorted(a.code for a in settings.accounts)

    def test_seed_is_idempotent(self, seeded, registry, settings):
        again = registry.seed_chart(settings.accounts)
        assert len(again) == len(settings.accounts)
        assert len(registry.list_accounts()) == len(settings.accounts)

    def test_normal_balance_follows_type(self, seeded, registry):
        assert registry.resolve("1100").is_debit_normal
        assert not registry.resolve("2020").is_debit_normal
        assert not registry.resolve("4000").is_debit_normal


class TestStudentSubAccounts:
    def test_receivable_subaccount_inherits_control(self, seeded, registry):
        account = registry.ensure_student_receivable("S001", "Jane Doe")
        assert account.code == "1100-S001"
        assert account.parent_code == "1100"
        assert AccountType(account.account_type) is AccountType.ASSET
        assert "Jane Doe" in account.name
        assert account.is_subaccount
        assert registry.rollup_code("1100-S001") == "1100"

    def test_advance_subaccount_is_liability(self, seeded, registry):
        account = registry.ensure_student_advance("S001")
        assert account.code == "2200-S001"
        assert AccountType(account.account_type) is AccountType.LIABILITY

    def test_ensure_twice_returns_same_row(self, seeded, registry):
        first = registry.ensure_student_receivable("S001")
        second = registry.ensure_student_receivable("S001")
        assert first.id == second.id


class TestLookupErrors:
    def test_unknown_code_strict(self, seeded, registry):
        with pytest.raises(UnknownAccountError) as exc_info:
            registry.resolve("9999")
        assert exc_info.value.account_code == "9999"

    def test_unknown_code_lenient(self, seeded, registry):
        assert registry.resolve("9999", strict=False) is None

    def test_type_conflict(self, seeded, registry):
        with pytest.raises(AccountConflictError) as exc_info:
            registry.get_or_create("4000", "Rental Income", AccountType.EXPENSE)
        assert exc_info.value.existing_type == "Income"
        assert exc_info.value.requested_type == "Expense"

    def test_deactivated_account_hidden_from_listing(self, seeded, registry):
        registry.deactivate("4900")
        assert "4900" not in [a.code for a in registry.list_accounts()]
        assert "4900" in [a.code for a in registry.list_accounts(include_inactive=True)]
