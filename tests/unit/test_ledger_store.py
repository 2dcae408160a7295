"""
LedgerStore tests.

Tests cover:
- Posting: balanced entries persist with totals and account snapshots
- Validation: unbalanced, one-line, two-sided, sub-cent, unknown/inactive accounts
- Accrual idempotency: second accrual for a (student, period) is rejected
  unless the first was reversed
- Reversal: swapped sides, linkage, status transition
- Immutability: posted entries and lines cannot be edited or deleted
- Purge: administrative delete is allowed and logged
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.db.immutability import register_immutability_listeners, unregister_immutability_listeners
from ledger_kernel.domain.dtos import EntryDraft, LineSpec
from ledger_kernel.exceptions import (
    AlreadyReversedError,
    DuplicateAccrualError,
    EntryNotFoundError,
    ImmutabilityViolationError,
    InactiveAccountError,
    InvalidLineError,
    UnbalancedEntryError,
    UnknownAccountError,
)
from ledger_kernel.models.transaction_entry import EntrySource, EntryStatus, TransactionEntry
from ledger_kernel.selectors.ledger_selector import LedgerFilter, LedgerSelector


def _cash_receipt(amount: str = "100.00", **kwargs) -> EntryDraft:
    return EntryDraft(
        entry_date=date(2025, 6, 1),
        description="Cash receipt",
        source=EntrySource.MANUAL.value,
        lines=(
            LineSpec.debit_line("1000", amount),
            LineSpec.credit_line("4000", amount),
        ),
        **kwargs,
    )


def _accrual(registry, student_id: str = "S001", period: str = "2025-06") -> EntryDraft:
    receivable = registry.ensure_student_receivable(student_id).code
    return EntryDraft(
        entry_date=date(2025, 6, 1),
        description=f"Accrual {period}",
        source=EntrySource.RENTAL_ACCRUAL.value,
        lines=(
            LineSpec.debit_line(receivable, "220.00", charge_type="rent"),
            LineSpec.credit_line("4000", "220.00", charge_type="rent"),
        ),
        student_id=student_id,
        accrual_period=period,
    )


class TestPost:
    def test_balanced_entry_persists(self, store, seeded):
        entry = store.post(_cash_receipt("150.00"))

        assert entry.transaction_id.startswith("TXN20250615")
        assert entry.is_posted
        assert entry.total_debit == entry.total_credit == Decimal("150.00")
        assert entry.is_balanced
        assert [l.account_name for l in entry.lines] == ["Cash", "Rental Income"]
        assert entry.lines[0].account_type == "Asset"

    def test_entry_visible_through_selector(self, store, seeded):
        entry = store.post(_cash_receipt())
        dto = LedgerSelector(seeded).get(entry.transaction_id)
        assert dto is not None
        assert dto.status == "posted"
        assert dto.is_balanced

    def test_posting_logs_event(self, store, captured_logs):
        store.post(_cash_receipt())
        assert any(r["message"] == "entry_posted" for r in captured_logs())


class TestValidation:
    def test_unbalanced_rejected(self, store):
        draft = EntryDraft(
            entry_date=date(2025, 6, 1),
            description="bad",
            source="manual",
            lines=(LineSpec.debit_line("1000", "100.00"), LineSpec.credit_line("4000", "99.99")),
        )
        with pytest.raises(UnbalancedEntryError) as exc_info:
            store.post(draft)
        assert exc_info.value.debits == "100.00"
        assert exc_info.value.credits == "99.99"

    def test_single_line_rejected(self, store):
        draft = EntryDraft(
            entry_date=date(2025, 6, 1),
            description="bad",
            source="manual",
            lines=(LineSpec.debit_line("1000", "100.00"),),
        )
        with pytest.raises(InvalidLineError):
            store.post(draft)

    def test_two_sided_line_rejected(self, store):
        draft = EntryDraft(
            entry_date=date(2025, 6, 1),
            description="bad",
            source="manual",
            lines=(
                LineSpec("1000", debit=Decimal("10.00"), credit=Decimal("10.00")),
                LineSpec.credit_line("4000", "0.01"),
                LineSpec.debit_line("1000", "0.01"),
            ),
        )
        with pytest.raises(InvalidLineError, match="exactly one"):
            store.post(draft)

    def test_sub_cent_rejected(self, store):
        draft = EntryDraft(
            entry_date=date(2025, 6, 1),
            description="bad",
            source="manual",
            lines=(
                LineSpec("1000", debit=Decimal("10.005")),
                LineSpec("4000", credit=Decimal("10.005")),
            ),
        )
        with pytest.raises(InvalidLineError, match="sub-cent"):
            store.post(draft)

    def test_unknown_account_rejected(self, store):
        draft = EntryDraft(
            entry_date=date(2025, 6, 1),
            description="bad",
            source="manual",
            lines=(LineSpec.debit_line("1999", "1.00"), LineSpec.credit_line("4000", "1.00")),
        )
        with pytest.raises(UnknownAccountError):
            store.post(draft)

    def test_inactive_account_rejected(self, store, registry):
        registry.deactivate("4900")
        draft = EntryDraft(
            entry_date=date(2025, 6, 1),
            description="bad",
            source="manual",
            lines=(LineSpec.debit_line("1000", "1.00"), LineSpec.credit_line("4900", "1.00")),
        )
        with pytest.raises(InactiveAccountError):
            store.post(draft)

    def test_nothing_left_behind_after_failure(self, store, seeded):
        with pytest.raises(UnbalancedEntryError):
            store.post(EntryDraft(
                entry_date=date(2025, 6, 1),
                description="bad",
                source="manual",
                lines=(LineSpec.debit_line("1000", "2.00"), LineSpec.credit_line("4000", "1.00")),
            ))
        assert list(store.find_by_filter()) == []


class TestAccrualUniqueness:
    def test_second_accrual_for_period_rejected(self, store, registry):
        first = store.post(_accrual(registry))
        with pytest.raises(DuplicateAccrualError) as exc_info:
            store.post(_accrual(registry))
        assert exc_info.value.existing_transaction_id == first.transaction_id
        assert store.find_accrual("S001", "2025-06").transaction_id == first.transaction_id

    def test_reversed_accrual_frees_its_period(self, store, registry):
        first = store.post(_accrual(registry))
        store.reverse(first.transaction_id, "wrong month")

        second = store.post(_accrual(registry))

        assert second.transaction_id != first.transaction_id
        assert store.find_accrual("S001", "2025-06").transaction_id == second.transaction_id

    def test_other_period_and_student_allowed(self, store, registry):
        store.post(_accrual(registry, period="2025-06"))
        store.post(_accrual(registry, period="2025-07"))
        store.post(_accrual(registry, student_id="S002", period="2025-06"))
        criteria = LedgerFilter(sources=("rental_accrual",))
        assert len(list(store.find_by_filter(criteria))) == 3


class TestReverse:
    def test_reversal_swaps_sides(self, store):
        original = store.post(_cash_receipt("80.00"))
        result = store.reverse(original.transaction_id, "entered twice")

        reversal = result.reversal_entry
        assert EntryStatus(original.status) is EntryStatus.REVERSED
        assert reversal.reversal_of_id == original.id
        assert reversal.reference == original.transaction_id
        assert EntrySource(reversal.source) is EntrySource.REVERSAL
        assert [(l.account_code, l.debit, l.credit) for l in reversal.lines] == [
            ("1000", Decimal("0.00"), Decimal("80.00")),
            ("4000", Decimal("80.00"), Decimal("0.00")),
        ]
        assert reversal.entry_metadata["reason"] == "entered twice"
        assert result.effective_date == date(2025, 6, 15)

    def test_accrual_reversal_source(self, store, registry):
        original = store.post(_accrual(registry))
        result = store.reverse(original.transaction_id, "wrong month")
        assert EntrySource(result.reversal_entry.source) is EntrySource.RENTAL_ACCRUAL_REVERSAL
        assert result.reversal_entry.accrual_period is None

    def test_cannot_reverse_twice(self, store):
        original = store.post(_cash_receipt())
        store.reverse(original.transaction_id, "first")
        with pytest.raises(AlreadyReversedError):
            store.reverse(original.transaction_id, "second")

    def test_missing_entry(self, store):
        with pytest.raises(EntryNotFoundError):
            store.reverse("TXN-NOPE", "whatever")


class TestImmutability:
    def test_posted_description_cannot_change(self, store, seeded):
        entry = store.post(_cash_receipt())
        entry.description = "edited"
        with pytest.raises(ImmutabilityViolationError):
            seeded.flush()
        seeded.rollback()

    def test_posted_line_cannot_change(self, store, seeded):
        entry = store.post(_cash_receipt())
        entry.lines[0].description = "edited"
        with pytest.raises(ImmutabilityViolationError):
            seeded.flush()
        seeded.rollback()

    def test_posted_entry_cannot_be_deleted(self, store, seeded):
        entry = store.post(_cash_receipt())
        seeded.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            seeded.flush()
        seeded.rollback()

    def test_guards_can_be_lifted_and_restored(self, store, seeded):
        entry = store.post(_cash_receipt())
        unregister_immutability_listeners()
        try:
            entry.description = "edited"
            seeded.flush()
        finally:
            register_immutability_listeners()

        entry.description = "edited again"
        with pytest.raises(ImmutabilityViolationError):
            seeded.flush()
        seeded.rollback()

    def test_approval_is_allowed(self, store):
        entry = store.post(_cash_receipt())
        approved = store.approve(entry.transaction_id, "finance.manager")
        assert approved.approved_by == "finance.manager"
        assert approved.approved_at is not None

    def test_purge_removes_entry(self, store, seeded, captured_logs):
        entry = store.post(_cash_receipt())
        removed = store.purge([entry.transaction_id], reason="duplicate")
        assert removed == [entry.transaction_id]
        assert seeded.query(TransactionEntry).count() == 0
        assert any(r["message"] == "entry_purged" for r in captured_logs())
