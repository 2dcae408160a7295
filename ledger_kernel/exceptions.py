"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LedgerError:

    LedgerError (base)
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- InvalidLineError
    |   +-- InactiveAccountError
    |   +-- DuplicateAccrualError
    |
    +-- AccountError
    |   +-- UnknownAccountError
    |   +-- AccountConflictError
    |
    +-- ReversalError
    |   +-- EntryNotFoundError
    |   +-- AlreadyReversedError
    |   +-- NotAnAccrualError
    |
    +-- AllocationError
    |   +-- NoOutstandingObligationsError
    |   +-- InvalidPaymentError
    |   +-- PaymentAlreadyAllocatedError
    |
    +-- CorrectionError
    |   +-- DepositReversalExistsError
    |   +-- DepositAlreadySettledError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Posting         | UNBALANCED_ENTRY              | Debits != Credits (to the cent)
                | INVALID_LINE                  | Line has both/neither side, negative,
                |                               | or sub-cent amount
                | INACTIVE_ACCOUNT              | Posting to a deactivated account
                | DUPLICATE_ACCRUAL             | (student, period) already accrued
----------------|-------------------------------|---------------------------------------
Account         | UNKNOWN_ACCOUNT               | Code not in the registry
                | ACCOUNT_CONFLICT              | Code exists with a different type
----------------|-------------------------------|---------------------------------------
Reversal        | ENTRY_NOT_FOUND               | Transaction id doesn't exist
                | ALREADY_REVERSED              | Entry is not in posted state
                | NOT_AN_ACCRUAL                | Forfeiture on a non-accrual entry
----------------|-------------------------------|---------------------------------------
Allocation      | NO_OUTSTANDING_OBLIGATIONS    | Student has no accrual history
                | INVALID_PAYMENT               | Components don't sum / non-positive
                | PAYMENT_ALREADY_ALLOCATED     | Payment id was already allocated
----------------|-------------------------------|---------------------------------------
Correction      | DEPOSIT_REVERSAL_EXISTS       | Deposit write-off already posted
                | DEPOSIT_ALREADY_SETTLED       | Nothing unpaid to write off
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying a posted entry or its lines

===============================================================================
HANDLING PATTERNS
===============================================================================

Catch by type, read structured attributes, surface ``code`` to callers:

    try:
        store.post(draft)
    except UnbalancedEntryError as e:
        return {"error": e.code, "debits": e.debits, "credits": e.credits}

DuplicateAccrualError is raised by the store but the accrual generator turns
it into a SKIPPED outcome: re-running an accrual is not a failure.
"""


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Posting-related exceptions


class PostingError(LedgerError):
    """Base exception for posting-related errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str, transaction_id: str | None = None):
        self.debits = debits
        self.credits = credits
        self.transaction_id = transaction_id
        super().__init__(
            f"Unbalanced entry {transaction_id or '<new>'}: "
            f"debits={debits}, credits={credits}"
        )


class InvalidLineError(PostingError):
    """A ledger line violates the one-side, non-negative, cents rule."""

    code: str = "INVALID_LINE"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Invalid line on account {account_code}: {reason}")


class InactiveAccountError(PostingError):
    """Posting to an account that has been deactivated."""

    code: str = "INACTIVE_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account is inactive: {account_code}")


class DuplicateAccrualError(PostingError):
    """An accrual for this student and period already exists."""

    code: str = "DUPLICATE_ACCRUAL"

    def __init__(self, student_id: str, period: str, existing_transaction_id: str | None = None):
        self.student_id = student_id
        self.period = period
        self.existing_transaction_id = existing_transaction_id
        super().__init__(
            f"Accrual already exists for student {student_id} period {period}"
        )


# Account-related exceptions


class AccountError(LedgerError):
    """Base exception for chart-of-accounts errors."""

    code: str = "ACCOUNT_ERROR"


class UnknownAccountError(AccountError):
    """Account code is not registered."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Unknown account code: {account_code}")


class AccountConflictError(AccountError):
    """Account code already exists with a different account type."""

    code: str = "ACCOUNT_CONFLICT"

    def __init__(self, account_code: str, existing_type: str, requested_type: str):
        self.account_code = account_code
        self.existing_type = existing_type
        self.requested_type = requested_type
        super().__init__(
            f"Account {account_code} exists as {existing_type}, "
            f"cannot register as {requested_type}"
        )


# Reversal-related exceptions


class ReversalError(LedgerError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"


class EntryNotFoundError(ReversalError):
    """Transaction entry does not exist."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction entry not found: {transaction_id}")


class AlreadyReversedError(ReversalError):
    """Entry is not in posted state and cannot be reversed again."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Transaction {transaction_id} cannot be reversed (status={status})"
        )


class NotAnAccrualError(ReversalError):
    """Forfeiture was requested for an entry that is not a rental accrual."""

    code: str = "NOT_AN_ACCRUAL"

    def __init__(self, transaction_id: str, source: str):
        self.transaction_id = transaction_id
        self.source = source
        super().__init__(
            f"Transaction {transaction_id} has source {source}, expected rental_accrual"
        )


# Allocation-related exceptions


class AllocationError(LedgerError):
    """Base exception for payment allocation errors."""

    code: str = "ALLOCATION_ERROR"


class NoOutstandingObligationsError(AllocationError):
    """Student has no accrual history to allocate against."""

    code: str = "NO_OUTSTANDING_OBLIGATIONS"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(
            f"No outstanding balances found for student {student_id}"
        )


class InvalidPaymentError(AllocationError):
    """Payment event is malformed."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, payment_id: str, reason: str):
        self.payment_id = payment_id
        self.reason = reason
        super().__init__(f"Invalid payment {payment_id}: {reason}")


class PaymentAlreadyAllocatedError(AllocationError):
    """Payment id has already produced settlement entries."""

    code: str = "PAYMENT_ALREADY_ALLOCATED"

    def __init__(self, payment_id: str, transaction_ids: list[str]):
        self.payment_id = payment_id
        self.transaction_ids = transaction_ids
        super().__init__(
            f"Payment {payment_id} already allocated "
            f"({len(transaction_ids)} entries)"
        )


# Correction-related exceptions


class CorrectionError(LedgerError):
    """Base exception for correction workflows."""

    code: str = "CORRECTION_ERROR"


class DepositReversalExistsError(CorrectionError):
    """Unpaid deposit was already written off for this student."""

    code: str = "DEPOSIT_REVERSAL_EXISTS"

    def __init__(self, student_id: str, transaction_id: str):
        self.student_id = student_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Deposit reversal already exists for student {student_id}: {transaction_id}"
        )


class DepositAlreadySettledError(CorrectionError):
    """There is no unpaid deposit to write off."""

    code: str = "DEPOSIT_ALREADY_SETTLED"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"No unpaid deposit for student {student_id}")


# Immutability


class ImmutabilityViolationError(LedgerError):
    """Attempt to modify a posted entry or one of its lines."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
