#!/usr/bin/env python3
"""
Residence ledger command line.

Usage:
    python3 scripts/ledger_cli.py [--config FILE] [--db-url URL] <command> [options]

Examples:
    # Create tables and seed the chart of accounts
    python3 scripts/ledger_cli.py init

    # Accrue June rent for every debtor in a YAML directory
    python3 scripts/ledger_cli.py accrue --period 2025-06 --debtors debtors.yaml

    # Accrue every month of every lease up to August
    python3 scripts/ledger_cli.py backfill --debtors debtors.yaml --through 2025-08

    # Allocate a payment
    python3 scripts/ledger_cli.py allocate --payment-id PAY-1 --student-id S001 \\
        --date 2025-06-03 --rent 300.00 --admin 20.00 --method "Bank Transfer"

    # What does a student still owe?
    python3 scripts/ledger_cli.py outstanding --student-id S001

    # Reverse an entry, or forfeit an accrued month
    python3 scripts/ledger_cli.py reverse --transaction-id TXN... --reason "entered twice"
    python3 scripts/ledger_cli.py reverse --transaction-id TXN... --reason "left early" --forfeit

    # Integrity audit
    python3 scripts/ledger_cli.py audit --tolerance 0.01
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 72


def _fmt(value: Decimal) -> str:
    return f"${value:,.2f}"


def _money(text: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not an amount: {text!r}") from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Residence rental ledger: accruals, payment allocation and corrections.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML overriding the defaults.")
    parser.add_argument("--db-url", default=None, help="Database URL (overrides config and environment).")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create tables and seed the chart of accounts.")

    accrue = sub.add_parser("accrue", help="Accrue one month for every active debtor.")
    accrue.add_argument("--period", required=True, help="Billing period, YYYY-MM.")
    accrue.add_argument("--debtors", required=True, type=Path, help="Debtor directory YAML.")

    backfill = sub.add_parser("backfill", help="Accrue every month of every lease.")
    backfill.add_argument("--debtors", required=True, type=Path, help="Debtor directory YAML.")
    backfill.add_argument("--through", default=None, help="Last period to accrue, YYYY-MM.")

    allocate = sub.add_parser("allocate", help="Allocate a payment with Smart FIFO.")
    allocate.add_argument("--payment-id", required=True)
    allocate.add_argument("--student-id", required=True)
    allocate.add_argument("--date", required=True, type=date.fromisoformat, help="Payment date, YYYY-MM-DD.")
    allocate.add_argument("--rent", type=_money, default=None)
    allocate.add_argument("--admin", type=_money, default=None)
    allocate.add_argument("--deposit", type=_money, default=None)
    allocate.add_argument("--method", default="cash")

    outstanding = sub.add_parser("outstanding", help="Show a student's outstanding periods.")
    outstanding.add_argument("--student-id", required=True)

    reverse = sub.add_parser("reverse", help="Reverse an entry or forfeit an accrual.")
    reverse.add_argument("--transaction-id", required=True)
    reverse.add_argument("--reason", required=True)
    reverse.add_argument("--forfeit", action="store_true", help="Forfeit an accrued month.")
    reverse.add_argument(
        "--keep-payments", action="store_true",
        help="With --forfeit: do not reclassify settled cash as forfeited income.",
    )

    audit = sub.add_parser("audit", help="Run the ledger integrity audit.")
    audit.add_argument("--student-id", default=None)
    audit.add_argument("--tolerance", type=_money, default=Decimal("0.00"))

    return parser


def _cmd_init(ledger, args) -> int:
    codes = ledger.initialize()
    print(f"Initialized ledger with {len(codes)} accounts: {', '.join(codes)}")
    return 0


def _print_batch(result) -> int:
    for item in result.items:
        suffix = f" ({item.reason})" if item.reason else ""
        print(f"  {item.student_id:<12} {item.period}  {item.status.value:<8} {item.transaction_id or ''}{suffix}")
    print("-" * W)
    print(f"  created={result.created} skipped={result.skipped} errors={result.errors}")
    return 1 if result.errors else 0


def _cmd_accrue(ledger, args) -> int:
    from ledger_services.debtors import load_debtor_directory

    result = ledger.create_monthly_accruals_batch(args.period, load_debtor_directory(args.debtors))
    return _print_batch(result)


def _cmd_backfill(ledger, args) -> int:
    from ledger_services.debtors import load_debtor_directory

    result = ledger.backfill_lease_accruals(load_debtor_directory(args.debtors), through=args.through)
    return _print_batch(result)


def _cmd_allocate(ledger, args) -> int:
    from ledger_engines.allocation import PaymentComponent
    from ledger_services.allocation_service import PaymentEvent

    components = tuple(
        PaymentComponent(kind, amount)
        for kind, amount in (("rent", args.rent), ("admin", args.admin), ("deposit", args.deposit))
        if amount is not None
    )
    event = PaymentEvent(
        payment_id=args.payment_id,
        student_id=args.student_id,
        total_amount=sum((c.amount for c in components), Decimal("0.00")),
        payments=components,
        date=args.date,
        method=args.method,
    )
    outcome = ledger.allocate_payment(event)
    if not outcome.success:
        print(f"ERROR [{outcome.error}]: {outcome.message}", file=sys.stderr)
        return 1

    summary = outcome.allocation.summary
    for item in outcome.allocation.monthly_breakdown:
        print(
            f"  {item.month or 'advance':<8} {item.payment_type:<8} {_fmt(item.amount_allocated):>12}  "
            f"{item.allocation_type:<8} {item.transaction_id}"
        )
    print("-" * W)
    print(f"  Allocated:  {_fmt(summary.total_allocated)}")
    print(f"  Advance:    {_fmt(summary.advance_payment_amount)}")
    print(f"  Remaining:  {_fmt(summary.remaining_balance)}")
    return 0


def _cmd_outstanding(ledger, args) -> int:
    obligations = ledger.query_outstanding(args.student_id)
    if not obligations:
        print(f"  {args.student_id}: nothing outstanding")
        return 0
    print(f"  {'Period':<8} {'Rent':>12} {'Admin':>12} {'Deposit':>12}")
    for o in obligations:
        print(
            f"  {o.period:<8} {_fmt(o.rent_outstanding):>12} {_fmt(o.admin_outstanding):>12} "
            f"{_fmt(o.deposit_outstanding):>12}"
        )
    total = sum((o.total_outstanding for o in obligations), Decimal("0.00"))
    print("-" * W)
    print(f"  Total outstanding: {_fmt(total)}")
    return 0


def _cmd_reverse(ledger, args) -> int:
    if args.forfeit:
        result = ledger.reverse_forfeiture(
            args.transaction_id, args.reason, forfeit_payments=not args.keep_payments
        )
        print(f"  Reversal:   {result.reversal.reversal_transaction_id}")
        if result.forfeiture_transaction_id:
            print(f"  Forfeiture: {result.forfeiture_transaction_id} ({_fmt(result.forfeited_amount)})")
        return 0
    result = ledger.reverse_transaction(args.transaction_id, args.reason)
    print(f"  Reversal:   {result.reversal_transaction_id}")
    return 0


def _cmd_audit(ledger, args) -> int:
    from ledger_kernel.selectors.ledger_selector import LedgerFilter

    criteria = LedgerFilter(student_id=args.student_id) if args.student_id else None
    report = ledger.audit_ledger(criteria, tolerance=args.tolerance)
    for finding in report.findings:
        print(f"  {finding.kind:<20} {finding.transaction_id}  {finding.detail}")
    print("-" * W)
    print(f"  Scanned {report.entries_scanned} entries, {len(report.findings)} findings")
    return 0 if report.is_clean else 1


_COMMANDS = {
    "init": _cmd_init,
    "accrue": _cmd_accrue,
    "backfill": _cmd_backfill,
    "allocate": _cmd_allocate,
    "outstanding": _cmd_outstanding,
    "reverse": _cmd_reverse,
    "audit": _cmd_audit,
}


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    # Lazy imports so we fail fast on args first
    from ledger_config import load_settings
    from ledger_kernel.exceptions import LedgerError
    from ledger_kernel.logging_config import configure_logging
    from ledger_services.rental_ledger import RentalLedger

    settings = load_settings(args.config)
    if args.db_url:
        settings = settings.with_overrides(database_url=args.db_url)
    configure_logging(level=settings.log_level, stream=sys.stderr)

    ledger = RentalLedger.from_settings(settings)
    try:
        return _COMMANDS[args.command](ledger, args)
    except LedgerError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        ledger.dispose()


if __name__ == "__main__":
    sys.exit(main())
