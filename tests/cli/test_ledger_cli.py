"""
End-to-end tests for the ledger command line against a file database.
"""

import pytest

from ledger_kernel.selectors.ledger_selector import LedgerFilter
from ledger_services.rental_ledger import RentalLedger
from scripts.ledger_cli import main

DEBTORS_YAML = (
    "debtors:\n"
    "  - student_id: S001\n"
    "    student_name: Tendai\n"
    "    lease_start_date: 2025-05-01\n"
    "    lease_end_date: 2025-12-31\n"
    "    room_price: \"220.00\"\n"
    "    admin_fee: \"20.00\"\n"
    "    deposit_amount: \"220.00\"\n"
)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def debtors_file(tmp_path):
    path = tmp_path / "debtors.yaml"
    path.write_text(DEBTORS_YAML)
    return path


@pytest.fixture
def cli(db_url, capsys):
    """Run the CLI against the test database and return (code, stdout, stderr)."""

    def _run(*args):
        code = main(["--db-url", db_url, *args])
        out, err = capsys.readouterr()
        return code, out, err

    code, _, _ = _run("init")
    assert code == 0
    return _run


def _accrual_id(db_url, settings, period):
    ledger = RentalLedger.from_settings(settings.with_overrides(database_url=db_url))
    try:
        [entry] = ledger.query_ledger(LedgerFilter(student_id="S001", accrual_period=period))
        return entry.transaction_id
    finally:
        ledger.dispose()


class TestInit:
    def test_reports_seeded_accounts(self, db_url, capsys):
        assert main(["--db-url", db_url, "init"]) == 0

        out = capsys.readouterr().out
        assert out.startswith("Initialized ledger with")
        assert "1100" in out
        assert "2200" in out

    def test_is_rerunnable(self, cli):
        code, out, _ = cli("init")
        assert code == 0


class TestAccrue:
    def test_monthly_batch(self, cli, debtors_file):
        code, out, _ = cli("accrue", "--period", "2025-06", "--debtors", str(debtors_file))

        assert code == 0
        assert "S001" in out
        assert "created=1 skipped=0 errors=0" in out

    def test_rerun_skips(self, cli, debtors_file):
        cli("accrue", "--period", "2025-06", "--debtors", str(debtors_file))

        code, out, _ = cli("accrue", "--period", "2025-06", "--debtors", str(debtors_file))

        assert code == 0
        assert "already_accrued" in out
        assert "created=0 skipped=1" in out

    def test_backfill(self, cli, debtors_file):
        code, out, _ = cli("backfill", "--debtors", str(debtors_file), "--through", "2025-07")

        assert code == 0
        assert "created=3" in out


class TestAllocate:
    def test_allocates_and_prints_summary(self, cli, debtors_file):
        cli("backfill", "--debtors", str(debtors_file), "--through", "2025-06")

        code, out, _ = cli(
            "allocate", "--payment-id", "PAY-1", "--student-id", "S001",
            "--date", "2025-06-03", "--rent", "300.00", "--method", "Bank Transfer",
        )

        assert code == 0
        assert "2025-05" in out
        assert "Allocated:  $300.00" in out
        assert "Remaining:  $380.00" in out

    def test_rejection_goes_to_stderr(self, cli):
        code, out, err = cli(
            "allocate", "--payment-id", "PAY-1", "--student-id", "S404",
            "--date", "2025-06-03", "--rent", "100.00",
        )

        assert code == 1
        assert "ERROR [NO_OUTSTANDING_OBLIGATIONS]" in err

    def test_bad_amount_is_an_argument_error(self, cli):
        with pytest.raises(SystemExit):
            cli("allocate", "--payment-id", "P", "--student-id", "S001",
                "--date", "2025-06-03", "--rent", "lots")


class TestOutstanding:
    def test_nothing_outstanding(self, cli):
        code, out, _ = cli("outstanding", "--student-id", "S001")

        assert code == 0
        assert "nothing outstanding" in out

    def test_lists_periods_and_total(self, cli, debtors_file):
        cli("backfill", "--debtors", str(debtors_file), "--through", "2025-06")

        code, out, _ = cli("outstanding", "--student-id", "S001")

        assert code == 0
        assert "2025-05" in out
        assert "2025-06" in out
        assert "Total outstanding: $680.00" in out


class TestReverseAndAudit:
    def test_reverse_accrual(self, cli, debtors_file, db_url, settings):
        cli("accrue", "--period", "2025-06", "--debtors", str(debtors_file))
        transaction_id = _accrual_id(db_url, settings, "2025-06")

        code, out, _ = cli("reverse", "--transaction-id", transaction_id, "--reason", "lease cancelled")

        assert code == 0
        assert "Reversal:" in out
        code, out, _ = cli("outstanding", "--student-id", "S001")
        assert "nothing outstanding" in out

    def test_forfeit_settled_month(self, cli, debtors_file, db_url, settings):
        cli("backfill", "--debtors", str(debtors_file), "--through", "2025-06")
        cli("allocate", "--payment-id", "PAY-1", "--student-id", "S001",
            "--date", "2025-06-03", "--rent", "300.00")
        transaction_id = _accrual_id(db_url, settings, "2025-06")

        code, out, _ = cli("reverse", "--transaction-id", transaction_id,
                           "--reason", "left early", "--forfeit")

        assert code == 0
        assert "Forfeiture:" in out
        assert "$80.00" in out

    def test_unknown_transaction_is_reported(self, cli):
        code, _, err = cli("reverse", "--transaction-id", "TXNMISSING", "--reason", "typo")

        assert code == 1
        assert "ERROR [ENTRY_NOT_FOUND]" in err

    def test_audit_clean_ledger(self, cli, debtors_file):
        cli("backfill", "--debtors", str(debtors_file), "--through", "2025-06")
        cli("allocate", "--payment-id", "PAY-1", "--student-id", "S001",
            "--date", "2025-06-03", "--rent", "300.00")

        code, out, _ = cli("audit", "--tolerance", "0.01")

        assert code == 0
        assert "0 findings" in out
