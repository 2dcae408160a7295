"""
Per-student serialization under real threads.

Each worker either shares one RentalLedger (in-process lock registry) or
owns a separate RentalLedger with its own engine over the same file
database, so only the database layer keeps the workers apart.

Run with:
    pytest tests/concurrency/test_student_serialization.py -v -m slow
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from ledger_kernel.selectors.ledger_selector import LedgerFilter
from ledger_kernel.services.student_lock_service import StudentLockRegistry, StudentLockService
from ledger_services.accrual_service import AccrualStatus
from ledger_services.rental_ledger import RentalLedger
from tests.conftest import make_debtor, make_payment

pytestmark = pytest.mark.slow

D = Decimal
WORKERS = 4


@pytest.fixture
def file_settings(settings, tmp_path):
    return settings.with_overrides(database_url=f"sqlite:///{tmp_path / 'ledger.db'}")


@pytest.fixture
def primary(file_settings, clock):
    ledger = RentalLedger.from_settings(file_settings, clock=clock)
    ledger.initialize()
    yield ledger
    ledger.dispose()


@pytest.fixture(params=["shared", "separate"])
def worker_ledgers(request, primary, file_settings, clock):
    if request.param == "shared":
        yield [primary] * WORKERS
        return
    ledgers = [RentalLedger.from_settings(file_settings, clock=clock) for _ in range(WORKERS)]
    yield ledgers
    for ledger in ledgers:
        ledger.dispose()


def _run_together(ledgers, work):
    barrier = threading.Barrier(len(ledgers))

    def _task(index):
        barrier.wait()
        return work(index, ledgers[index])

    with ThreadPoolExecutor(max_workers=len(ledgers)) as pool:
        return list(pool.map(_task, range(len(ledgers))))


class TestConcurrentAccruals:
    def test_same_period_accrues_once(self, primary, worker_ledgers):
        debtor = make_debtor()

        outcomes = _run_together(worker_ledgers, lambda i, ledger: ledger.accrue_debtor(debtor, "2025-06"))

        statuses = sorted(o.status.value for o in outcomes)
        assert statuses.count(AccrualStatus.CREATED.value) == 1
        assert statuses.count(AccrualStatus.SKIPPED.value) == WORKERS - 1
        assert len({o.transaction_id for o in outcomes}) == 1
        entries = list(primary.query_ledger(LedgerFilter(student_id="S001", accrual_period="2025-06")))
        assert len(entries) == 1
        assert primary.account_balance("1100-S001").balance == D("220.00")


class TestConcurrentPayments:
    @pytest.fixture
    def accrued(self, primary):
        debtor = make_debtor()
        primary.accrue_debtor(debtor, "2025-05")
        primary.accrue_debtor(debtor, "2025-06")
        return primary

    def test_payments_never_over_settle(self, accrued, worker_ledgers):
        outcomes = _run_together(
            worker_ledgers,
            lambda i, ledger: ledger.allocate_payment(make_payment(f"PAY-{i}", rent="200.00")),
        )

        assert all(o.success for o in outcomes)
        settled = sum(o.allocation.summary.total_allocated for o in outcomes)
        advanced = sum(o.allocation.summary.advance_payment_amount for o in outcomes)
        assert settled == D("440.00")
        assert advanced == D("360.00")
        assert accrued.account_balance("1000").balance == D("800.00")
        assert accrued.account_balance("2200-S001").balance == D("360.00")
        outstanding = {o.period: o for o in accrued.query_outstanding("S001")}
        assert all(o.rent_outstanding == D("0.00") for o in outstanding.values())

    def test_same_payment_id_allocates_once(self, accrued, worker_ledgers):
        outcomes = _run_together(
            worker_ledgers,
            lambda i, ledger: ledger.allocate_payment(make_payment("PAY-DUP", rent="100.00")),
        )

        assert sum(1 for o in outcomes if o.success) == 1
        assert {o.error for o in outcomes if not o.success} == {"PAYMENT_ALREADY_ALLOCATED"}
        assert accrued.account_balance("1000").balance == D("100.00")


class TestLockRegistry:
    def test_hold_is_reentrant(self):
        registry = StudentLockRegistry()
        with registry.hold("S001"):
            with registry.hold("S001"):
                assert registry.active_count() == 1
        assert registry.active_count() == 0

    def test_same_student_is_serialized(self):
        registry = StudentLockRegistry()
        inside = []
        overlaps = []
        guard = threading.Lock()

        def _critical(_):
            with registry.hold("S001"):
                with guard:
                    inside.append(1)
                    overlaps.append(len(inside))
                time.sleep(0.01)
                with guard:
                    inside.pop()

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            list(pool.map(_critical, range(WORKERS * 2)))

        assert max(overlaps) == 1
        assert registry.active_count() == 0

    def test_different_students_do_not_contend(self):
        registry = StudentLockRegistry()
        entered = threading.Event()

        def _other():
            with registry.hold("S002"):
                entered.set()

        with registry.hold("S001"):
            worker = threading.Thread(target=_other)
            worker.start()
            assert entered.wait(timeout=5)
            worker.join()


class TestRowLock:
    def test_version_increments_per_acquire(self, session):
        service = StudentLockService(session)

        assert service.acquire("S001") == 1
        assert service.acquire("S001") == 2
        assert service.acquire("S002") == 1
