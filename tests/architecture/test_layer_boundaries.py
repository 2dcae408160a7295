"""
Layer boundary contract.

1. ledger_kernel/** may NOT import ledger_services, ledger_config or
   ledger_engines.  The kernel never depends upward.

2. ledger_engines/** are pure: no ORM, no database drivers, no services
   or config.

3. Only the kernel and the services touch the ORM models.

4. The ledger invariants declaration is complete and non-empty.

These tests read source code via AST; they cannot break anything.
"""

import ast
import glob
from pathlib import Path

from ledger_kernel.invariants import ALL_LEDGER_INVARIANTS, FORBIDDEN_KERNEL_IMPORTS, LedgerInvariant

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[str]:
    return sorted(glob.glob(f"{ROOT / package}/**/*.py", recursive=True))


def _extract_imports(filepath: str) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(Path(filepath).read_text(), filename=filepath)
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {Path(filepath).relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:
    def test_packages_exist(self):
        for package in ("ledger_kernel", "ledger_engines", "ledger_config", "ledger_services"):
            assert _python_files(package), f"{package} has no modules"

    def test_kernel_does_not_import_upward(self):
        violations = _violations("ledger_kernel", FORBIDDEN_KERNEL_IMPORTS)
        assert not violations, (
            "Kernel boundary violation - ledger_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )


class TestEnginePurity:
    FORBIDDEN = (
        "sqlalchemy",
        "sqlite3",
        "psycopg2",
        "ledger_services",
        "ledger_config",
        "ledger_kernel.db.engine",
        "ledger_kernel.models",
        "ledger_kernel.services",
        "ledger_kernel.selectors",
    )

    def test_engines_do_no_io(self):
        violations = _violations("ledger_engines", self.FORBIDDEN)
        assert not violations, (
            "Engine purity violation - ledger_engines/** must stay free of "
            "ORM and service imports:\n" + "\n".join(violations)
        )


class TestConfigIndependence:
    def test_config_imports_no_services_or_kernel(self):
        violations = _violations("ledger_config", ("ledger_services", "ledger_kernel", "sqlalchemy"))
        assert not violations, "\n".join(violations)


class TestDomainPurity:
    def test_domain_has_no_orm_imports(self):
        violations = _violations("ledger_kernel/domain", ("sqlalchemy", "ledger_kernel.db.engine",
                                                          "ledger_kernel.models"))
        assert not violations, "\n".join(violations)


class TestInvariantsDeclaration:
    def test_invariants_declared(self):
        required = {
            "DOUBLE_ENTRY_BALANCE",
            "ONE_SIDED_LINES",
            "IMMUTABILITY",
            "ACCRUAL_IDEMPOTENCY",
            "PERIOD_TAGGING",
            "STUDENT_SERIALIZATION",
        }
        assert {inv.name for inv in LedgerInvariant} >= required
        assert ALL_LEDGER_INVARIANTS == frozenset(LedgerInvariant)

    def test_forbidden_imports_declared(self):
        for package in ("ledger_services", "ledger_config", "ledger_engines"):
            assert package in FORBIDDEN_KERNEL_IMPORTS
