"""
ledger_config -- ledger settings and chart of accounts.

Responsibility:
    Single place where configuration files and environment variables are
    read.  Services receive a ``LedgerSettings`` instance and never read the
    environment themselves.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from ``ledger_config``.
"""

from ledger_config.loader import DEFAULTS_PATH, load_settings, load_yaml_file
from ledger_config.schema import AccountCodes, AccountDefinition, LedgerSettings

__all__ = [
    "DEFAULTS_PATH",
    "AccountCodes",
    "AccountDefinition",
    "LedgerSettings",
    "load_settings",
    "load_yaml_file",
]
