"""
Ledger Kernel - double-entry core for the residence rental ledger.

Provides:
- Chart of accounts with per-student receivable sub-accounts
- Balanced, immutable transaction entries with per-line period tags
- Reversal by inverse entry, never by mutation
- Read models for outstanding obligations
"""

__version__ = "0.1.0"
