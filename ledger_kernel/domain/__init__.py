"""Pure domain types for the ledger kernel: clock, periods, metadata, drafts."""
