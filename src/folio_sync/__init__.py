"""Background orchestration for a personal-finance ledger: scheduler, run ledger, broker tokens."""

__version__ = "0.1.0"
