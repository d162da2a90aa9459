"""Operations Ledger - inventory ledger and production-batch transaction engine."""

__version__ = "0.1.0"
