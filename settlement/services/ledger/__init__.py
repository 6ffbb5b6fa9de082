"""
Ledger services package.

- ledger_service: atomic credit/debit/reverse and balance verification
"""

from settlement.services.ledger.ledger_service import LedgerService


__all__ = ["LedgerService"]
