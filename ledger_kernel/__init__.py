"""
Ledger Kernel - shared foundation for the reconciliation engine.

Provides:
- Structured JSON logging
- Typed exception hierarchy
- Domain records (purchase lots, sale events, receivable balances)
- SQLAlchemy persistence for the receivable ledger and reference event store
- Read-only selectors implementing the event store contract
"""

__version__ = "0.1.0"
