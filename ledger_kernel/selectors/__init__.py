"""Read-only query selectors."""

from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.event_selector import EventSelector
from ledger_kernel.selectors.receivable_selector import ReceivableSelector

__all__ = [
    "BaseSelector",
    "EventSelector",
    "ReceivableSelector",
]
