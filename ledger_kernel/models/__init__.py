"""ORM models for the ledger kernel."""

from ledger_kernel.models.receivable import ReceivableBalanceModel
from ledger_kernel.models.sale import SaleModel
from ledger_kernel.models.shipment import ShipmentModel

__all__ = [
    "ReceivableBalanceModel",
    "SaleModel",
    "ShipmentModel",
]
