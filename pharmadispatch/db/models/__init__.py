"""
Database Models
"""
from pharmadispatch.db.models.pharmacy import Pharmacy
from pharmadispatch.db.models.order import Order
from pharmadispatch.db.models.courier import Courier
from pharmadispatch.db.models.delivery import Delivery
from pharmadispatch.db.models.wallet import Wallet
from pharmadispatch.db.models.wallet_transaction import WalletTransaction
from pharmadispatch.db.models.setting import Setting
from pharmadispatch.db.models.outbox_message import OutboxMessage

__all__ = [
    "Pharmacy",
    "Order",
    "Courier",
    "Delivery",
    "Wallet",
    "WalletTransaction",
    "Setting",
    "OutboxMessage",
]
