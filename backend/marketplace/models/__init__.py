from .tenancy import Store, StoreMember
from .auth import User, SessionToken
from .catalog import Listing, ListingVariant
from .inventory import InventoryLocation, InventoryItem, InventoryLevel, InventoryAdjustment
from .customers import Customer
from .orders import DraftOrder, DraftOrderItem, Order, OrderItem, OrderDiscount, OrderEvent, Fulfillment
from .payments import OrderPayment, ProcessedWebhookEvent, SellerBalance, SellerBalanceTransaction, SellerPayout
from .documents import DocumentSequence

__all__ = [
    'Store', 'StoreMember',
    'User', 'SessionToken',
    'Listing', 'ListingVariant',
    'InventoryLocation', 'InventoryItem', 'InventoryLevel', 'InventoryAdjustment',
    'Customer',
    'DraftOrder', 'DraftOrderItem', 'Order', 'OrderItem', 'OrderDiscount', 'OrderEvent', 'Fulfillment',
    'OrderPayment', 'ProcessedWebhookEvent', 'SellerBalance', 'SellerBalanceTransaction', 'SellerPayout',
    'DocumentSequence',
]
