from marketday.models.user import User
from marketday.models.vendor_profile import VendorProfile
from marketday.models.market import Market, MarketSchedule, ListingMarket
from marketday.models.listing import Listing
from marketday.models.order import Order, OrderItem
from marketday.models.payment import Payment, VendorPayout
from marketday.models.order_item_transition import OrderItemTransition
from marketday.models.notification import Notification
from marketday.models.platform_event import PlatformEvent

__all__ = [
    "User",
    "VendorProfile",
    "Market",
    "MarketSchedule",
    "ListingMarket",
    "Listing",
    "Order",
    "OrderItem",
    "Payment",
    "VendorPayout",
    "OrderItemTransition",
    "Notification",
    "PlatformEvent",
]
