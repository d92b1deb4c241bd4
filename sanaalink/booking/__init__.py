from sanaalink.booking.lifecycle import (
    BookingAction,
    BookingManager,
    BookingStatusMachine,
    BookingTab,
    filter_bookings,
)
from sanaalink.booking.submission import (
    BookingCheckout,
    OrderCheckout,
    await_payment,
    book_service,
    order_product,
)

__all__ = [
    "BookingStatusMachine",
    "BookingAction",
    "BookingManager",
    "BookingTab",
    "filter_bookings",
    "BookingCheckout",
    "OrderCheckout",
    "book_service",
    "order_product",
    "await_payment",
]
