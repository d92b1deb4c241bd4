from sanaalink.payments.gateway import PaymentGateway, StkPushGateway
from sanaalink.payments.realtime import PaymentChannel, PaymentSubscription, wait_for_terminal

__all__ = [
    "PaymentGateway",
    "StkPushGateway",
    "PaymentChannel",
    "PaymentSubscription",
    "wait_for_terminal",
]
