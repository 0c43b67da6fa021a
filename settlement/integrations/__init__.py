"""External integrations: payout gateway, mobile-money routing, webhooks and auth."""
from .auth import AuthVerifier, Identity
from .mobile_money import MobileMoneyRoute, RoutingError, resolve_route
from .payout_gateway import PayoutGatewayClient, PayoutGatewayError, TransferHandle
from .webhook_handler import InvalidSignature, WebhookError, WebhookHandler

__all__ = [
    "AuthVerifier",
    "Identity",
    "InvalidSignature",
    "MobileMoneyRoute",
    "PayoutGatewayClient",
    "PayoutGatewayError",
    "RoutingError",
    "TransferHandle",
    "WebhookError",
    "WebhookHandler",
    "resolve_route",
]
