"""Checkout: create a pending transaction and initialize its mobile-money charge."""
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from settlement.core.exceptions import NotFound, UpstreamFailure, ValidationError
from settlement.database.ledger_store import LedgerStore
from settlement.database.models import ROLE_AFFILIATE, Transaction
from settlement.integrations.mobile_money import RoutingError, resolve_route
from settlement.integrations.payout_gateway import PayoutGatewayClient, PayoutGatewayError
from settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def new_payment_reference() -> str:
    return f"txn_{uuid.uuid4().hex}"


@dataclass
class CheckoutSession:
    authorization_url: str
    reference: str
    transaction: Transaction


class PaymentInitiator:
    """Starts a customer checkout for a single product."""

    def __init__(
        self,
        store: LedgerStore,
        gateway: PayoutGatewayClient,
        callback_url: Optional[str] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.callback_url = callback_url

    async def initiate(
        self,
        product_id: uuid.UUID,
        customer_name: str,
        customer_email: str,
        customer_phone: str,
        shipping_address: str,
        payment_number: str,
        referral_code: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a pending transaction and ask the gateway for a charge.

        Args:
            product_id: Product being bought
            customer_name: Buyer's name
            customer_email: Buyer's email (required by the gateway)
            customer_phone: Buyer's contact number
            shipping_address: Delivery address
            payment_number: Mobile-money number the charge is sent to
            referral_code: Optional affiliate referral code

        Returns:
            CheckoutSession: Authorization URL and payment reference

        Raises:
            NotFound: If the product does not exist or is inactive
            ValidationError: If the referral code or payment number is invalid
            UpstreamFailure: If the transaction cannot be recorded or the
                gateway does not initialize the charge
        """
        product = await self.store.get_product(product_id)
        if product is None or not product.is_active:
            raise NotFound("Product not found")

        affiliate_id = None
        if referral_code:
            affiliate = await self.store.get_user_by_referral_code(referral_code)
            if affiliate is None or affiliate.role != ROLE_AFFILIATE:
                raise ValidationError("Invalid referral code")
            affiliate_id = affiliate.id

        try:
            route = resolve_route(payment_number)
        except RoutingError:
            raise ValidationError("Invalid mobile money number prefix")

        reference = new_payment_reference()
        try:
            transaction = await self.store.create_transaction(
                product_id=product.id,
                customer_name=customer_name,
                customer_email=customer_email,
                customer_phone=customer_phone,
                shipping_address=shipping_address,
                amount_minor=product.price_minor,
                payment_reference=reference,
                affiliate_id=affiliate_id,
            )
        except SQLAlchemyError as e:
            logger.error("transaction_create_failed", product_id=str(product_id), error=str(e))
            raise UpstreamFailure("Failed to create transaction record")

        log = logger.bind(transaction_id=str(transaction.id), reference=reference)
        log.info(
            "transaction_created",
            amount_minor=transaction.amount_minor,
            has_affiliate=affiliate_id is not None,
            provider=route.charge_provider,
        )

        try:
            data = await self.gateway.initialize_transaction(
                email=customer_email,
                amount_minor=transaction.amount_minor,
                reference=reference,
                phone=route.msisdn,
                provider=route.charge_provider,
                callback_url=self.callback_url,
                metadata={"transaction_id": str(transaction.id)},
            )
        except PayoutGatewayError as e:
            log.error("payment_initialization_failed", error=str(e))
            metrics.record_payment_initialization("failed")
            raise UpstreamFailure("Payment initialization failed")

        metrics.record_payment_initialization("success")
        log.info("payment_initialized")
        return CheckoutSession(
            authorization_url=data.get("authorization_url", ""),
            reference=reference,
            transaction=transaction,
        )
