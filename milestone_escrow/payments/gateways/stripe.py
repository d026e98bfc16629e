import logging

import stripe
from django.conf import settings

from milestone_escrow.exceptions import PaymentGatewayError
from .base import BasePaymentGateway

logger = logging.getLogger(__name__)


class StripeGateway(BasePaymentGateway):
    """
    Stripe gateway for escrow funding, payouts and refunds.
    Charges are PaymentIntents, payouts are Connect transfers and refunds are
    issued against the original PaymentIntent.
    """

    name = 'stripe'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        stripe.api_key = kwargs.get('api_key') or settings.STRIPE_SECRET_KEY

    def _currency(self, currency):
        return (currency or settings.STRIPE_CURRENCY).lower()

    def charge_payer(self, amount, currency, method=None):
        params = {
            'amount': amount,
            'currency': self._currency(currency),
            'metadata': {'escrow_funding': 'true'},
        }
        if method:
            params.update(payment_method=method, confirm=True)
        else:
            params['automatic_payment_methods'] = {'enabled': True}

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe API error in charge: {str(e)}")
            raise PaymentGatewayError(f"Stripe charge failed: {e.user_message or str(e)}")

        logger.info(f"Stripe Payment Intent created: {intent.id}, amount: {amount}")
        return intent.id

    def pay_out_to_payee(self, amount, currency, destination):
        try:
            transfer = stripe.Transfer.create(
                amount=amount,
                currency=self._currency(currency),
                destination=destination,
                metadata={'escrow_release': 'true'},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe transfer error: {str(e)}")
            raise PaymentGatewayError(f"Stripe transfer failed: {e.user_message or str(e)}")

        logger.info(f"Stripe transfer created: {transfer.id} to {destination}, amount: {amount}")
        return transfer.id

    def refund_payer(self, amount, currency, destination):
        try:
            refund = stripe.Refund.create(
                payment_intent=destination,
                amount=amount,
                metadata={'escrow_refund': 'true'},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error: {str(e)}")
            raise PaymentGatewayError(f"Stripe refund failed: {e.user_message or str(e)}")

        logger.info(f"Stripe refund created: {refund.id} for intent {destination}")
        return refund.id
