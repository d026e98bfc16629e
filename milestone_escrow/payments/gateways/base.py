from abc import ABC, abstractmethod


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.
    Amounts are integer minor units; every call returns the gateway's
    reference for the movement or raises PaymentGatewayError.
    """

    name = None

    def __init__(self, **kwargs):
        """Initialize the gateway with configuration."""
        self.config = kwargs

    @abstractmethod
    def charge_payer(self, amount: int, currency: str, method=None) -> str:
        """
        Collect funds from the payer into the platform account.

        Args:
            amount: Amount to charge, fees included
            currency: ISO currency code
            method: Gateway payment method identifier, if any

        Returns:
            str: Gateway reference of the charge
        """
        pass

    @abstractmethod
    def pay_out_to_payee(self, amount: int, currency: str, destination: str) -> str:
        """
        Send funds from the platform account to the payee.

        Args:
            amount: Net amount to pay out
            currency: ISO currency code
            destination: Payee account at the gateway

        Returns:
            str: Gateway reference of the payout
        """
        pass

    @abstractmethod
    def refund_payer(self, amount: int, currency: str, destination: str) -> str:
        """
        Return funds to the payer.

        Args:
            amount: Amount to refund
            currency: ISO currency code
            destination: Reference of the original charge

        Returns:
            str: Gateway reference of the refund
        """
        pass
