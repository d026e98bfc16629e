"""
Error taxonomy shared by the ledger, the milestone state machine and the
dispute workflow.

Every engine error is a DRF ``APIException`` so an HTTP layer can surface it
without translation. ``BusinessRuleError`` subclasses are ordinary caller
rejections. ``InvariantViolation`` subclasses mean the ledger reached a state
that should be impossible; they are logged on the ``alerts`` logger when
raised and must never be retried blindly.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import APIException

alerts = logging.getLogger('alerts')


class EscrowEngineError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Escrow operation rejected.'
    default_code = 'escrow_error'


class BusinessRuleError(EscrowEngineError):
    pass


class InvalidTransition(BusinessRuleError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'invalid_transition'

    def __init__(self, entity, current, attempted):
        self.entity = entity
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} {entity} while it is '{current}'.")


class NotAuthorized(BusinessRuleError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'not_authorized'


class InvariantViolation(EscrowEngineError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Ledger invariant violated.'
    default_code = 'invariant_violation'

    def __init__(self, detail=None, code=None, **context):
        super().__init__(detail, code)
        self.context = context
        alerts.critical(f"{type(self).__name__}: {self.detail}", extra={'context': context})


class PaymentGatewayError(EscrowEngineError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment provider call failed.'
    default_code = 'gateway_error'
