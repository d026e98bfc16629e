from rest_framework import status

from escrow.exceptions import ResolutionAmountMismatch
from milestone_escrow.exceptions import BusinessRuleError, InvalidTransition

__all__ = ['DisputeAlreadyOpen', 'DisputeClosed', 'ResolutionAmountMismatch']


class DisputeAlreadyOpen(BusinessRuleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This milestone already has an open dispute.'
    default_code = 'dispute_already_open'


class DisputeClosed(InvalidTransition):
    default_code = 'dispute_closed'

    def __init__(self, attempted):
        super().__init__('dispute', 'resolved', attempted)
