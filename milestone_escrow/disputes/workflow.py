"""
Dispute phase rules.

Functions take the current phase plus whatever facts about the actor the
rule needs and return the next phase, raising when the move is not allowed.
``DisputeService`` does the locking, persistence and ledger calls.
"""
from milestone_escrow.exceptions import InvalidTransition, NotAuthorized
from projects.models import Milestone
from .exceptions import DisputeClosed, ResolutionAmountMismatch
from .models import Dispute

OPEN_STATUSES = tuple(value for value, _ in Dispute.STATUS_CHOICES if value != Dispute.RESOLVED)
RESOLVABLE_STATUSES = (Dispute.IN_MEDIATION, Dispute.IN_ARBITRATION)


def guard(status, allowed, attempted):
    if status == Dispute.RESOLVED:
        raise DisputeClosed(attempted)
    if status not in allowed:
        raise InvalidTransition('dispute', status, attempted)


def require(condition, message):
    if not condition:
        raise NotAuthorized(message)


def pay_fee(status, is_raiser):
    guard(status, (Dispute.PENDING_FEE,), 'pay the fee for')
    require(is_raiser, 'Only the party who raised the dispute pays its fee.')
    return Dispute.PENDING_REVIEW


def attach_analysis(status):
    guard(status, (Dispute.PENDING_REVIEW,), 'attach analysis to')
    return status


def begin_self_resolution(status, is_participant):
    guard(status, (Dispute.PENDING_REVIEW,), 'begin self resolution of')
    require(is_participant, 'Only the payer or payee can choose to settle directly.')
    return Dispute.SELF_RESOLUTION


def record_evidence(status, is_participant):
    guard(status, OPEN_STATUSES, 'submit evidence to')
    require(is_participant, 'Only the payer or payee can submit evidence.')
    return status


def post_message(status, may_speak):
    guard(status, OPEN_STATUSES, 'post a message to')
    require(may_speak, 'Only participants and the assigned neutral can post messages.')
    return status


def assign_mediator(status, is_moderator):
    guard(status, (Dispute.PENDING_REVIEW, Dispute.SELF_RESOLUTION), 'assign a mediator to')
    require(is_moderator, 'Only staff can assign a mediator.')
    return Dispute.IN_MEDIATION


def assign_arbitrator(status, is_moderator):
    guard(status, (Dispute.PENDING_REVIEW, Dispute.SELF_RESOLUTION, Dispute.ESCALATED), 'assign an arbitrator to')
    require(is_moderator, 'Only staff can assign an arbitrator.')
    return Dispute.IN_ARBITRATION


def escalate(status, may_escalate):
    guard(status, (Dispute.IN_MEDIATION,), 'escalate')
    require(may_escalate, 'Only participants, the mediator or staff can escalate.')
    return Dispute.ESCALATED


def stalled_mediation(status, mediation_age, message_count, timeout, message_limit):
    """Why a mediation should go to arbitration, or None while it is still making progress."""
    if status != Dispute.IN_MEDIATION:
        return None
    if mediation_age is not None and mediation_age > timeout:
        return f"Mediation open for more than {timeout.total_seconds() / 3600:g} hours without agreement."
    if message_count > message_limit:
        return f"More than {message_limit} messages exchanged without agreement."
    return None


def validate_resolution(decision, amount_to_payee, amount_to_payer, milestone_amount):
    """Reject amounts that do not settle exactly the milestone amount in the way ``decision`` says."""
    if amount_to_payee < 0 or amount_to_payer < 0:
        raise ResolutionAmountMismatch('Resolution amounts cannot be negative.')
    if amount_to_payee + amount_to_payer != milestone_amount:
        raise ResolutionAmountMismatch(
            f"{amount_to_payee} + {amount_to_payer} does not equal the milestone amount {milestone_amount}."
        )
    consistent = {
        Dispute.RELEASE_TO_PAYEE: amount_to_payer == 0,
        Dispute.REFUND_TO_PAYER: amount_to_payee == 0,
        Dispute.SPLIT: amount_to_payee > 0 and amount_to_payer > 0,
    }
    if not consistent.get(decision, False):
        raise ResolutionAmountMismatch(
            f"Amounts {amount_to_payee}/{amount_to_payer} do not match the decision '{decision}'."
        )


def milestone_outcome(amount_to_payee, amount_to_payer):
    if amount_to_payer == 0:
        return Milestone.APPROVED
    if amount_to_payee == 0:
        return Milestone.REVISION_REQUESTED
    return Milestone.PARTIALLY_APPROVED


def resolve(status, may_decide):
    guard(status, RESOLVABLE_STATUSES, 'resolve')
    require(may_decide, 'Only the assigned neutral or staff can resolve this dispute.')
    return Dispute.RESOLVED
