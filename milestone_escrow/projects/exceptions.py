from rest_framework import status

from milestone_escrow.exceptions import BusinessRuleError


class RevisionLimitExceeded(BusinessRuleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The revision limit for this milestone has been reached.'
    default_code = 'revision_limit_exceeded'


class BudgetLocked(BusinessRuleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The project budget cannot change once escrow has been funded.'
    default_code = 'budget_locked'


class MilestoneLocked(BusinessRuleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Milestones cannot be deleted once escrow has been funded.'
    default_code = 'milestone_locked'


class BudgetExceeded(BusinessRuleError):
    default_detail = 'Milestone amounts would exceed the project budget.'
    default_code = 'budget_exceeded'


class SchedulerSweepItemFailed(Exception):
    """Wraps an error raised while the scheduler processed one milestone."""

    def __init__(self, milestone_id, cause):
        self.milestone_id = milestone_id
        self.cause = cause
        super().__init__(f"Auto-approval of milestone {milestone_id} failed: {cause!r}")
