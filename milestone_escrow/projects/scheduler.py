"""
Auto-approval of submitted milestones whose review period has lapsed.

``sweep`` is one pass over SUBMITTED milestones; ``start``/``stop`` run it
on a background thread every ``interval`` seconds until stopped.
"""
import logging
import threading
from dataclasses import dataclass, field

from django.conf import settings
from django.db import close_old_connections, transaction

from accounts.roles import SYSTEM_ACTOR
from milestone_escrow.clock import SystemClock
from milestone_escrow.exceptions import InvalidTransition, NotAuthorized
from notifications.events import notify
from .exceptions import SchedulerSweepItemFailed
from .models import Milestone

logger = logging.getLogger(__name__)

WARNING_EVENT = 'milestone.auto_approval_warning'


@dataclass
class SweepReport:
    approved: list = field(default_factory=list)
    warned: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    def __str__(self):
        return (
            f"approved={len(self.approved)} warned={len(self.warned)} "
            f"skipped={len(self.skipped)} failed={len(self.failed)}"
        )


class AutoApprovalScheduler:
    def __init__(self, milestone_service, clock=None, interval=None, warning_window=None, sink=None):
        self.milestone_service = milestone_service
        self.clock = clock or milestone_service.clock or SystemClock()
        self.interval = interval or settings.AUTO_APPROVAL_SWEEP_INTERVAL_SECONDS
        self.warning_window = tuple(warning_window or settings.AUTO_APPROVAL_WARNING_WINDOW_HOURS)
        self.sink = sink or milestone_service.sink
        self._stop_event = threading.Event()
        self._thread = None

    def sweep(self):
        report = SweepReport()
        now = self.clock.now()
        candidates = list(
            Milestone.objects.filter(status=Milestone.SUBMITTED, auto_approval_deadline__isnull=False)
            .order_by('auto_approval_deadline', 'id')
            .values_list('id', 'auto_approval_deadline', 'auto_approval_warning_sent')
        )

        for milestone_id, deadline, warning_sent in candidates:
            try:
                if now >= deadline:
                    self._approve(milestone_id, report)
                elif not warning_sent and self._in_warning_window(deadline - now):
                    self._warn(milestone_id, now, report)
            except Exception as exc:
                failure = SchedulerSweepItemFailed(milestone_id, exc)
                logger.exception(str(failure))
                report.failed.append(failure)

        logger.info(f"Auto-approval sweep at {now.isoformat()}: {report}")
        return report

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='auto-approval-scheduler', daemon=True)
        self._thread.start()
        logger.info(f"Auto-approval scheduler started, interval {self.interval}s")

    def stop(self, timeout=None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning('Auto-approval scheduler did not stop within the timeout')
                return False
            self._thread = None
        logger.info('Auto-approval scheduler stopped')
        return True

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout=None):
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self):
        while not self._stop_event.is_set():
            close_old_connections()
            try:
                self.sweep()
            except Exception:
                logger.exception('Auto-approval sweep aborted')
            finally:
                close_old_connections()
            self._stop_event.wait(self.interval)

    def _approve(self, milestone_id, report):
        try:
            self.milestone_service.approve(milestone_id, SYSTEM_ACTOR)
        except (InvalidTransition, NotAuthorized):
            # Moved on, or its deadline changed, since the candidate list was read
            report.skipped.append(milestone_id)
        else:
            report.approved.append(milestone_id)

    def _in_warning_window(self, remaining):
        lower, upper = self.warning_window
        hours = remaining.total_seconds() / 3600
        return lower < hours <= upper

    def _warn(self, milestone_id, now, report):
        with transaction.atomic():
            milestone = self.milestone_service.lock(milestone_id)
            if milestone.status != Milestone.SUBMITTED or milestone.auto_approval_warning_sent:
                report.skipped.append(milestone_id)
                return
            milestone.auto_approval_warning_sent = True
            milestone.save(update_fields=['auto_approval_warning_sent', 'updated_at'])
            notify(WARNING_EVENT, {
                'milestone_id': milestone.pk,
                'project_id': milestone.project_id,
                'payer_id': milestone.project.payer_id,
                'amount': milestone.amount,
                'auto_approval_deadline': milestone.auto_approval_deadline.isoformat(),
                'hours_remaining': round((milestone.auto_approval_deadline - now).total_seconds() / 3600, 1),
            }, sink=self.sink)
        report.warned.append(milestone_id)
