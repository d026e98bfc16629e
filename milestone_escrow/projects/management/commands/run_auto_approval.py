import signal

from django.core.management.base import BaseCommand

from projects.scheduler import AutoApprovalScheduler
from projects.services import MilestoneService


class Command(BaseCommand):
    help = "Auto-approves submitted milestones whose review period has passed and warns payers before it does."

    def add_arguments(self, parser):
        parser.add_argument('--once', action='store_true', help='Run a single sweep and exit')
        parser.add_argument('--interval', type=int, help='Seconds between sweeps (defaults to AUTO_APPROVAL_SWEEP_INTERVAL_SECONDS)')

    def handle(self, *args, **options):
        scheduler = AutoApprovalScheduler(MilestoneService(), interval=options['interval'])

        if options['once']:
            report = scheduler.sweep()
            style = self.style.ERROR if report.failed else self.style.SUCCESS
            self.stdout.write(style(f"Sweep finished: {report}"))
            return

        def shutdown(signum, frame):
            scheduler.stop()

        signal.signal(signal.SIGINT, shutdown)
        signal.signal(signal.SIGTERM, shutdown)

        scheduler.start()
        self.stdout.write(self.style.SUCCESS(f"Auto-approval scheduler running every {scheduler.interval}s"))
        while scheduler.is_running:
            scheduler.join(1)
        self.stdout.write("Auto-approval scheduler stopped.")
