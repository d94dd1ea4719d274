import logging
from typing import override

from django.core.management.base import BaseCommand
from django.utils import timezone

from core.models import Poll
from core.polls_services import close_expired_polls

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Close open polls whose deadline has passed and assign mandates for closed elections."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the polls that would be closed without closing them.",
        )

    @override
    def handle(self, *args, **options) -> None:
        now = timezone.now()
        if options.get("dry_run"):
            for poll in Poll.objects.filter(status=Poll.Status.open, deadline__lt=now).order_by("deadline", "id"):
                self.stdout.write(f"[dry-run] Would close poll {poll.pk} ({poll.title}).")
            return

        results = close_expired_polls(now=now)
        for poll_id, assignments in results.items():
            assigned = sum(1 for a in assignments if a.assigned)
            pending = sum(1 for a in assignments if a.pending)
            failed = len(assignments) - assigned - pending
            if failed:
                logger.warning("Closed poll_id=%s with %s winner(s) left without a mandate", poll_id, failed)
            self.stdout.write(
                f"Closed poll {poll_id}: {assigned} assigned, {pending} pending assignment, {failed} failed."
            )
        self.stdout.write(f"Closed {len(results)} poll(s).")
