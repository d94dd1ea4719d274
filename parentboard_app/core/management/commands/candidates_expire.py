import logging
from typing import override

from django.core.management.base import BaseCommand
from django.utils import timezone

from core.models import PollCandidate
from core.polls_candidates import expire_candidate_codes

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Mark unclaimed candidate codes past their expiry date as expired."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report how many codes would expire without changing them.",
        )

    @override
    def handle(self, *args, **options) -> None:
        now = timezone.now()
        if options.get("dry_run"):
            pending = PollCandidate.objects.filter(
                status=PollCandidate.Status.created,
                user__isnull=True,
                expires_at__lt=now,
            ).count()
            self.stdout.write(f"[dry-run] Would expire {pending} candidate code(s).")
            return

        expired = expire_candidate_codes(now=now)
        self.stdout.write(f"Expired {expired} candidate code(s).")
