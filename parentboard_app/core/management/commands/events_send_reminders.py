from typing import override

from django.core.management.base import BaseCommand

from core.events_services import send_event_reminders


class Command(BaseCommand):
    help = "Queue 24h and 2h event reminder emails via django-post-office."

    @override
    def handle(self, *args, **options) -> None:
        run = send_event_reminders()
        self.stdout.write(f"Queued {run.emails} reminder email(s) for {run.events} event(s).")
