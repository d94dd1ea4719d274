import datetime

from django.conf import settings
from django.utils import timezone

from core.models import Event

DEFAULT_EVENT_DURATION = datetime.timedelta(hours=1)
DEFAULT_ORGANIZER_NAME = "Elternvertretung"


def escape_ics_text(value: str) -> str:
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace("\r\n", "\n")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def format_ics_datetime(value: datetime.datetime) -> str:
    if timezone.is_naive(value):
        value = timezone.make_aware(value, timezone=datetime.UTC)
    return value.astimezone(datetime.UTC).strftime("%Y%m%dT%H%M%SZ")


def build_event_ics(event: Event, *, now: datetime.datetime | None = None) -> str:
    stamp = timezone.now() if now is None else now
    end_at = event.end_at or (event.start_at + DEFAULT_EVENT_DURATION)

    organizer = event.created_by
    organizer_email = str(getattr(organizer, "email", "") or "").strip() or settings.ICS_FALLBACK_ORGANIZER_EMAIL
    organizer_name = DEFAULT_ORGANIZER_NAME
    if organizer is not None:
        profile = getattr(organizer, "profile", None)
        organizer_name = str(getattr(profile, "name", "") or "").strip() or DEFAULT_ORGANIZER_NAME

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{settings.ICS_PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{escape_ics_text(f'{event.pk}@{settings.ICS_UID_DOMAIN}')}",
        f"DTSTAMP:{format_ics_datetime(stamp)}",
        f"DTSTART:{format_ics_datetime(event.start_at)}",
        f"DTEND:{format_ics_datetime(end_at)}",
        f"SUMMARY:{escape_ics_text(event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{escape_ics_text(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{escape_ics_text(event.location)}")
    lines.extend(
        [
            f"ORGANIZER;CN={escape_ics_text(organizer_name)}:MAILTO:{escape_ics_text(organizer_email)}",
            "STATUS:CONFIRMED",
            "TRANSP:OPAQUE",
            "END:VEVENT",
            "END:VCALENDAR",
        ]
    )
    return "\r\n".join(lines)
