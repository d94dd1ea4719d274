from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

import post_office.mail
from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AbstractBaseUser
from django.db import DatabaseError, transaction
from django.db.models import Count, Q
from django.urls import reverse
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core import scopes
from core.errors import ServiceError
from core.events_documents import (
    normalize_agenda_document,
    normalize_minutes_document,
    sanitize_agenda_payload,
    sanitize_minutes_payload,
)
from core.models import AuditLogEntry, Enrollment, Event, Mandate, Profile, Rsvp, ScopeType

logger = logging.getLogger(__name__)

REMINDER_WINDOWS: tuple[tuple[str, datetime.timedelta], ...] = (
    ("24h", datetime.timedelta(hours=24)),
    ("2h", datetime.timedelta(hours=2)),
)


class EventError(ServiceError):
    pass


@dataclass(frozen=True)
class ReminderRun:
    events: int
    emails: int


def _parse_when(value: object, *, error_key: str) -> datetime.datetime:
    if not isinstance(value, str) or not value.strip():
        raise EventError(error_key)
    try:
        parsed = parse_datetime(value.strip())
    except ValueError:
        parsed = None
    if parsed is None:
        raise EventError(error_key)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _optional_text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


@transaction.atomic
def create_event(*, user: AbstractBaseUser, payload: object) -> Event:
    if not isinstance(payload, dict):
        raise EventError("invalid_payload")

    title = payload.get("title")
    scope_type = payload.get("scope_type")
    raw_scope_id = str(payload.get("scope_id") or "").strip()
    if (
        not isinstance(title, str)
        or not title
        or scope_type not in ScopeType.values
        or not raw_scope_id.isdigit()
        or not payload.get("start_at")
    ):
        raise EventError("invalid_payload")

    start_at = _parse_when(payload.get("start_at"), error_key="invalid_start_at")
    end_at = None
    if payload.get("end_at"):
        end_at = _parse_when(payload.get("end_at"), error_key="invalid_end_at")

    school_id = scopes.user_school_id(user)
    if school_id is None:
        raise EventError("profile_incomplete")

    title = title.strip()
    if not title:
        raise EventError("missing_title")

    scope_id = int(raw_scope_id)
    if not scopes.can_publish(user, scope_type=scope_type, scope_id=scope_id):
        raise EventError("forbidden", status=403)

    event = Event.objects.create(
        school_id=school_id,
        scope_type=scope_type,
        scope_id=scope_id,
        title=title,
        description=_optional_text(payload.get("description")),
        start_at=start_at,
        end_at=end_at,
        location=_optional_text(payload.get("location")),
        remind_24h=payload.get("remind_24h") is True,
        remind_2h=payload.get("remind_2h") is True,
        created_by=user,
    )
    logger.info("Event created event_id=%s scope=%s:%s", event.pk, scope_type, scope_id)
    return event


def get_visible_event(*, user: AbstractBaseUser, event_id: int) -> Event:
    event = (
        Event.objects.filter(pk=event_id)
        .filter(scopes.visible_scope_filter(user) | Q(created_by_id=user.pk))
        .select_related("created_by")
        .first()
    )
    if event is None:
        raise EventError("event_not_found", status=404)
    return event


def update_event_reminders(*, user: AbstractBaseUser, event: Event, payload: object) -> Event:
    if not isinstance(payload, dict):
        raise EventError("invalid_payload")

    update_fields: list[str] = []
    for window_name, _window in REMINDER_WINDOWS:
        value = payload.get(f"remind_{window_name}")
        if isinstance(value, bool):
            # Toggling a reminder re-arms it.
            setattr(event, f"remind_{window_name}", value)
            setattr(event, f"reminder_{window_name}_sent_at", None)
            update_fields += [f"remind_{window_name}", f"reminder_{window_name}_sent_at"]

    if not update_fields:
        raise EventError("no_changes")
    if not scopes.can_manage_event(user, event):
        raise EventError("forbidden", status=403)

    event.save(update_fields=[*update_fields, "updated_at"])
    return event


def set_rsvp(*, user: AbstractBaseUser, event: Event, status: object) -> Rsvp:
    if status not in Rsvp.Status.values:
        raise EventError("invalid_status")
    if not Profile.objects.filter(user_id=user.pk).exists():
        raise EventError("profile_not_found")

    rsvp, _created = Rsvp.objects.update_or_create(
        event=event,
        user=user,
        defaults={
            "school_id": event.school_id,
            "status": status,
            "responded_at": timezone.now(),
        },
    )
    return rsvp


def rsvp_summary(event: Event) -> dict[str, int]:
    counts = {status: 0 for status in Rsvp.Status.values}
    for row in Rsvp.objects.filter(event=event).values("status").annotate(total=Count("id")):
        counts[row["status"]] = int(row["total"])
    return counts


def update_agenda(*, user: AbstractBaseUser, event: Event, payload: object) -> Event:
    if not scopes.can_manage_event(user, event):
        raise EventError("forbidden", status=403)
    if not isinstance(payload, dict):
        raise EventError("invalid_payload")

    agenda = sanitize_agenda_payload(payload.get("agenda"))
    minutes = sanitize_minutes_payload(payload.get("minutes"))

    update_fields: list[str] = []
    if agenda is not None:
        event.agenda = agenda
        update_fields.append("agenda")
    if minutes is not None:
        event.minutes = minutes
        update_fields.append("minutes")
    if not update_fields:
        raise EventError("no_changes")

    event.save(update_fields=[*update_fields, "updated_at"])

    try:
        with transaction.atomic():
            AuditLogEntry.objects.create(
                school_id=event.school_id,
                actor=user,
                event_type="event.agenda.update",
                entity="event",
                entity_id=str(event.pk),
                payload={
                    "agendaItems": len(agenda["items"]) if agenda is not None else None,
                    "minutesEntries": len(minutes["entries"]) if minutes is not None else None,
                },
            )
    except DatabaseError:
        logger.warning("Failed to append audit log for agenda update event_id=%s", event.pk, exc_info=True)

    return event


def serialize_event(event: Event, *, user: AbstractBaseUser | None = None) -> dict[str, object]:
    data: dict[str, object] = {
        "id": event.pk,
        "schoolId": event.school_id,
        "scopeType": event.scope_type,
        "scopeId": event.scope_id,
        "title": event.title,
        "description": event.description or None,
        "startAt": event.start_at.isoformat(),
        "endAt": event.end_at.isoformat() if event.end_at else None,
        "location": event.location or None,
        "remind24h": event.remind_24h,
        "remind2h": event.remind_2h,
        "agenda": normalize_agenda_document(event.agenda),
        "minutes": normalize_minutes_document(event.minutes),
        "rsvpSummary": rsvp_summary(event),
    }
    if user is not None:
        data["myRsvp"] = Rsvp.objects.filter(event=event, user_id=user.pk).values_list("status", flat=True).first()
        data["canManage"] = scopes.can_manage_event(user, event)
    return data


def list_events_for_user(user: AbstractBaseUser, *, upcoming_only: bool = False) -> list[dict[str, object]]:
    qs = Event.objects.filter(scopes.visible_scope_filter(user) | Q(created_by_id=user.pk))
    if upcoming_only:
        qs = qs.filter(start_at__gte=timezone.now())
    return [serialize_event(event, user=user) for event in qs.order_by("start_at", "id")]


def scope_member_emails(*, school_id: int, scope_type: str, scope_id: int) -> list[str]:
    users = get_user_model().objects.filter(is_active=True).exclude(email="")
    if scope_type == ScopeType.school:
        users = users.filter(profile__school_id=school_id)
    else:
        enrolled = Enrollment.objects.filter(classroom_id=scope_id).values("user_id")
        representatives = Mandate.objects.active().filter(
            school_id=school_id,
            scope_type=ScopeType.klass,
            scope_id=scope_id,
        ).values("user_id")
        users = users.filter(Q(pk__in=enrolled) | Q(pk__in=representatives))
    return sorted({str(email).strip() for email in users.values_list("email", flat=True) if str(email).strip()})


def _event_url(event: Event) -> str:
    base = str(settings.PUBLIC_BASE_URL or "").strip().rstrip("/")
    return f"{base}{reverse('api-event-ics', args=[event.pk])}"


def send_event_reminders(*, now: datetime.datetime | None = None) -> ReminderRun:
    """Queue due reminder emails and stamp each event's sent time."""

    reference = timezone.now() if now is None else now
    events_reminded = 0
    emails_queued = 0

    for window_name, window in REMINDER_WINDOWS:
        flag_field = f"remind_{window_name}"
        sent_field = f"reminder_{window_name}_sent_at"
        due = Event.objects.filter(
            **{flag_field: True, f"{sent_field}__isnull": True},
            start_at__gt=reference,
            start_at__lte=reference + window,
        ).order_by("start_at", "id")

        for event in due:
            recipients = scope_member_emails(
                school_id=event.school_id,
                scope_type=event.scope_type,
                scope_id=event.scope_id,
            )
            context = {
                "event_title": event.title,
                "event_start": timezone.localtime(event.start_at).strftime("%d.%m.%Y %H:%M"),
                "event_location": event.location,
                "event_url": _event_url(event),
                "window": window_name,
            }
            for email in recipients:
                post_office.mail.send(
                    recipients=[email],
                    sender=settings.DEFAULT_FROM_EMAIL,
                    template=settings.EVENT_REMINDER_EMAIL_TEMPLATE_NAME,
                    context=context,
                )
            Event.objects.filter(pk=event.pk).update(**{sent_field: reference})
            events_reminded += 1
            emails_queued += len(recipients)
            logger.info(
                "Queued %s reminder email(s) event_id=%s window=%s",
                len(recipients),
                event.pk,
                window_name,
            )

    return ReminderRun(events=events_reminded, emails=emails_queued)
