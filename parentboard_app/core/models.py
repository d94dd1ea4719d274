from __future__ import annotations

import datetime
import logging
from typing import override

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

logger = logging.getLogger(__name__)


class ScopeType(models.TextChoices):
    school = "school", "Schule"
    klass = "class", "Klasse"


class School(models.Model):
    name = models.CharField(max_length=255)
    subdomain = models.SlugField(max_length=63, unique=True)
    school_year_end_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:
        return self.name


class Classroom(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="classrooms")
    name = models.CharField(max_length=120)
    year = models.PositiveSmallIntegerField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("school", "name", "id")
        constraints = [
            models.UniqueConstraint(fields=["school", "name"], name="uniq_classroom_school_name"),
        ]

    def __str__(self) -> str:
        return self.name

    @property
    def label(self) -> str:
        if self.year:
            return f"{self.name} · Jahrgang {self.year}"
        return self.name


class Profile(models.Model):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="profile")
    school = models.ForeignKey(School, on_delete=models.SET_NULL, blank=True, null=True, related_name="profiles")
    name = models.CharField(max_length=255, blank=True, default="")
    locale = models.CharField(max_length=16, default="de")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name or str(self.user)


class ClassCode(models.Model):
    """Shareable code parents use to join a class during onboarding."""

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="class_codes")
    classroom = models.ForeignKey(Classroom, on_delete=models.CASCADE, related_name="class_codes")
    code = models.CharField(max_length=32, unique=True)
    expires_at = models.DateTimeField(blank=True, null=True)
    uses_remaining = models.PositiveIntegerField(
        blank=True,
        null=True,
        help_text="Leave empty for an unlimited number of enrollments.",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.code

    @override
    def save(self, *args, **kwargs) -> None:
        self.code = str(self.code or "").strip().upper()
        super().save(*args, **kwargs)


class Enrollment(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="enrollments")
    classroom = models.ForeignKey(Classroom, on_delete=models.CASCADE, related_name="enrollments")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="enrollments")
    child_initials = models.CharField(max_length=16, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "classroom"], name="uniq_enrollment_user_classroom"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}@{self.classroom_id}"


class MandateQuerySet(models.QuerySet["Mandate"]):
    def active(self, *, at: datetime.datetime | None = None) -> MandateQuerySet:
        reference = timezone.now() if at is None else at
        return self.filter(
            status=Mandate.Status.active,
            start_at__lte=reference,
        ).filter(Q(end_at__isnull=True) | Q(end_at__gt=reference))

    def for_scope(self, *, school_id: int, scope_type: str, scope_id: int) -> MandateQuerySet:
        return self.filter(school_id=school_id, scope_type=scope_type, scope_id=scope_id)


class Mandate(models.Model):
    """A time-bounded role grant for a user within a class or school scope."""

    class Role(models.TextChoices):
        class_rep = "class_rep", "Klassenelternvertretung"
        class_rep_deputy = "class_rep_deputy", "Stellvertretung"
        gev = "gev", "Gesamtelternvertretung"
        admin = "admin", "Administration"

    class Status(models.TextChoices):
        active = "active", "Aktiv"
        scheduled = "scheduled", "Geplant"
        ended = "ended", "Beendet"

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="mandates")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="mandates")
    scope_type = models.CharField(max_length=8, choices=ScopeType.choices)
    # Classroom pk for class scope, school pk for school scope.
    scope_id = models.PositiveBigIntegerField()
    role = models.CharField(max_length=24, choices=Role.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.active)
    start_at = models.DateTimeField(default=timezone.now)
    end_at = models.DateTimeField(blank=True, null=True)
    source_poll = models.ForeignKey(
        "Poll",
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="mandates",
        help_text="Election that produced this mandate, if any.",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="+",
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MandateQuerySet.as_manager()

    class Meta:
        ordering = ("school", "scope_type", "scope_id", "role", "-start_at", "id")
        indexes = [
            models.Index(fields=["school", "scope_type", "scope_id", "role", "status"], name="mandate_scope_role"),
            models.Index(fields=["user", "status"], name="mandate_user_status"),
        ]

    def __str__(self) -> str:
        return f"{self.role}:{self.scope_type}:{self.scope_id} ({self.user_id}, {self.status})"


class Announcement(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="announcements")
    scope_type = models.CharField(max_length=8, choices=ScopeType.choices)
    scope_id = models.PositiveBigIntegerField()
    title = models.CharField(max_length=255)
    body = models.TextField()
    attachments = models.JSONField(blank=True, default=list)
    allow_comments = models.BooleanField(default=False)
    requires_ack = models.BooleanField(default=False)
    pinned = models.BooleanField(default=False)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="announcements",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-pinned", "-created_at", "-id")

    def __str__(self) -> str:
        return self.title


class ReadReceipt(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="+")
    announcement = models.ForeignKey(Announcement, on_delete=models.CASCADE, related_name="read_receipts")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="read_receipts")
    read_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["announcement", "user"], name="uniq_readreceipt_announcement_user"),
        ]

    def __str__(self) -> str:
        return f"{self.announcement_id}:{self.user_id}"


class Event(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="events")
    scope_type = models.CharField(max_length=8, choices=ScopeType.choices)
    scope_id = models.PositiveBigIntegerField()
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    start_at = models.DateTimeField()
    end_at = models.DateTimeField(blank=True, null=True)
    location = models.CharField(max_length=255, blank=True, default="")
    remind_24h = models.BooleanField(default=False)
    remind_2h = models.BooleanField(default=False)
    reminder_24h_sent_at = models.DateTimeField(blank=True, null=True)
    reminder_2h_sent_at = models.DateTimeField(blank=True, null=True)
    agenda = models.JSONField(blank=True, default=dict)
    minutes = models.JSONField(blank=True, default=dict)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="events",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("start_at", "id")
        indexes = [
            models.Index(fields=["school", "start_at"], name="event_school_start"),
        ]

    def __str__(self) -> str:
        return self.title


class Rsvp(models.Model):
    class Status(models.TextChoices):
        yes = "yes", "Zusage"
        no = "no", "Absage"
        maybe = "maybe", "Vielleicht"

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="+")
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="rsvps")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="rsvps")
    status = models.CharField(max_length=8, choices=Status.choices)
    responded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["event", "user"], name="uniq_rsvp_event_user"),
        ]

    def __str__(self) -> str:
        return f"{self.event_id}:{self.user_id}={self.status}"


class Poll(models.Model):
    class Type(models.TextChoices):
        open = "open", "Offen"
        secret = "secret", "Geheim"

    class Status(models.TextChoices):
        draft = "draft", "Entwurf"
        open = "open", "Offen"
        closed = "closed", "Geschlossen"

    class Kind(models.TextChoices):
        general = "general", "Abstimmung"
        election = "election", "Wahl"

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="polls")
    scope_type = models.CharField(max_length=8, choices=ScopeType.choices)
    scope_id = models.PositiveBigIntegerField()
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    type = models.CharField(max_length=8, choices=Type.choices, default=Type.open)
    status = models.CharField(max_length=8, choices=Status.choices, default=Status.open)
    kind = models.CharField(max_length=10, choices=Kind.choices, default=Kind.general)
    deadline = models.DateTimeField(blank=True, null=True)
    quorum = models.PositiveIntegerField(blank=True, null=True)
    allow_abstain = models.BooleanField(default=False)
    # List of {"id": str, "label": str} (elections add "office").
    options = models.JSONField(blank=True, default=list)
    seats = models.PositiveSmallIntegerField(default=1, validators=[MinValueValidator(1)])
    mandate_rule = models.CharField(max_length=64, blank=True, default="")
    closed_at = models.DateTimeField(blank=True, null=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="polls",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "-id")

    def __str__(self) -> str:
        return self.title

    def is_accepting_votes(self, *, at: datetime.datetime | None = None) -> bool:
        reference = timezone.now() if at is None else at
        if self.status != Poll.Status.open:
            return False
        return self.deadline is None or self.deadline >= reference


class PollCandidate(models.Model):
    class Office(models.TextChoices):
        class_rep = "class_rep", "Klassenelternvertretung"
        class_rep_deputy = "class_rep_deputy", "Stellvertretung"

    class Status(models.TextChoices):
        created = "created", "Erstellt"
        claimed = "claimed", "Eingelöst"
        pending_assignment = "pending_assignment", "Zuordnung ausstehend"
        assigned = "assigned", "Zugeordnet"
        expired = "expired", "Abgelaufen"

    poll = models.ForeignKey(Poll, on_delete=models.CASCADE, related_name="candidates")
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="+")
    classroom = models.ForeignKey(Classroom, on_delete=models.CASCADE, related_name="+", blank=True, null=True)
    office = models.CharField(max_length=24, choices=Office.choices)
    display_name = models.CharField(max_length=120)
    claim_code = models.CharField(max_length=16, unique=True)
    expires_at = models.DateTimeField()
    status = models.CharField(max_length=24, choices=Status.choices, default=Status.created)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="candidacies",
    )
    claimed_at = models.DateTimeField(blank=True, null=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="+",
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="+",
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("display_name", "id")
        indexes = [
            models.Index(fields=["poll", "status"], name="candidate_poll_status"),
        ]

    def __str__(self) -> str:
        return f"{self.display_name} ({self.poll_id})"


class Vote(models.Model):
    ABSTAIN = "abstain"

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="+")
    poll = models.ForeignKey(Poll, on_delete=models.CASCADE, related_name="votes")
    voter = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="votes")
    choice = models.CharField(max_length=64)
    cast_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["poll", "voter"], name="uniq_vote_poll_voter"),
        ]
        indexes = [
            models.Index(fields=["poll", "choice"], name="vote_poll_choice"),
        ]

    def __str__(self) -> str:
        return f"{self.poll_id}:{self.voter_id}"


class AuditLogEntry(models.Model):
    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name="audit_log")
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="+",
    )
    event_type = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64, blank=True, default="")
    payload = models.JSONField(blank=True, default=dict)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "Audit log entries"
        ordering = ("timestamp", "id")
        indexes = [
            models.Index(fields=["school", "timestamp"], name="audit_school_ts"),
            models.Index(fields=["entity", "entity_id"], name="audit_entity"),
        ]

    def __str__(self) -> str:
        return f"{self.school_id}:{self.event_type}"

    @override
    def save(self, *args, **kwargs) -> None:
        if self.pk is not None:
            raise ValueError("Audit log entries are append-only")
        super().save(*args, **kwargs)
