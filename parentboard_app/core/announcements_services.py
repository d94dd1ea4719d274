from __future__ import annotations

import datetime
import logging

from django.contrib.auth.models import AbstractBaseUser
from django.db.models import OuterRef, Subquery
from django.utils import timezone

from core import scopes
from core.errors import ServiceError
from core.models import Announcement, ReadReceipt, ScopeType

logger = logging.getLogger(__name__)


class AnnouncementError(ServiceError):
    pass


def create_announcement(*, user: AbstractBaseUser, payload: object) -> Announcement:
    if not isinstance(payload, dict):
        raise AnnouncementError("invalid_payload")

    title = payload.get("title")
    body = payload.get("body")
    scope_type = payload.get("scope_type")
    raw_scope_id = str(payload.get("scope_id") or "").strip()
    if (
        not isinstance(title, str)
        or not isinstance(body, str)
        or scope_type not in ScopeType.values
        or not raw_scope_id.isdigit()
    ):
        raise AnnouncementError("invalid_payload")

    school_id = scopes.user_school_id(user)
    if school_id is None:
        raise AnnouncementError("profile_not_found")

    title = title.strip()
    body = body.strip()
    if not title or not body:
        raise AnnouncementError("invalid_payload")

    scope_id = int(raw_scope_id)
    if not scopes.can_publish(user, scope_type=scope_type, scope_id=scope_id):
        raise AnnouncementError("forbidden", status=403)

    announcement = Announcement.objects.create(
        school_id=school_id,
        scope_type=scope_type,
        scope_id=scope_id,
        title=title,
        body=body,
        attachments=[],
        allow_comments=payload.get("allow_comments") is True,
        requires_ack=payload.get("requires_ack") is True,
        created_by=user,
    )
    logger.info("Announcement created announcement_id=%s scope=%s:%s", announcement.pk, scope_type, scope_id)
    return announcement


def _visible_announcements(user: AbstractBaseUser):
    return Announcement.objects.filter(scopes.visible_scope_filter(user))


def get_visible_announcement(*, user: AbstractBaseUser, announcement_id: int) -> Announcement:
    announcement = _visible_announcements(user).filter(pk=announcement_id).first()
    if announcement is None:
        raise AnnouncementError("announcement_not_found", status=404)
    return announcement


def list_announcements_for_user(user: AbstractBaseUser) -> list[dict[str, object]]:
    read_at = ReadReceipt.objects.filter(announcement=OuterRef("pk"), user_id=user.pk).values("read_at")[:1]
    rows = (
        _visible_announcements(user)
        .select_related("created_by")
        .annotate(my_read_at=Subquery(read_at))
        .order_by("-pinned", "-created_at", "-id")
    )
    return [
        {
            "id": a.pk,
            "scopeType": a.scope_type,
            "scopeId": a.scope_id,
            "title": a.title,
            "body": a.body,
            "attachments": a.attachments or [],
            "allowComments": a.allow_comments,
            "requiresAck": a.requires_ack,
            "pinned": a.pinned,
            "createdAt": a.created_at.isoformat(),
            "createdBy": getattr(a.created_by, "email", None),
            "readAt": a.my_read_at.isoformat() if a.my_read_at else None,
        }
        for a in rows
    ]


def count_unread_announcements(user: AbstractBaseUser) -> int:
    return _visible_announcements(user).exclude(read_receipts__user_id=user.pk).count()


def mark_announcement_read(*, user: AbstractBaseUser, announcement: Announcement) -> datetime.datetime:
    """Record that ``user`` read ``announcement``; the first read time wins."""

    receipt, created = ReadReceipt.objects.get_or_create(
        announcement=announcement,
        user=user,
        defaults={"school_id": announcement.school_id, "read_at": timezone.now()},
    )
    if created:
        logger.debug("Announcement read announcement_id=%s user_id=%s", announcement.pk, user.pk)
    return receipt.read_at
