from __future__ import annotations

import logging

from django.contrib.auth.models import AbstractBaseUser
from django.db.models import Q
from django.utils import timezone

from core import scopes
from core.announcements_services import count_unread_announcements
from core.errors import ServiceError
from core.models import Classroom, Event, Poll, ScopeType

logger = logging.getLogger(__name__)


class BootstrapError(ServiceError):
    pass


def composer_scopes(user: AbstractBaseUser, *, school_id: int) -> list[dict[str, object]]:
    """Scopes the user may publish announcements, events and polls to."""

    result: list[dict[str, object]] = []
    if scopes.is_school_leader(user, school_id):
        result.append({"scopeType": ScopeType.school, "scopeId": school_id, "label": "Gesamte Schule"})
        classrooms = Classroom.objects.filter(school_id=school_id)
    else:
        class_ids = [
            class_id for class_id in scopes.user_class_ids(user) if scopes.is_class_representative(user, class_id)
        ]
        classrooms = Classroom.objects.filter(school_id=school_id, pk__in=class_ids)
    result.extend(
        {"scopeType": ScopeType.klass, "scopeId": c.pk, "label": c.label} for c in classrooms.order_by("name", "id")
    )
    return result


def get_bootstrap(user: AbstractBaseUser) -> dict[str, object]:
    profile = scopes.user_profile(user)
    if profile is None or profile.school_id is None:
        raise BootstrapError("profile_incomplete", status=409)

    mandates = list(scopes.active_mandates(user).values("role", "scope_type", "scope_id"))
    roles = sorted({m["role"] for m in mandates})
    visible = scopes.visible_scope_filter(user)
    mine = Q(created_by_id=user.pk)

    return {
        "user": {
            "id": user.pk,
            "email": getattr(user, "email", ""),
            "name": profile.name or None,
            "schoolId": profile.school_id,
            "schoolName": profile.school.name if profile.school else None,
        },
        "roles": roles,
        "scopes": {
            "school": any(m["scope_type"] == ScopeType.school for m in mandates),
            "classes": scopes.user_class_ids(user),
        },
        "composerScopes": composer_scopes(user, school_id=profile.school_id),
        "counts": {
            "unreadAnnouncements": count_unread_announcements(user),
            "upcomingEvents": Event.objects.filter(visible | mine, start_at__gte=timezone.now()).count(),
            "openPolls": Poll.objects.filter(visible | mine, status=Poll.Status.open).count(),
        },
    }
