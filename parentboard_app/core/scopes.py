"""Access rules for class- and school-scoped content.

Everything here is a read-only predicate over profiles, enrollments and
active mandates. Services call these before writing; views never query
mandates directly.
"""

from __future__ import annotations

import datetime

from django.contrib.auth.models import AbstractBaseUser, AnonymousUser
from django.db.models import Q

from core.models import Classroom, Enrollment, Event, Mandate, Poll, Profile, ScopeType

SCHOOL_LEADER_ROLES: frozenset[str] = frozenset({Mandate.Role.gev, Mandate.Role.admin})
CLASS_REPRESENTATIVE_ROLES: frozenset[str] = frozenset({Mandate.Role.class_rep, Mandate.Role.class_rep_deputy})


def _is_authenticated(user: AbstractBaseUser | AnonymousUser | None) -> bool:
    return user is not None and bool(getattr(user, "is_authenticated", False))


def user_profile(user: AbstractBaseUser | AnonymousUser | None) -> Profile | None:
    if not _is_authenticated(user):
        return None
    return Profile.objects.filter(user_id=user.pk).select_related("school").first()


def user_school_id(user: AbstractBaseUser | AnonymousUser | None) -> int | None:
    if not _is_authenticated(user):
        return None
    return Profile.objects.filter(user_id=user.pk).values_list("school_id", flat=True).first()


def class_belongs_to_school(classroom_id: int, school_id: int | None) -> bool:
    if school_id is None:
        return False
    return Classroom.objects.filter(pk=classroom_id, school_id=school_id).exists()


def active_mandates(
    user: AbstractBaseUser | AnonymousUser | None,
    *,
    at: datetime.datetime | None = None,
):
    if not _is_authenticated(user):
        return Mandate.objects.none()
    return Mandate.objects.active(at=at).filter(user_id=user.pk)


def user_class_ids(user: AbstractBaseUser | AnonymousUser | None) -> list[int]:
    if not _is_authenticated(user):
        return []

    enrolled = set(Enrollment.objects.filter(user_id=user.pk).values_list("classroom_id", flat=True))
    mandated = set(
        active_mandates(user)
        .filter(scope_type=ScopeType.klass, role__in=CLASS_REPRESENTATIVE_ROLES)
        .values_list("scope_id", flat=True)
    )
    return sorted(enrolled | {int(v) for v in mandated})


def is_school_leader(user: AbstractBaseUser | AnonymousUser | None, school_id: int | None) -> bool:
    if school_id is None:
        return False
    return (
        active_mandates(user)
        .filter(
            school_id=school_id,
            scope_type=ScopeType.school,
            role__in=SCHOOL_LEADER_ROLES,
        )
        .exists()
    )


def is_class_representative(user: AbstractBaseUser | AnonymousUser | None, classroom_id: int) -> bool:
    return (
        active_mandates(user)
        .filter(
            scope_type=ScopeType.klass,
            scope_id=classroom_id,
            role__in=CLASS_REPRESENTATIVE_ROLES,
        )
        .exists()
    )


def can_publish(user: AbstractBaseUser | AnonymousUser | None, *, scope_type: str, scope_id: int) -> bool:
    school_id = user_school_id(user)
    if school_id is None:
        return False

    if scope_type == ScopeType.school:
        return int(scope_id) == school_id and is_school_leader(user, school_id)

    if scope_type == ScopeType.klass:
        if not class_belongs_to_school(scope_id, school_id):
            return False
        return is_school_leader(user, school_id) or is_class_representative(user, scope_id)

    return False


def _can_manage_scoped(user, *, created_by_id: int | None, school_id: int, scope_type: str, scope_id: int) -> bool:
    if not _is_authenticated(user):
        return False
    if created_by_id is not None and created_by_id == user.pk:
        return True
    if is_school_leader(user, school_id):
        return True
    return scope_type == ScopeType.klass and is_class_representative(user, scope_id)


def can_manage_poll(user: AbstractBaseUser | AnonymousUser | None, poll: Poll) -> bool:
    return _can_manage_scoped(
        user,
        created_by_id=poll.created_by_id,
        school_id=poll.school_id,
        scope_type=poll.scope_type,
        scope_id=poll.scope_id,
    )


def can_manage_event(user: AbstractBaseUser | AnonymousUser | None, event: Event) -> bool:
    return _can_manage_scoped(
        user,
        created_by_id=event.created_by_id,
        school_id=event.school_id,
        scope_type=event.scope_type,
        scope_id=event.scope_id,
    )


def voting_mandate(
    user: AbstractBaseUser | AnonymousUser | None,
    poll: Poll,
    *,
    at: datetime.datetime | None = None,
) -> Mandate | None:
    """Return the mandate that entitles ``user`` to vote in ``poll``, if any."""

    qs = active_mandates(user, at=at).filter(school_id=poll.school_id)
    if poll.scope_type == ScopeType.klass:
        qs = qs.filter(
            scope_type=ScopeType.klass,
            scope_id=poll.scope_id,
            role__in=CLASS_REPRESENTATIVE_ROLES,
        )
    else:
        qs = qs.filter(scope_type=ScopeType.school, role__in=SCHOOL_LEADER_ROLES)
    return qs.order_by("start_at", "id").first()


def can_vote(user: AbstractBaseUser | AnonymousUser | None, poll: Poll) -> bool:
    if not _is_authenticated(user):
        return False

    if poll.kind == Poll.Kind.election:
        if poll.scope_type != ScopeType.klass:
            return False
        if Enrollment.objects.filter(user_id=user.pk, classroom_id=poll.scope_id).exists():
            return True
        return is_class_representative(user, poll.scope_id)

    return voting_mandate(user, poll) is not None


def visible_scope_filter(user: AbstractBaseUser | AnonymousUser | None) -> Q:
    """Q object matching rows the user may read (school-wide or own classes)."""

    school_id = user_school_id(user)
    if school_id is None:
        return Q(pk__in=[])

    condition = Q(school_id=school_id, scope_type=ScopeType.school)
    class_ids = user_class_ids(user)
    if class_ids:
        condition |= Q(school_id=school_id, scope_type=ScopeType.klass, scope_id__in=class_ids)
    return condition


def scope_label(*, scope_type: str, scope_id: int) -> str:
    if scope_type == ScopeType.school:
        return "Gesamte Schule"
    classroom = Classroom.objects.filter(pk=scope_id).only("name", "year").first()
    if classroom is None:
        return "Klasse"
    return classroom.label