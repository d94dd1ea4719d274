import datetime

from django.contrib.auth import get_user_model
from django.utils import timezone

from core.models import Classroom, Enrollment, Mandate, Profile, School, ScopeType


def create_school(name: str = "Grundschule am Park", subdomain: str = "am-park") -> School:
    return School.objects.create(name=name, subdomain=subdomain)


def create_classroom(school: School, name: str = "3a", year: int | None = 3) -> Classroom:
    return Classroom.objects.create(school=school, name=name, year=year)


def create_user(email: str, *, school: School | None = None, name: str = ""):
    """Create an active user; with ``school`` the user also gets a profile there."""

    user = get_user_model().objects.create_user(username=email, email=email, password="pw")
    if school is not None:
        Profile.objects.create(user=user, school=school, name=name)
    return user


def enroll(user, classroom: Classroom, child_initials: str = "") -> Enrollment:
    return Enrollment.objects.create(
        user=user,
        school=classroom.school,
        classroom=classroom,
        child_initials=child_initials,
    )


def grant_class_mandate(user, classroom: Classroom, role: str = Mandate.Role.class_rep, **extra) -> Mandate:
    return Mandate.objects.create(
        school=classroom.school,
        user=user,
        scope_type=ScopeType.klass,
        scope_id=classroom.pk,
        role=role,
        status=extra.pop("status", Mandate.Status.active),
        start_at=extra.pop("start_at", timezone.now() - datetime.timedelta(days=30)),
        **extra,
    )


def grant_school_mandate(user, school: School, role: str = Mandate.Role.gev) -> Mandate:
    return Mandate.objects.create(
        school=school,
        user=user,
        scope_type=ScopeType.school,
        scope_id=school.pk,
        role=role,
        status=Mandate.Status.active,
        start_at=timezone.now() - datetime.timedelta(days=30),
    )
