from __future__ import annotations

import logging
from dataclasses import dataclass

from django.contrib.auth.models import AbstractBaseUser
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.errors import ServiceError
from core.models import ClassCode, Enrollment, Profile

logger = logging.getLogger(__name__)

CHILD_INITIALS_MAX_LENGTH = 16


class EnrollmentError(ServiceError):
    pass


@dataclass(frozen=True)
class EnrollmentResult:
    enrollment: Enrollment
    created: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "enrollmentId": self.enrollment.pk,
            "schoolId": self.enrollment.school_id,
            "classroomId": self.enrollment.classroom_id,
            "created": self.created,
        }


@transaction.atomic
def enroll_with_class_code(*, user: AbstractBaseUser, code: object, child_initials: object = None) -> EnrollmentResult:
    normalized = str(code or "").strip().upper() if isinstance(code, str) else ""
    if not normalized:
        raise EnrollmentError("missing_code")

    class_code = ClassCode.objects.select_for_update().filter(code=normalized).first()
    if class_code is None:
        raise EnrollmentError("code_not_found", status=404)
    if class_code.expires_at is not None and class_code.expires_at < timezone.now():
        raise EnrollmentError("code_expired", status=410)

    profile, _created = Profile.objects.get_or_create(user=user)
    if profile.school_id is None:
        profile.school_id = class_code.school_id
        profile.save(update_fields=["school", "updated_at"])
    elif profile.school_id != class_code.school_id:
        raise EnrollmentError("school_mismatch", status=409)

    initials = str(child_initials).strip()[:CHILD_INITIALS_MAX_LENGTH] if isinstance(child_initials, str) else ""

    enrollment = Enrollment.objects.filter(user=user, classroom_id=class_code.classroom_id).first()
    if enrollment is not None:
        if initials and enrollment.child_initials != initials:
            enrollment.child_initials = initials
            enrollment.save(update_fields=["child_initials"])
        return EnrollmentResult(enrollment=enrollment, created=False)

    if class_code.uses_remaining is not None:
        if class_code.uses_remaining <= 0:
            raise EnrollmentError("code_exhausted", status=409)
        ClassCode.objects.filter(pk=class_code.pk).update(uses_remaining=F("uses_remaining") - 1)

    enrollment = Enrollment.objects.create(
        user=user,
        school_id=class_code.school_id,
        classroom_id=class_code.classroom_id,
        child_initials=initials,
    )
    logger.info("Enrolled user_id=%s classroom_id=%s", user.pk, class_code.classroom_id)
    return EnrollmentResult(enrollment=enrollment, created=True)
