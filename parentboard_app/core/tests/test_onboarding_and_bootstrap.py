import datetime
import json

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from core.models import Announcement, ClassCode, Enrollment, Poll, Profile, ScopeType
from core.tests.utils_test_data import (
    create_classroom,
    create_school,
    create_user,
    grant_class_mandate,
    grant_school_mandate,
)


class OnboardingTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.school = create_school()
        self.classroom = create_classroom(self.school)
        self.class_code = ClassCode.objects.create(
            school=self.school,
            classroom=self.classroom,
            code="3a-herbst",
            uses_remaining=2,
        )
        self.user = create_user("new-parent@example.org")

    def _onboard(self, payload: dict[str, object], *, user=None):
        self.client.force_login(user or self.user)
        return self.client.post(reverse("api-onboarding"), data=json.dumps(payload), content_type="application/json")

    def test_class_code_is_stored_uppercase(self) -> None:
        self.assertEqual(self.class_code.code, "3A-HERBST")

    def test_first_enrollment_creates_profile(self) -> None:
        resp = self._onboard({"code": " 3a-herbst ", "childInitials": "M.B."})

        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertTrue(data["created"])
        self.assertEqual(data["classroomId"], self.classroom.pk)
        self.assertEqual(Profile.objects.get(user=self.user).school, self.school)
        self.assertEqual(Enrollment.objects.get(user=self.user).child_initials, "M.B.")
        self.class_code.refresh_from_db()
        self.assertEqual(self.class_code.uses_remaining, 1)

    def test_repeat_enrollment_is_idempotent(self) -> None:
        self._onboard({"code": "3A-HERBST"})

        resp = self._onboard({"code": "3A-HERBST", "childInitials": "LK"})

        self.assertFalse(resp.json()["data"]["created"])
        self.assertEqual(Enrollment.objects.filter(user=self.user).count(), 1)
        self.assertEqual(Enrollment.objects.get(user=self.user).child_initials, "LK")
        self.class_code.refresh_from_db()
        self.assertEqual(self.class_code.uses_remaining, 1)

    def test_errors(self) -> None:
        ClassCode.objects.create(
            school=self.school,
            classroom=self.classroom,
            code="ALT",
            expires_at=timezone.now() - datetime.timedelta(days=1),
        )
        ClassCode.objects.create(school=self.school, classroom=self.classroom, code="VOLL", uses_remaining=0)
        other_school = create_school(name="Andere Schule", subdomain="andere")
        foreign_parent = create_user("foreign@example.org", school=other_school)

        cases = [
            ("missing", {"code": ""}, self.user, 400, "missing_code"),
            ("unknown", {"code": "NOPE"}, self.user, 404, "code_not_found"),
            ("expired", {"code": "alt"}, self.user, 410, "code_expired"),
            ("exhausted", {"code": "VOLL"}, self.user, 409, "code_exhausted"),
            ("other school", {"code": "3A-HERBST"}, foreign_parent, 409, "school_mismatch"),
        ]
        for label, payload, user, status, error in cases:
            with self.subTest(label):
                resp = self._onboard(payload, user=user)
                self.assertEqual(resp.status_code, status)
                self.assertEqual(resp.json(), {"error": error})


class BootstrapTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.school = create_school()
        self.classroom = create_classroom(self.school)
        self.other_classroom = create_classroom(self.school, name="4b", year=4)

    def test_requires_complete_profile(self) -> None:
        self.client.force_login(create_user("nobody@example.org"))

        resp = self.client.get(reverse("api-bootstrap"))

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json(), {"error": "profile_incomplete"})

    def test_class_representative(self) -> None:
        rep = create_user("rep@example.org", school=self.school, name="Rita")
        grant_class_mandate(rep, self.classroom)
        Announcement.objects.create(
            school=self.school,
            scope_type=ScopeType.school,
            scope_id=self.school.pk,
            title="Hallo",
            body="...",
        )
        Poll.objects.create(
            school=self.school,
            scope_type=ScopeType.klass,
            scope_id=self.classroom.pk,
            title="Frage",
            options=[{"id": "a", "label": "A"}, {"id": "b", "label": "B"}],
        )
        self.client.force_login(rep)

        data = self.client.get(reverse("api-bootstrap")).json()["data"]

        self.assertEqual(data["user"]["name"], "Rita")
        self.assertEqual(data["user"]["schoolName"], "Grundschule am Park")
        self.assertEqual(data["roles"], ["class_rep"])
        self.assertEqual(data["scopes"], {"school": False, "classes": [self.classroom.pk]})
        self.assertEqual(
            data["composerScopes"],
            [{"scopeType": "class", "scopeId": self.classroom.pk, "label": "3a · Jahrgang 3"}],
        )
        self.assertEqual(data["counts"], {"unreadAnnouncements": 1, "upcomingEvents": 0, "openPolls": 1})

    def test_school_leader_can_compose_everywhere(self) -> None:
        leader = create_user("gev@example.org", school=self.school)
        grant_school_mandate(leader, self.school)
        self.client.force_login(leader)

        data = self.client.get(reverse("api-bootstrap")).json()["data"]

        self.assertTrue(data["scopes"]["school"])
        self.assertEqual(
            [(s["scopeType"], s["scopeId"]) for s in data["composerScopes"]],
            [("school", self.school.pk), ("class", self.classroom.pk), ("class", self.other_classroom.pk)],
        )
