import datetime

from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from django.utils import timezone

from core import scopes
from core.models import Announcement, Mandate, Poll, ScopeType
from core.tests.utils_test_data import (
    create_classroom,
    create_school,
    create_user,
    enroll,
    grant_class_mandate,
    grant_school_mandate,
)


class ScopeRulesTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.school = create_school()
        self.class_3a = create_classroom(self.school)
        self.class_4b = create_classroom(self.school, name="4b", year=4)
        self.parent = create_user("parent@example.org", school=self.school)
        enroll(self.parent, self.class_3a)

    def _poll(self, **fields) -> Poll:
        return Poll.objects.create(
            school=self.school,
            title="Frage",
            options=[{"id": "a", "label": "A"}, {"id": "b", "label": "B"}],
            **fields,
        )

    def test_anonymous_user_has_no_access(self) -> None:
        anonymous = AnonymousUser()
        self.assertIsNone(scopes.user_school_id(anonymous))
        self.assertEqual(scopes.user_class_ids(anonymous), [])
        self.assertFalse(scopes.can_publish(anonymous, scope_type=ScopeType.school, scope_id=self.school.pk))

    def test_mandate_activity_window(self) -> None:
        rep = create_user("rep@example.org", school=self.school)
        now = timezone.now()
        grant_class_mandate(rep, self.class_4b, end_at=now - datetime.timedelta(minutes=1))
        grant_class_mandate(rep, self.class_4b, start_at=now + datetime.timedelta(days=1))
        grant_class_mandate(rep, self.class_4b, status=Mandate.Status.ended)

        self.assertFalse(scopes.is_class_representative(rep, self.class_4b.pk))
        self.assertEqual(scopes.user_class_ids(rep), [])

        grant_class_mandate(rep, self.class_4b, end_at=now + datetime.timedelta(days=30))
        self.assertTrue(scopes.is_class_representative(rep, self.class_4b.pk))
        self.assertEqual(scopes.user_class_ids(rep), [self.class_4b.pk])

    def test_visibility_covers_school_and_own_classes(self) -> None:
        for scope_type, scope_id, title in (
            (ScopeType.school, self.school.pk, "Schule"),
            (ScopeType.klass, self.class_3a.pk, "3a"),
            (ScopeType.klass, self.class_4b.pk, "4b"),
        ):
            Announcement.objects.create(
                school=self.school,
                scope_type=scope_type,
                scope_id=scope_id,
                title=title,
                body="...",
            )

        visible = Announcement.objects.filter(scopes.visible_scope_filter(self.parent))

        self.assertEqual(sorted(visible.values_list("title", flat=True)), ["3a", "Schule"])

    def test_voting_rights(self) -> None:
        rep = create_user("rep@example.org", school=self.school)
        leader = create_user("gev@example.org", school=self.school)
        grant_class_mandate(rep, self.class_3a)
        grant_school_mandate(leader, self.school)

        class_poll = self._poll(scope_type=ScopeType.klass, scope_id=self.class_3a.pk)
        school_poll = self._poll(scope_type=ScopeType.school, scope_id=self.school.pk)
        election = self._poll(scope_type=ScopeType.klass, scope_id=self.class_3a.pk, kind=Poll.Kind.election)

        self.assertTrue(scopes.can_vote(rep, class_poll))
        self.assertFalse(scopes.can_vote(self.parent, class_poll))
        self.assertFalse(scopes.can_vote(leader, class_poll))
        self.assertTrue(scopes.can_vote(leader, school_poll))
        self.assertFalse(scopes.can_vote(rep, school_poll))
        self.assertTrue(scopes.can_vote(self.parent, election))
        self.assertTrue(scopes.can_vote(rep, election))
        self.assertFalse(scopes.can_vote(leader, election))

    def test_leader_manages_any_poll_in_school(self) -> None:
        leader = create_user("gev@example.org", school=self.school)
        grant_school_mandate(leader, self.school, role=Mandate.Role.admin)
        poll = self._poll(scope_type=ScopeType.klass, scope_id=self.class_4b.pk)

        self.assertTrue(scopes.can_manage_poll(leader, poll))
        self.assertFalse(scopes.can_manage_poll(self.parent, poll))

    def test_cannot_publish_to_class_of_another_school(self) -> None:
        other_school = create_school(name="Andere Schule", subdomain="andere")
        foreign_class = create_classroom(other_school)
        leader = create_user("gev@example.org", school=self.school)
        grant_school_mandate(leader, self.school)

        self.assertTrue(scopes.can_publish(leader, scope_type=ScopeType.klass, scope_id=self.class_4b.pk))
        self.assertFalse(scopes.can_publish(leader, scope_type=ScopeType.klass, scope_id=foreign_class.pk))
        self.assertFalse(scopes.can_publish(leader, scope_type=ScopeType.school, scope_id=other_school.pk))

    def test_scope_label(self) -> None:
        self.assertEqual(scopes.scope_label(scope_type=ScopeType.school, scope_id=self.school.pk), "Gesamte Schule")
        self.assertEqual(scopes.scope_label(scope_type=ScopeType.klass, scope_id=self.class_4b.pk), "4b · Jahrgang 4")
        self.assertEqual(scopes.scope_label(scope_type=ScopeType.klass, scope_id=999_999), "Klasse")
