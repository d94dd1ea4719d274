import datetime
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from core.models import AuditLogEntry, Mandate, Poll, PollCandidate, ScopeType, Vote
from core.polls_candidates import CandidateDraft, create_candidate_records, redeem_candidate_code
from core.tests.utils_test_data import create_classroom, create_school, create_user


class PollsCloseExpiredCommandTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.school = create_school()
        self.classroom = create_classroom(self.school)
        past = timezone.now() - datetime.timedelta(minutes=5)

        self.expired_poll = Poll.objects.create(
            school=self.school,
            scope_type=ScopeType.klass,
            scope_id=self.classroom.pk,
            title="Abgelaufen",
            deadline=past,
            options=[{"id": "a", "label": "A"}, {"id": "b", "label": "B"}],
        )
        self.running_poll = Poll.objects.create(
            school=self.school,
            scope_type=ScopeType.klass,
            scope_id=self.classroom.pk,
            title="Läuft",
            deadline=timezone.now() + datetime.timedelta(days=1),
            options=[{"id": "a", "label": "A"}, {"id": "b", "label": "B"}],
        )
        self.election = Poll.objects.create(
            school=self.school,
            scope_type=ScopeType.klass,
            scope_id=self.classroom.pk,
            title="Wahl",
            kind=Poll.Kind.election,
            deadline=past,
        )
        anna, ben = create_candidate_records(
            poll=self.election,
            actor=None,
            drafts=[
                CandidateDraft(office="class_rep", display_name="Anna"),
                CandidateDraft(office="class_rep", display_name="Ben"),
            ],
        )
        self.winner = create_user("ben@example.org", school=self.school)
        redeem_candidate_code(user=self.winner, code=ben.claim_code)
        voter = create_user("voter@example.org", school=self.school)
        Vote.objects.create(school=self.school, poll=self.election, voter=voter, choice=str(ben.pk))
        self.anna = anna

    def test_dry_run_lists_polls(self) -> None:
        out = StringIO()
        call_command("polls_close_expired", "--dry-run", stdout=out)

        self.assertIn(f"Would close poll {self.expired_poll.pk} (Abgelaufen)", out.getvalue())
        self.assertIn(f"Would close poll {self.election.pk} (Wahl)", out.getvalue())
        self.assertEqual(Poll.objects.filter(status=Poll.Status.open).count(), 3)

    def test_closes_expired_polls_and_assigns_election(self) -> None:
        out = StringIO()
        call_command("polls_close_expired", stdout=out)

        self.assertIn("Closed 2 poll(s).", out.getvalue())
        self.assertIn(f"Closed poll {self.election.pk}: 1 assigned, 0 pending assignment, 0 failed.", out.getvalue())

        statuses = dict(Poll.objects.values_list("title", "status"))
        self.assertEqual(statuses, {"Abgelaufen": "closed", "Läuft": "open", "Wahl": "closed"})

        mandate = Mandate.objects.get(source_poll=self.election)
        self.assertEqual(mandate.user, self.winner)
        self.assertEqual(mandate.role, Mandate.Role.class_rep)
        self.assertIsNone(mandate.created_by)
        self.anna.refresh_from_db()
        self.assertEqual(self.anna.status, PollCandidate.Status.created)

        close_entries = AuditLogEntry.objects.filter(event_type="POLL_CLOSE")
        self.assertEqual(close_entries.count(), 2)
        self.assertEqual({e.actor_id for e in close_entries}, {None})

    def test_second_run_is_a_noop(self) -> None:
        call_command("polls_close_expired", stdout=StringIO())
        out = StringIO()
        call_command("polls_close_expired", stdout=out)

        self.assertIn("Closed 0 poll(s).", out.getvalue())
        self.assertEqual(Mandate.objects.filter(source_poll=self.election).count(), 1)

    def test_failed_mandate_insert_is_not_counted_as_assigned(self) -> None:
        out = StringIO()
        with (
            patch.object(Mandate.objects, "create", side_effect=DatabaseError("insert failed")),
            self.assertLogs("core.management.commands.polls_close_expired", level="WARNING"),
            self.assertLogs("core.polls_mandates", level="ERROR"),
        ):
            call_command("polls_close_expired", stdout=out)

        self.assertIn(f"Closed poll {self.election.pk}: 0 assigned, 0 pending assignment, 1 failed.", out.getvalue())
        self.assertFalse(Mandate.objects.filter(source_poll=self.election).exists())
