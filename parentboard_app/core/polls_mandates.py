"""Turn a closed election into mandates.

The workflow is a sequence of independent writes. Each write gets its own
savepoint; a failing write is logged and the loop moves on to the next
winner, so a partially applied result is possible and only visible in the
logs and the audit trail.
"""

from __future__ import annotations

import datetime
import logging
import math
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass

from django.contrib.auth.models import AbstractBaseUser
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone

from core.models import AuditLogEntry, Classroom, Mandate, Poll, PollCandidate, ScopeType

logger = logging.getLogger(__name__)

MANDATE_TRANSFER_EVENT = "MANDATE_TRANSFER"

_OFFICE_TO_ROLE: dict[str, str] = {
    PollCandidate.Office.class_rep: Mandate.Role.class_rep,
    PollCandidate.Office.class_rep_deputy: Mandate.Role.class_rep_deputy,
}


@dataclass(frozen=True)
class CandidateAssignment:
    candidate_id: int
    office: str
    display_name: str
    user_id: int | None
    pending: bool
    assigned: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "candidateId": self.candidate_id,
            "office": self.office,
            "displayName": self.display_name,
            "userId": self.user_id,
            "pending": self.pending,
            "assigned": self.assigned,
        }


@dataclass(frozen=True)
class ScoredCandidate:
    candidate_id: int
    office: str
    display_name: str
    user_id: int | None
    votes: int
    claimed_at: datetime.datetime | None
    created_at: datetime.datetime | None


def _timestamp_sort_value(value: datetime.datetime | None) -> float:
    # Missing timestamps rank after every real one.
    if value is None:
        return math.inf
    return value.timestamp()


def _ranking_key(candidate: ScoredCandidate) -> tuple[int, float, float]:
    return (
        -int(candidate.votes),
        _timestamp_sort_value(candidate.claimed_at),
        _timestamp_sort_value(candidate.created_at),
    )


def rank_candidates(scored: Iterable[ScoredCandidate]) -> list[ScoredCandidate]:
    """Order by votes (desc), then claim time, then creation time (both asc).

    ``sorted`` is stable, so ranking an already ranked list is a no-op.
    """

    return sorted(scored, key=_ranking_key)


def allocate_seats(ranked: Sequence[ScoredCandidate], seats: int | None) -> list[ScoredCandidate]:
    return list(ranked[: max(1, int(seats or 1))])


def mandate_role_for_office(office: str) -> str:
    return _OFFICE_TO_ROLE[office]


def has_newer_election_mandate(*, poll: Poll, role: str) -> bool:
    """Whether an election decided after ``poll`` already holds an active ``role`` seat in its class."""

    if poll.closed_at is not None:
        later = Q(source_poll__closed_at__gt=poll.closed_at)
    else:
        later = Q(source_poll__created_at__gt=poll.created_at)
    return (
        Mandate.objects.active()
        .for_scope(school_id=poll.school_id, scope_type=ScopeType.klass, scope_id=poll.scope_id)
        .filter(role=role)
        .exclude(source_poll_id=poll.pk)
        .filter(later)
        .exists()
    )


def _actor_id(actor: AbstractBaseUser | None) -> int | None:
    return getattr(actor, "pk", None) if actor is not None else None


def transfer_mandate(
    *,
    poll: Poll,
    candidate: PollCandidate,
    actor: AbstractBaseUser | None,
    keep_mandate_ids: Collection[int] = (),
) -> Mandate | None:
    """Hand the candidate's office over to the candidate's linked user.

    Ends every active mandate of the same school/class/role except those in
    ``keep_mandate_ids``, inserts the new active mandate, marks the candidate
    assigned and records a ``MANDATE_TRANSFER`` audit entry. Returns the new
    mandate, or None when the insert failed.
    """

    if candidate.user_id is None:
        raise ValueError("transfer_mandate requires a candidate with a linked user")

    role = mandate_role_for_office(candidate.office)
    actor_id = _actor_id(actor)
    now = timezone.now()

    try:
        with transaction.atomic():
            ended = (
                Mandate.objects.for_scope(school_id=poll.school_id, scope_type=ScopeType.klass, scope_id=poll.scope_id)
                .filter(role=role, status=Mandate.Status.active)
                .exclude(pk__in=list(keep_mandate_ids))
                .update(status=Mandate.Status.ended, end_at=now, updated_at=now, updated_by_id=actor_id)
            )
        if ended:
            logger.info(
                "Ended %s previous %s mandate(s) poll_id=%s classroom_id=%s",
                ended,
                role,
                poll.pk,
                poll.scope_id,
            )
    except DatabaseError:
        logger.exception("Failed to end previous mandates poll_id=%s candidate_id=%s", poll.pk, candidate.pk)

    try:
        with transaction.atomic():
            mandate = Mandate.objects.create(
                school_id=poll.school_id,
                user_id=candidate.user_id,
                scope_type=ScopeType.klass,
                scope_id=poll.scope_id,
                role=role,
                status=Mandate.Status.active,
                start_at=now,
                source_poll=poll,
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
    except DatabaseError:
        logger.exception("Failed to insert mandate poll_id=%s candidate_id=%s", poll.pk, candidate.pk)
        return None

    try:
        with transaction.atomic():
            PollCandidate.objects.filter(pk=candidate.pk).update(
                status=PollCandidate.Status.assigned,
                updated_at=now,
                updated_by_id=actor_id,
            )
    except DatabaseError:
        logger.exception("Failed to mark candidate assigned candidate_id=%s", candidate.pk)

    try:
        with transaction.atomic():
            AuditLogEntry.objects.create(
                school_id=poll.school_id,
                actor_id=actor_id,
                event_type=MANDATE_TRANSFER_EVENT,
                entity="mandate",
                entity_id=str(mandate.pk),
                payload={
                    "poll_id": poll.pk,
                    "candidate_id": candidate.pk,
                    "office": candidate.office,
                    "display_name": candidate.display_name,
                },
            )
    except DatabaseError:
        logger.exception("Failed to write mandate transfer audit entry mandate_id=%s", mandate.pk)

    return mandate


def _mark_pending(*, candidate_id: int, actor: AbstractBaseUser | None) -> None:
    try:
        with transaction.atomic():
            PollCandidate.objects.filter(pk=candidate_id).update(
                status=PollCandidate.Status.pending_assignment,
                updated_at=timezone.now(),
                updated_by_id=_actor_id(actor),
            )
    except DatabaseError:
        logger.exception("Failed to mark candidate pending assignment candidate_id=%s", candidate_id)


def _vote_counts(poll: Poll) -> dict[str, int]:
    # Imported lazily: polls_services depends on this module.
    from core.polls_services import poll_vote_summary

    try:
        summary = poll_vote_summary(poll)
    except DatabaseError:
        logger.exception("Vote tally failed poll_id=%s; treating all candidates as zero votes", poll.pk)
        return {}
    return {str(row["choice"]): int(row["votes"] or 0) for row in summary if row.get("choice")}


def assign_mandates_from_poll(*, poll_id: int, actor: AbstractBaseUser | None = None) -> list[CandidateAssignment]:
    poll = Poll.objects.filter(pk=poll_id).first()
    if poll is None:
        logger.info("Mandate assignment skipped: poll_id=%s not found", poll_id)
        return []
    if poll.kind != Poll.Kind.election or poll.scope_type != ScopeType.klass:
        logger.info("Mandate assignment skipped: poll_id=%s is not a class election", poll_id)
        return []
    if not Classroom.objects.filter(pk=poll.scope_id, school_id=poll.school_id).exists():
        logger.info("Mandate assignment skipped: poll_id=%s has no classroom", poll_id)
        return []

    candidates = list(
        PollCandidate.objects.filter(poll=poll, office__in=list(_OFFICE_TO_ROLE)).only(
            "id",
            "office",
            "display_name",
            "user_id",
            "status",
            "claimed_at",
            "created_at",
        )
    )
    if not candidates:
        return []

    offices = {c.office for c in candidates}
    if len(offices) != 1:
        logger.warning(
            "Mandate assignment skipped: poll_id=%s expected exactly one office, got %s",
            poll_id,
            sorted(offices),
        )
        return []

    votes = _vote_counts(poll)
    by_id = {c.pk: c for c in candidates}
    scored = [
        ScoredCandidate(
            candidate_id=c.pk,
            office=c.office,
            display_name=c.display_name,
            user_id=c.user_id,
            votes=votes.get(str(c.pk), 0),
            claimed_at=c.claimed_at,
            created_at=c.created_at,
        )
        for c in candidates
    ]
    winners = allocate_seats(rank_candidates(scored), poll.seats)

    results: list[CandidateAssignment] = []
    created_mandate_ids: list[int] = []
    for winner in winners:
        if winner.user_id is None:
            _mark_pending(candidate_id=winner.candidate_id, actor=actor)
            results.append(
                CandidateAssignment(
                    candidate_id=winner.candidate_id,
                    office=winner.office,
                    display_name=winner.display_name,
                    user_id=None,
                    pending=True,
                )
            )
            continue

        mandate = transfer_mandate(
            poll=poll,
            candidate=by_id[winner.candidate_id],
            actor=actor,
            keep_mandate_ids=created_mandate_ids,
        )
        if mandate is not None:
            created_mandate_ids.append(mandate.pk)
        results.append(
            CandidateAssignment(
                candidate_id=winner.candidate_id,
                office=winner.office,
                display_name=winner.display_name,
                user_id=winner.user_id,
                pending=False,
                assigned=mandate is not None,
            )
        )

    logger.info(
        "Mandate assignment finished poll_id=%s winners=%s assigned=%s pending=%s",
        poll.pk,
        len(results),
        len(created_mandate_ids),
        sum(1 for r in results if r.pending),
    )
    return results
