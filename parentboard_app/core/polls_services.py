from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass, field

from django.contrib.auth.models import AbstractBaseUser
from django.db import DatabaseError, transaction
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core import scopes
from core.errors import ServiceError
from core.models import AuditLogEntry, Poll, PollCandidate, ScopeType, Vote
from core.polls_candidates import CandidateDraft, create_candidate_records, dedupe_candidates, parse_candidate_drafts
from core.polls_mandates import CandidateAssignment, assign_mandates_from_poll
from core.polls_options import dedupe_options, normalize_poll_options, option_matches_choice

logger = logging.getLogger(__name__)

ABSTAIN_LABEL = "Enthaltung"
POLL_CLOSE_EVENT = "POLL_CLOSE"


class PollError(ServiceError):
    pass


class PollNotFoundError(PollError):
    default_status = 404

    def __init__(self) -> None:
        super().__init__("poll_not_found")


class PollClosedError(PollError):
    default_status = 409

    def __init__(self) -> None:
        super().__init__("poll_closed")


class InvalidChoiceError(PollError):
    pass


class NoVotingRightsError(PollError):
    default_status = 403

    def __init__(self) -> None:
        super().__init__("no_voting_rights")


class PollValidationError(PollError):
    pass


@dataclass(frozen=True)
class PollDraft:
    title: str
    scope_type: str
    scope_id: int
    description: str = ""
    type: str = Poll.Type.open
    kind: str = Poll.Kind.general
    deadline: datetime.datetime | None = None
    quorum: int | None = None
    allow_abstain: bool = False
    seats: int = 1
    office: str = ""
    options: list[dict[str, str]] = field(default_factory=list)
    candidates: list[CandidateDraft] = field(default_factory=list)
    expires_in_days: int | None = None


@dataclass(frozen=True)
class PollCreateResult:
    poll: Poll
    candidates: list[PollCandidate]


@dataclass(frozen=True)
class VoteResult:
    choice: str
    summary: list[dict[str, object]]


@dataclass(frozen=True)
class StatusChangeResult:
    poll: Poll
    assignments: list[CandidateAssignment]


def _parse_scope_id(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    raw = str(value or "").strip()
    return int(raw) if raw.isdigit() and int(raw) > 0 else None


def _parse_deadline(value: object) -> datetime.datetime | None:
    if not value:
        return None
    if not isinstance(value, str):
        raise PollValidationError("invalid_deadline")
    try:
        parsed = parse_datetime(value.strip())
    except ValueError:
        parsed = None
    if parsed is None:
        raise PollValidationError("invalid_deadline")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _parse_quorum(value: object) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise PollValidationError("invalid_quorum")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise PollValidationError("invalid_quorum") from None
    if not math.isfinite(number) or number < 0:
        raise PollValidationError("invalid_quorum")
    return round(number)


def _parse_seats(value: object) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise PollValidationError("invalid_seats")
    try:
        seats = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise PollValidationError("invalid_seats") from None
    if seats < 1:
        raise PollValidationError("invalid_seats")
    return seats


def parse_poll_payload(data: object) -> PollDraft:
    if not isinstance(data, dict):
        raise PollValidationError("invalid_payload")

    title = data.get("title")
    scope_type = data.get("scope_type")
    scope_id = _parse_scope_id(data.get("scope_id"))
    if not isinstance(title, str) or scope_type not in ScopeType.values or scope_id is None:
        raise PollValidationError("invalid_payload")

    title = title.strip()
    if not title:
        raise PollValidationError("missing_title")

    poll_type = data.get("type") or Poll.Type.open
    if poll_type not in Poll.Type.values:
        raise PollValidationError("invalid_type")

    kind = data.get("kind") or Poll.Kind.general
    if kind not in Poll.Kind.values:
        raise PollValidationError("invalid_payload")

    deadline = _parse_deadline(data.get("deadline"))
    quorum = _parse_quorum(data.get("quorum"))
    seats = _parse_seats(data.get("seats"))
    description = str(data.get("description") or "").strip()
    options = dedupe_options(normalize_poll_options(data.get("options")))

    if kind == Poll.Kind.election:
        if scope_type != ScopeType.klass:
            raise PollValidationError("election_scope_class")
        office = str(data.get("office") or "").strip()
        if office not in PollCandidate.Office.values:
            raise PollValidationError("missing_office")

        raw_candidates = data.get("candidates")
        if raw_candidates is None:
            raw_candidates = [option["label"] for option in options]
        candidates = dedupe_candidates(parse_candidate_drafts(raw_candidates, default_office=office))
        candidates = [c for c in candidates if c.office == office]
        if not candidates:
            raise PollValidationError("missing_candidates")

        expires_in_days = data.get("expires_in_days")
        return PollDraft(
            title=title,
            scope_type=scope_type,
            scope_id=scope_id,
            description=description,
            type=poll_type,
            kind=kind,
            deadline=deadline,
            quorum=quorum,
            allow_abstain=False,
            seats=seats,
            office=office,
            candidates=candidates,
            expires_in_days=int(expires_in_days) if isinstance(expires_in_days, int) else None,
        )

    if len(options) < 2:
        raise PollValidationError("not_enough_options")

    return PollDraft(
        title=title,
        scope_type=scope_type,
        scope_id=scope_id,
        description=description,
        type=poll_type,
        kind=kind,
        deadline=deadline,
        quorum=quorum,
        allow_abstain=bool(data.get("allow_abstain")),
        seats=seats,
        options=options,
    )


@transaction.atomic
def create_poll(*, user: AbstractBaseUser, draft: PollDraft) -> PollCreateResult:
    school_id = scopes.user_school_id(user)
    if school_id is None:
        raise PollValidationError("profile_incomplete")

    if not scopes.can_publish(user, scope_type=draft.scope_type, scope_id=draft.scope_id):
        raise PollError("forbidden", status=403)

    is_election = draft.kind == Poll.Kind.election
    if is_election:
        mandate_rule = draft.office
    elif draft.scope_type == ScopeType.klass:
        mandate_rule = "class_representatives"
    else:
        mandate_rule = "school_leadership"

    poll = Poll.objects.create(
        school_id=school_id,
        scope_type=draft.scope_type,
        scope_id=draft.scope_id,
        title=draft.title,
        description=draft.description,
        type=draft.type,
        status=Poll.Status.open,
        kind=draft.kind,
        deadline=draft.deadline,
        quorum=draft.quorum,
        allow_abstain=False if is_election else draft.allow_abstain,
        options=[] if is_election else draft.options,
        seats=draft.seats,
        mandate_rule=mandate_rule,
        created_by=user,
    )

    candidates: list[PollCandidate] = []
    if is_election:
        candidates = create_candidate_records(
            poll=poll,
            actor=user,
            drafts=draft.candidates,
            expires_in_days=draft.expires_in_days,
        )
        poll.refresh_from_db(fields=["options"])

    logger.info("Poll created poll_id=%s kind=%s scope=%s:%s", poll.pk, poll.kind, poll.scope_type, poll.scope_id)
    return PollCreateResult(poll=poll, candidates=candidates)


def poll_vote_summary(poll: Poll) -> list[dict[str, object]]:
    rows = Vote.objects.filter(poll=poll).values("choice").annotate(votes=Count("id")).order_by("-votes", "choice")
    return [{"choice": row["choice"], "votes": int(row["votes"])} for row in rows]


def get_visible_poll(*, user: AbstractBaseUser, poll_id: int) -> Poll:
    poll = (
        Poll.objects.filter(pk=poll_id)
        .filter(scopes.visible_scope_filter(user) | Q(created_by_id=user.pk))
        .first()
    )
    if poll is None:
        raise PollNotFoundError()
    return poll


def cast_vote(*, user: AbstractBaseUser, poll: Poll, choice: object) -> VoteResult:
    if not isinstance(choice, str) or not choice.strip():
        raise InvalidChoiceError("invalid_choice")

    if not poll.is_accepting_votes():
        raise PollClosedError()

    trimmed = choice.strip()
    selected = next(
        (option for option in normalize_poll_options(poll.options) if option_matches_choice(option, trimmed)),
        None,
    )
    abstain = choice == Vote.ABSTAIN
    if selected is None and not (abstain and poll.allow_abstain):
        raise InvalidChoiceError("choice_not_allowed")

    if not scopes.can_vote(user, poll):
        raise NoVotingRightsError()

    final_choice = Vote.ABSTAIN if abstain else str(selected["id"])
    vote, created = Vote.objects.update_or_create(
        poll=poll,
        voter=user,
        defaults={
            "choice": final_choice,
            "school_id": poll.school_id,
            "cast_at": timezone.now(),
        },
    )
    logger.info("Vote %s poll_id=%s voter_id=%s", "cast" if created else "changed", poll.pk, user.pk)
    return VoteResult(choice=vote.choice, summary=poll_vote_summary(poll))


def results_hidden(*, poll: Poll, can_manage: bool, now: datetime.datetime | None = None) -> bool:
    reference = timezone.now() if now is None else now
    return (
        poll.type == Poll.Type.secret
        and poll.status == Poll.Status.open
        and (poll.deadline is None or poll.deadline > reference)
        and not can_manage
    )


def serialize_poll(poll: Poll) -> dict[str, object]:
    return {
        "id": poll.pk,
        "schoolId": poll.school_id,
        "scopeType": poll.scope_type,
        "scopeId": poll.scope_id,
        "kind": poll.kind,
        "title": poll.title,
        "description": poll.description,
        "type": poll.type,
        "status": poll.status,
        "deadline": poll.deadline.isoformat() if poll.deadline else None,
        "quorum": poll.quorum,
        "allowAbstain": poll.allow_abstain,
        "seats": poll.seats,
        "mandateRule": poll.mandate_rule or None,
        "createdAt": poll.created_at.isoformat() if poll.created_at else None,
        "closedAt": poll.closed_at.isoformat() if poll.closed_at else None,
    }


def poll_detail(*, user: AbstractBaseUser, poll: Poll) -> dict[str, object]:
    summary = {str(row["choice"]): int(row["votes"]) for row in poll_vote_summary(poll)}

    options: list[dict[str, object]] = []
    for option in normalize_poll_options(poll.options):
        votes = summary.get(option["id"], summary.get(option["label"], 0))
        options.append({**option, "votes": votes})

    if poll.allow_abstain and summary.get(Vote.ABSTAIN, 0) > 0:
        options.append({"id": Vote.ABSTAIN, "label": ABSTAIN_LABEL, "votes": summary[Vote.ABSTAIN]})

    can_manage = scopes.can_manage_poll(user, poll)
    hidden = results_hidden(poll=poll, can_manage=can_manage)
    total_votes = sum(int(option["votes"]) for option in options)
    if hidden:
        options = [{**option, "votes": 0} for option in options]
        total_votes = 0

    my_vote = Vote.objects.filter(poll=poll, voter_id=user.pk).values_list("choice", flat=True).first()
    creator = poll.created_by

    return {
        **serialize_poll(poll),
        "scopeLabel": scopes.scope_label(scope_type=poll.scope_type, scope_id=poll.scope_id),
        "options": options,
        "totalVotes": total_votes,
        "myVote": my_vote,
        "canManage": can_manage,
        "canVote": scopes.can_vote(user, poll) and poll.is_accepting_votes(),
        "resultsHidden": hidden,
        "createdBy": {
            "id": creator.pk if creator else None,
            "email": getattr(creator, "email", None) if creator else None,
        },
    }


def _apply_status(*, poll: Poll, status: str, actor: AbstractBaseUser | None) -> list[CandidateAssignment]:
    previous_status = poll.status
    poll.status = status
    poll.closed_at = timezone.now() if status == Poll.Status.closed else None
    poll.save(update_fields=["status", "closed_at", "updated_at"])

    if status != Poll.Status.closed or previous_status == Poll.Status.closed:
        return []

    try:
        with transaction.atomic():
            AuditLogEntry.objects.create(
                school_id=poll.school_id,
                actor_id=getattr(actor, "pk", None),
                event_type=POLL_CLOSE_EVENT,
                entity="poll",
                entity_id=str(poll.pk),
                payload={
                    "previous_status": previous_status,
                    "scope_type": poll.scope_type,
                    "scope_id": poll.scope_id,
                },
            )
    except DatabaseError:
        logger.exception("Failed to write poll close audit entry poll_id=%s", poll.pk)

    return assign_mandates_from_poll(poll_id=poll.pk, actor=actor)


def set_poll_status(*, user: AbstractBaseUser, poll: Poll, status: object) -> StatusChangeResult:
    if status not in {Poll.Status.open, Poll.Status.closed}:
        raise PollError("invalid_status")
    if not scopes.can_manage_poll(user, poll):
        raise PollError("forbidden", status=403)

    assignments = _apply_status(poll=poll, status=str(status), actor=user)
    logger.info("Poll status set poll_id=%s status=%s assignments=%s", poll.pk, poll.status, len(assignments))
    return StatusChangeResult(poll=poll, assignments=assignments)


def close_expired_polls(*, now: datetime.datetime | None = None) -> dict[int, list[CandidateAssignment]]:
    """Close open polls whose deadline has passed; returns assignments per poll id."""

    reference = timezone.now() if now is None else now
    results: dict[int, list[CandidateAssignment]] = {}
    for poll in Poll.objects.filter(status=Poll.Status.open, deadline__lt=reference).order_by("deadline", "id"):
        results[poll.pk] = _apply_status(poll=poll, status=Poll.Status.closed, actor=None)
        logger.info("Closed expired poll poll_id=%s", poll.pk)
    return results


def list_polls_for_user(user: AbstractBaseUser) -> list[dict[str, object]]:
    polls = list(
        Poll.objects.filter(scopes.visible_scope_filter(user) | Q(created_by_id=user.pk))
        .filter(~Q(status=Poll.Status.draft) | Q(created_by_id=user.pk))
        .order_by("-created_at", "-id")
    )
    voted = set(Vote.objects.filter(voter_id=user.pk, poll__in=polls).values_list("poll_id", flat=True))
    return [{**serialize_poll(poll), "hasVoted": poll.pk in voted} for poll in polls]
