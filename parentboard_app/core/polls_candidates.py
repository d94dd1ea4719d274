from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser
from django.db import transaction
from django.utils import timezone

from core.errors import ServiceError
from core.models import AuditLogEntry, Enrollment, Mandate, Poll, PollCandidate, Profile, ScopeType
from core.polls_codes import CLAIM_CODE_MIN_LENGTH, generate_claim_code, normalize_claim_code
from core.polls_mandates import has_newer_election_mandate, mandate_role_for_office, transfer_mandate

logger = logging.getLogger(__name__)

CANDIDATE_DISPLAY_NAME_MAX_LENGTH = 120
CANDIDATE_EXPIRY_MIN_DAYS = 1
CANDIDATE_EXPIRY_MAX_DAYS = 30


class ElectionError(ServiceError):
    pass


class CandidateCodeError(ServiceError):
    pass


@dataclass(frozen=True)
class CandidateDraft:
    office: str
    display_name: str

    @property
    def dedupe_key(self) -> str:
        return f"{self.office}:{self.display_name.lower()}"


@dataclass(frozen=True)
class RedeemResult:
    candidate: PollCandidate
    already_claimed: bool
    auto_enrolled: bool
    mandate: Mandate | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "candidateId": self.candidate.pk,
            "pollId": self.candidate.poll_id,
            "office": self.candidate.office,
            "alreadyClaimed": self.already_claimed,
            "autoEnrolled": self.auto_enrolled,
        }


def parse_candidate_drafts(raw: object, *, default_office: str = "") -> list[CandidateDraft]:
    """Read candidate drafts from a request payload.

    Entries may be plain names (using ``default_office``) or objects with
    ``office`` and ``displayName``/``display_name``/``name``.
    """

    if not isinstance(raw, list):
        return []

    drafts: list[CandidateDraft] = []
    for entry in raw:
        if isinstance(entry, dict):
            office = str(entry.get("office") or default_office).strip()
            name = entry.get("displayName") or entry.get("display_name") or entry.get("name")
        else:
            office = default_office
            name = entry

        display_name = str(name or "").strip()[:CANDIDATE_DISPLAY_NAME_MAX_LENGTH]
        if not display_name or office not in PollCandidate.Office.values:
            continue
        drafts.append(CandidateDraft(office=office, display_name=display_name))
    return drafts


def dedupe_candidates(drafts: Iterable[CandidateDraft]) -> list[CandidateDraft]:
    seen: set[str] = set()
    result: list[CandidateDraft] = []
    for draft in drafts:
        if draft.dedupe_key in seen:
            continue
        seen.add(draft.dedupe_key)
        result.append(draft)
    return result


def list_candidate_records(poll: Poll) -> list[PollCandidate]:
    return list(
        PollCandidate.objects.filter(poll=poll, office__in=PollCandidate.Office.values).order_by("display_name", "id")
    )


def serialize_candidate(candidate: PollCandidate) -> dict[str, object]:
    return {
        "id": candidate.pk,
        "office": candidate.office,
        "displayName": candidate.display_name,
        "claimCode": candidate.claim_code,
        "expiresAt": candidate.expires_at.isoformat() if candidate.expires_at else None,
        "status": candidate.status,
        "userId": candidate.user_id,
        "claimedAt": candidate.claimed_at.isoformat() if candidate.claimed_at else None,
    }


def clamp_expiry_days(value: object) -> int:
    try:
        days = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        days = int(settings.CANDIDATE_CODE_DEFAULT_EXPIRY_DAYS)
    return max(CANDIDATE_EXPIRY_MIN_DAYS, min(CANDIDATE_EXPIRY_MAX_DAYS, days))


def _unique_claim_code(used: set[str]) -> str:
    while True:
        code = generate_claim_code()
        if code in used or PollCandidate.objects.filter(claim_code=code).exists():
            continue
        used.add(code)
        return code


def sync_poll_options_with_candidates(poll: Poll) -> None:
    poll.options = [
        {"id": str(c.pk), "label": c.display_name, "office": c.office} for c in list_candidate_records(poll)
    ]
    poll.save(update_fields=["options", "updated_at"])


@transaction.atomic
def create_candidate_records(
    *,
    poll: Poll,
    actor: AbstractBaseUser | None,
    drafts: Sequence[CandidateDraft],
    expires_in_days: int | None = None,
) -> list[PollCandidate]:
    """Create claimable candidate rows for an election poll.

    Drafts that match an existing candidate (same office, same name ignoring
    case) are not duplicated. When nothing new is created the matching
    existing rows are returned instead.
    """

    if poll.kind != Poll.Kind.election:
        raise ElectionError("poll_not_election", message="poll is not an election")
    if poll.scope_type != ScopeType.klass:
        raise ElectionError("election_scope_class", message="election scope must be a class")

    drafts = dedupe_candidates(drafts)
    if not drafts:
        return []

    existing = list_candidate_records(poll)
    existing_by_key = {f"{c.office}:{c.display_name.lower()}": c for c in existing}
    inserts = [d for d in drafts if d.dedupe_key not in existing_by_key]
    if not inserts:
        return [existing_by_key[d.dedupe_key] for d in drafts if d.dedupe_key in existing_by_key]

    days = clamp_expiry_days(settings.CANDIDATE_CODE_DEFAULT_EXPIRY_DAYS if expires_in_days is None else expires_in_days)
    now = timezone.now()
    expires_at = now + datetime.timedelta(days=days)
    used_codes = {c.claim_code for c in existing}
    actor_id = getattr(actor, "pk", None)

    created: list[PollCandidate] = []
    for draft in inserts:
        candidate = PollCandidate.objects.create(
            poll=poll,
            school_id=poll.school_id,
            classroom_id=poll.scope_id,
            office=draft.office,
            display_name=draft.display_name,
            claim_code=_unique_claim_code(used_codes),
            expires_at=expires_at,
            status=PollCandidate.Status.created,
            created_by_id=actor_id,
            updated_by_id=actor_id,
            created_at=now,
        )
        AuditLogEntry.objects.create(
            school_id=poll.school_id,
            actor_id=actor_id,
            event_type="CANDIDATE_CODE_CREATE",
            entity="poll_candidate",
            entity_id=str(candidate.pk),
            payload={
                "poll_id": poll.pk,
                "office": candidate.office,
                "display_name": candidate.display_name,
                "expires_at": expires_at.isoformat(),
            },
        )
        created.append(candidate)

    sync_poll_options_with_candidates(poll)
    logger.info("Created %s candidate code(s) poll_id=%s", len(created), poll.pk)
    return created


@transaction.atomic
def redeem_candidate_code(*, user: AbstractBaseUser, code: str) -> RedeemResult:
    normalized = normalize_claim_code(code)
    if len(normalized) < CLAIM_CODE_MIN_LENGTH:
        raise CandidateCodeError("invalid_code", status=400)

    candidate = (
        PollCandidate.objects.select_for_update().select_related("poll").filter(claim_code=normalized).first()
    )
    if candidate is None:
        raise CandidateCodeError("code_not_found", status=404)

    if candidate.user_id == user.pk:
        return RedeemResult(candidate=candidate, already_claimed=True, auto_enrolled=False)

    now = timezone.now()
    if candidate.status == PollCandidate.Status.expired or (
        candidate.status == PollCandidate.Status.created and candidate.expires_at < now
    ):
        raise CandidateCodeError("code_expired", status=410)

    profile = Profile.objects.filter(user_id=user.pk).only("school_id").first()
    if profile is None or profile.school_id is None:
        raise CandidateCodeError("profile_missing", status=409)
    if profile.school_id != candidate.school_id:
        raise CandidateCodeError("code_wrong_school", status=403)

    if candidate.user_id is not None or candidate.status not in {
        PollCandidate.Status.created,
        PollCandidate.Status.pending_assignment,
    }:
        raise CandidateCodeError("code_used", status=409)

    auto_enrolled = False
    if candidate.classroom_id is not None:
        _enrollment, auto_enrolled = Enrollment.objects.get_or_create(
            user_id=user.pk,
            classroom_id=candidate.classroom_id,
            defaults={"school_id": candidate.school_id},
        )

    previous_status = candidate.status
    role = mandate_role_for_office(candidate.office)
    superseded = previous_status == PollCandidate.Status.pending_assignment and has_newer_election_mandate(
        poll=candidate.poll, role=role
    )
    candidate.user_id = user.pk
    candidate.claimed_at = now
    candidate.updated_by_id = user.pk
    if previous_status == PollCandidate.Status.created or superseded:
        candidate.status = PollCandidate.Status.claimed
    candidate.save(update_fields=["user", "claimed_at", "updated_by", "status", "updated_at"])

    AuditLogEntry.objects.create(
        school_id=candidate.school_id,
        actor_id=user.pk,
        event_type="CANDIDATE_CODE_REDEEM",
        entity="poll_candidate",
        entity_id=str(candidate.pk),
        payload={
            "poll_id": candidate.poll_id,
            "office": candidate.office,
            "previous_status": previous_status,
            "auto_enrolled": auto_enrolled,
            "superseded": superseded,
        },
    )

    mandate = None
    if superseded:
        # A later election already holds the seat.
        logger.info(
            "Pending candidate_id=%s claimed after a later election for poll_id=%s; no mandate transfer",
            candidate.pk,
            candidate.poll_id,
        )
    elif previous_status == PollCandidate.Status.pending_assignment:
        # Won before it was claimed: the seat is handed over right away, next
        # to the other mandates this election already produced.
        same_poll_ids = list(
            Mandate.objects.filter(
                source_poll_id=candidate.poll_id,
                role=role,
                status=Mandate.Status.active,
            ).values_list("id", flat=True)
        )
        mandate = transfer_mandate(
            poll=candidate.poll,
            candidate=candidate,
            actor=user,
            keep_mandate_ids=same_poll_ids,
        )
        if mandate is not None:
            candidate.status = PollCandidate.Status.assigned

    logger.info(
        "Candidate code redeemed candidate_id=%s user_id=%s auto_enrolled=%s",
        candidate.pk,
        user.pk,
        auto_enrolled,
    )
    return RedeemResult(candidate=candidate, already_claimed=False, auto_enrolled=auto_enrolled, mandate=mandate)


def expire_candidate_codes(*, now: datetime.datetime | None = None) -> int:
    reference = timezone.now() if now is None else now
    expired = PollCandidate.objects.filter(
        status=PollCandidate.Status.created,
        user__isnull=True,
        expires_at__lt=reference,
    ).update(status=PollCandidate.Status.expired, updated_at=reference)
    if expired:
        logger.info("Expired %s unclaimed candidate code(s)", expired)
    return expired
