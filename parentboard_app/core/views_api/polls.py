"""Poll endpoints: list/create, detail/status change, voting, candidates."""

from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_http_methods, require_POST

from core import scopes
from core.errors import ServiceError
from core.models import PollCandidate
from core.polls_candidates import (
    create_candidate_records,
    list_candidate_records,
    parse_candidate_drafts,
    serialize_candidate,
)
from core.polls_services import (
    cast_vote,
    create_poll,
    get_visible_poll,
    list_polls_for_user,
    parse_poll_payload,
    poll_detail,
    serialize_poll,
    set_poll_status,
)
from core.views_utils import json_error, json_login_required, parse_json_body, service_error_response


@require_http_methods(["GET", "POST"])
@json_login_required
def polls_collection(request: HttpRequest) -> JsonResponse:
    if request.method == "GET":
        return JsonResponse({"data": list_polls_for_user(request.user)})

    try:
        result = create_poll(user=request.user, draft=parse_poll_payload(parse_json_body(request)))
    except ServiceError as exc:
        return service_error_response(exc)

    data: dict[str, object] = {"id": result.poll.pk}
    if result.candidates:
        data["candidateCodes"] = [serialize_candidate(c) for c in result.candidates]
    return JsonResponse({"data": data})


@require_http_methods(["GET", "PATCH"])
@json_login_required
def poll_item(request: HttpRequest, poll_id: int) -> JsonResponse:
    try:
        poll = get_visible_poll(user=request.user, poll_id=poll_id)
        if request.method == "GET":
            return JsonResponse({"data": poll_detail(user=request.user, poll=poll)})

        payload = parse_json_body(request)
        status = payload.get("status") if isinstance(payload, dict) else None
        result = set_poll_status(user=request.user, poll=poll, status=status)
    except ServiceError as exc:
        return service_error_response(exc)

    return JsonResponse(
        {
            "data": serialize_poll(result.poll),
            "assignments": [assignment.as_dict() for assignment in result.assignments],
        }
    )


@require_POST
@json_login_required
def poll_vote(request: HttpRequest, poll_id: int) -> JsonResponse:
    payload = parse_json_body(request)
    choice = payload.get("choice") if isinstance(payload, dict) else None
    try:
        poll = get_visible_poll(user=request.user, poll_id=poll_id)
        result = cast_vote(user=request.user, poll=poll, choice=choice)
    except ServiceError as exc:
        return service_error_response(exc)

    return JsonResponse({"data": {"choice": result.choice, "summary": result.summary}})


@require_http_methods(["GET", "POST"])
@json_login_required
def poll_candidates(request: HttpRequest, poll_id: int) -> JsonResponse:
    try:
        poll = get_visible_poll(user=request.user, poll_id=poll_id)
    except ServiceError as exc:
        return service_error_response(exc)

    # Claim codes are handed out by the organizers only.
    if not scopes.can_manage_poll(request.user, poll):
        return json_error("forbidden", status=403)

    if request.method == "GET":
        return JsonResponse({"data": [serialize_candidate(c) for c in list_candidate_records(poll)]})

    payload = parse_json_body(request)
    if not isinstance(payload, dict):
        return json_error("invalid_payload")

    default_office = poll.mandate_rule if poll.mandate_rule in PollCandidate.Office.values else ""
    drafts = parse_candidate_drafts(payload.get("candidates"), default_office=default_office)
    if not drafts:
        return json_error("missing_candidates")

    expires_in_days = payload.get("expiresInDays", payload.get("expires_in_days"))
    try:
        created = create_candidate_records(
            poll=poll,
            actor=request.user,
            drafts=drafts,
            expires_in_days=expires_in_days if isinstance(expires_in_days, int) else None,
        )
    except ServiceError as exc:
        return service_error_response(exc)

    return JsonResponse({"data": [serialize_candidate(c) for c in created]}, status=201)
