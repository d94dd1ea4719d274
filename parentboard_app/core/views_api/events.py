"""Event endpoints: list/create, reminders, RSVP, calendar export, agenda."""

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from core.errors import ServiceError
from core.events_documents import normalize_agenda_document, normalize_minutes_document
from core.events_ics import build_event_ics
from core.events_services import (
    create_event,
    get_visible_event,
    list_events_for_user,
    rsvp_summary,
    serialize_event,
    set_rsvp,
    update_agenda,
    update_event_reminders,
)
from core.views_utils import json_login_required, parse_json_body, service_error_response


@require_http_methods(["GET", "POST"])
@json_login_required
def events_collection(request: HttpRequest) -> JsonResponse:
    if request.method == "GET":
        upcoming_only = str(request.GET.get("upcoming") or "").strip() in {"1", "true", "yes"}
        return JsonResponse({"data": list_events_for_user(request.user, upcoming_only=upcoming_only)})

    try:
        event = create_event(user=request.user, payload=parse_json_body(request))
    except ServiceError as exc:
        return service_error_response(exc)
    return JsonResponse({"data": {"id": event.pk}})


@require_http_methods(["GET", "PATCH"])
@json_login_required
def event_item(request: HttpRequest, event_id: int) -> JsonResponse:
    try:
        event = get_visible_event(user=request.user, event_id=event_id)
        if request.method == "GET":
            return JsonResponse({"data": serialize_event(event, user=request.user)})
        update_event_reminders(user=request.user, event=event, payload=parse_json_body(request))
    except ServiceError as exc:
        return service_error_response(exc)
    return JsonResponse({"ok": True})


@require_POST
@json_login_required
def event_rsvp(request: HttpRequest, event_id: int) -> JsonResponse:
    payload = parse_json_body(request)
    status = payload.get("status") if isinstance(payload, dict) else None
    try:
        event = get_visible_event(user=request.user, event_id=event_id)
        rsvp = set_rsvp(user=request.user, event=event, status=status)
    except ServiceError as exc:
        return service_error_response(exc)
    return JsonResponse({"data": {"status": rsvp.status, "summary": rsvp_summary(event)}})


@require_GET
@json_login_required
def event_ics(request: HttpRequest, event_id: int) -> HttpResponse:
    try:
        event = get_visible_event(user=request.user, event_id=event_id)
    except ServiceError as exc:
        return service_error_response(exc)

    response = HttpResponse(build_event_ics(event), content_type="text/calendar; charset=utf-8")
    response["Content-Disposition"] = f'attachment; filename="event-{event.pk}.ics"'
    response["Cache-Control"] = "no-store"
    return response


@require_http_methods(["PATCH"])
@json_login_required
def event_agenda(request: HttpRequest, event_id: int) -> JsonResponse:
    try:
        event = get_visible_event(user=request.user, event_id=event_id)
        update_agenda(user=request.user, event=event, payload=parse_json_body(request))
    except ServiceError as exc:
        return service_error_response(exc)
    return JsonResponse(
        {
            "data": {
                "agenda": normalize_agenda_document(event.agenda),
                "minutes": normalize_minutes_document(event.minutes),
            }
        }
    )
