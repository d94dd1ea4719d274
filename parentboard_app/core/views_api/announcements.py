from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_http_methods, require_POST

from core.announcements_services import (
    AnnouncementError,
    create_announcement,
    get_visible_announcement,
    list_announcements_for_user,
    mark_announcement_read,
)
from core.views_utils import json_login_required, parse_json_body, service_error_response


@require_http_methods(["GET", "POST"])
@json_login_required
def announcements_collection(request: HttpRequest) -> JsonResponse:
    if request.method == "GET":
        return JsonResponse({"data": list_announcements_for_user(request.user)})

    try:
        announcement = create_announcement(user=request.user, payload=parse_json_body(request))
    except AnnouncementError as exc:
        return service_error_response(exc)
    return JsonResponse({"data": {"id": announcement.pk}})


@require_POST
@json_login_required
def announcement_read(request: HttpRequest, announcement_id: int) -> JsonResponse:
    try:
        announcement = get_visible_announcement(user=request.user, announcement_id=announcement_id)
    except AnnouncementError as exc:
        return service_error_response(exc)

    read_at = mark_announcement_read(user=request.user, announcement=announcement)
    return JsonResponse({"data": {"readAt": read_at.isoformat()}})
