from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from core.bootstrap import BootstrapError, get_bootstrap
from core.enrollment import EnrollmentError, enroll_with_class_code
from core.views_utils import json_login_required, parse_json_body, service_error_response


@require_POST
@json_login_required
def onboarding(request: HttpRequest) -> JsonResponse:
    payload = parse_json_body(request)
    if not isinstance(payload, dict):
        payload = {}

    try:
        result = enroll_with_class_code(
            user=request.user,
            code=payload.get("code"),
            child_initials=payload.get("childInitials"),
        )
    except EnrollmentError as exc:
        return service_error_response(exc)
    return JsonResponse({"data": result.as_dict()})


@require_GET
@json_login_required
def bootstrap(request: HttpRequest) -> JsonResponse:
    try:
        data = get_bootstrap(request.user)
    except BootstrapError as exc:
        return service_error_response(exc)
    return JsonResponse({"data": data})
