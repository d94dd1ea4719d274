"""Shared helpers for the JSON API views."""

import json
from collections.abc import Callable
from functools import wraps

from django.http import HttpRequest, HttpResponse, JsonResponse

from core.errors import ServiceError


def json_error(key: str, *, status: int = 400) -> JsonResponse:
    return JsonResponse({"error": key}, status=status)


def service_error_response(exc: ServiceError) -> JsonResponse:
    return json_error(exc.key, status=exc.status)


def parse_json_body(request: HttpRequest) -> object:
    """Decode a JSON request body; malformed bodies read as an empty object."""

    if not request.body:
        return {}
    try:
        return json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {}


def json_login_required[**P, R: HttpResponse](view_func: Callable[P, R]) -> Callable[P, HttpResponse]:
    """Like ``login_required`` but answers 401 JSON instead of redirecting."""

    @wraps(view_func)
    def _wrapped(*args: P.args, **kwargs: P.kwargs) -> HttpResponse:
        request = args[0]
        if not isinstance(request, HttpRequest) or not request.user.is_authenticated:
            return json_error("unauthorized", status=401)
        return view_func(*args, **kwargs)

    return _wrapped
