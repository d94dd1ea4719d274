from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_POST

from core.polls_candidates import CandidateCodeError, redeem_candidate_code
from core.views_utils import json_login_required, parse_json_body, service_error_response


@require_POST
@json_login_required
def candidates_redeem(request: HttpRequest) -> JsonResponse:
    payload = parse_json_body(request)
    code = payload.get("code") if isinstance(payload, dict) else None
    if not isinstance(code, str):
        code = ""

    try:
        result = redeem_candidate_code(user=request.user, code=code)
    except CandidateCodeError as exc:
        return service_error_response(exc)

    return JsonResponse({"data": result.as_dict()}, status=200 if result.already_claimed else 201)
