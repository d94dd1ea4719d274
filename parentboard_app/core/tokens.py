from typing import Any

from django.conf import settings
from django.core import signing


def make_signed_token(payload: dict[str, Any]) -> str:
    return signing.dumps(payload, salt=settings.SECRET_KEY)


def read_signed_token(token: str, *, max_age_seconds: int) -> dict[str, Any]:
    """Verify and decode a token produced by ``make_signed_token``.

    Raises ``signing.SignatureExpired`` or ``signing.BadSignature``; callers
    decide how to present those to the user.
    """

    payload = signing.loads(token, salt=settings.SECRET_KEY, max_age=max_age_seconds)
    if not isinstance(payload, dict):
        raise signing.BadSignature("Token payload must be an object")
    return payload
