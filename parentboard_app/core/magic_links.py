import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import post_office.mail
from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AbstractBaseUser
from django.core import signing
from django.urls import reverse

from core.tokens import make_signed_token, read_signed_token

logger = logging.getLogger(__name__)

MAGIC_LOGIN_TOKEN_PURPOSE = "magic_login"


@dataclass(frozen=True, slots=True)
class MagicLoginTokenPayload:
    user_id: int
    email: str
    next_url: str


def _normalize_email(value: object) -> str:
    return str(value or "").strip().lower()


def find_user_for_email(email: str) -> AbstractBaseUser | None:
    normalized = _normalize_email(email)
    if not normalized:
        return None
    return get_user_model().objects.filter(email__iexact=normalized, is_active=True).order_by("id").first()


def make_magic_login_token(*, user: AbstractBaseUser, next_url: str = "") -> str:
    return make_signed_token(
        {
            "p": MAGIC_LOGIN_TOKEN_PURPOSE,
            "uid": user.pk,
            "email": _normalize_email(getattr(user, "email", "")),
            "next": str(next_url or ""),
        }
    )


def build_magic_login_url(*, token: str) -> str:
    base = str(settings.PUBLIC_BASE_URL or "").strip().rstrip("/")
    if not base:
        raise ValueError("PUBLIC_BASE_URL must be configured to build absolute login links.")

    return f"{base}{reverse('auth-callback')}?{urlencode({'token': token})}"


def read_magic_login_token(token: str) -> MagicLoginTokenPayload:
    payload = read_signed_token(token, max_age_seconds=settings.MAGIC_LINK_TTL_SECONDS)
    if str(payload.get("p") or "") != MAGIC_LOGIN_TOKEN_PURPOSE:
        raise signing.BadSignature("Wrong token purpose")

    user_id_raw = str(payload.get("uid") or "").strip()
    if not user_id_raw.isdigit():
        raise signing.BadSignature("Missing user id")

    return MagicLoginTokenPayload(
        user_id=int(user_id_raw),
        email=_normalize_email(payload.get("email")),
        next_url=str(payload.get("next") or ""),
    )


def resolve_magic_login_user(payload: MagicLoginTokenPayload) -> AbstractBaseUser | None:
    user = get_user_model().objects.filter(pk=payload.user_id, is_active=True).first()
    if user is None:
        return None
    # A changed address invalidates links mailed to the old one.
    if _normalize_email(getattr(user, "email", "")) != payload.email:
        return None
    return user


def send_magic_login_link(*, email: str, next_url: str = "") -> bool:
    """Queue a login link for ``email``.

    Returns False when no active account uses the address; callers must not
    reveal that to the requester.
    """

    user = find_user_for_email(email)
    if user is None:
        logger.info("Magic link requested for unknown address")
        return False

    token = make_magic_login_token(user=user, next_url=next_url)
    post_office.mail.send(
        recipients=[user.email],
        sender=settings.DEFAULT_FROM_EMAIL,
        template=settings.MAGIC_LINK_EMAIL_TEMPLATE_NAME,
        context={
            "login_url": build_magic_login_url(token=token),
            "valid_minutes": settings.MAGIC_LINK_TTL_SECONDS // 60,
        },
    )
    logger.info("Magic link queued user_id=%s", user.pk)
    return True
