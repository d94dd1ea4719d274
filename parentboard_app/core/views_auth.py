import logging
from typing import override

from django.contrib import messages
from django.contrib.auth import login
from django.contrib.auth import views as auth_views
from django.core import signing
from django.http import HttpRequest, HttpResponse
from django.shortcuts import redirect, render
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_GET, require_http_methods

from core.forms_auth import EmailAuthenticationForm, MagicLinkRequestForm
from core.magic_links import read_magic_login_token, resolve_magic_login_user, send_magic_login_link

logger = logging.getLogger(__name__)

MAGIC_LINK_BACKEND = "django.contrib.auth.backends.ModelBackend"


def _safe_next_url(request: HttpRequest, candidate: str) -> str:
    value = str(candidate or "").strip()
    if value and url_has_allowed_host_and_scheme(
        value,
        allowed_hosts={request.get_host()},
        require_https=request.is_secure(),
    ):
        return value
    return ""


class EmailLoginView(auth_views.LoginView):
    template_name = "core/login.html"
    authentication_form = EmailAuthenticationForm
    redirect_authenticated_user = True

    @override
    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        context["magic_form"] = MagicLinkRequestForm(initial={"next": self.get_redirect_url()})
        return context


@require_http_methods(["GET", "POST"])
def magic_link_request(request: HttpRequest) -> HttpResponse:
    if request.user.is_authenticated:
        return redirect("home")

    form = MagicLinkRequestForm(request.POST or None)
    if request.method == "POST" and form.is_valid():
        next_url = _safe_next_url(request, form.cleaned_data.get("next") or "")
        try:
            send_magic_login_link(email=form.cleaned_data["email"], next_url=next_url)
        except Exception:
            # Same answer either way; the address must not leak through errors.
            logger.exception("Magic link send failed")
        return render(request, "core/magic_link_sent.html", {"email": form.cleaned_data["email"]})

    return render(request, "core/login.html", {"form": EmailAuthenticationForm(request), "magic_form": form})


@require_GET
def auth_callback(request: HttpRequest) -> HttpResponse:
    token = str(request.GET.get("token") or "").strip()
    if not token:
        messages.warning(request, "Der Anmeldelink ist unvollständig.")
        return redirect("login")

    try:
        payload = read_magic_login_token(token)
    except signing.SignatureExpired:
        messages.warning(request, "Der Anmeldelink ist abgelaufen. Bitte fordere einen neuen an.")
        return redirect("login")
    except signing.BadSignature:
        messages.warning(request, "Der Anmeldelink ist ungültig.")
        return redirect("login")

    user = resolve_magic_login_user(payload)
    if user is None:
        messages.warning(request, "Der Anmeldelink ist ungültig.")
        return redirect("login")

    login(request, user, backend=MAGIC_LINK_BACKEND)
    logger.info("Magic link login user_id=%s", user.pk)
    return redirect(_safe_next_url(request, payload.next_url) or "home")


logout_view = auth_views.LogoutView.as_view()
