from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, HttpResponse
from django.shortcuts import render
from django.views.decorators.http import require_GET

from core import scopes
from core.forms_auth import ClaimCodeForm
from core.polls_codes import normalize_claim_code


@require_GET
@login_required
def home(request: HttpRequest) -> HttpResponse:
    profile = scopes.user_profile(request.user)
    return render(
        request,
        "core/home.html",
        {
            "profile": profile,
            "needs_onboarding": profile is None or profile.school_id is None,
        },
    )


@require_GET
@login_required
def claim(request: HttpRequest) -> HttpResponse:
    form = ClaimCodeForm(initial={"code": normalize_claim_code(request.GET.get("c"))})
    return render(request, "core/claim.html", {"form": form})
