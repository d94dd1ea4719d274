from django import forms
from django.contrib.auth import get_user_model
from django.contrib.auth.forms import AuthenticationForm


class EmailAuthenticationForm(AuthenticationForm):
    """Password login where the username is the account's email address."""

    username = forms.EmailField(label="E-Mail", widget=forms.EmailInput(attrs={"autofocus": True}))

    def clean(self):
        email = str(self.cleaned_data.get("username") or "").strip().lower()
        if email:
            # Accounts created before email normalization may use a different
            # username; resolve through the email column.
            user = get_user_model().objects.filter(email__iexact=email).only("username").first()
            self.cleaned_data["username"] = user.get_username() if user is not None else email
        return super().clean()


class MagicLinkRequestForm(forms.Form):
    email = forms.EmailField(label="E-Mail")
    next = forms.CharField(required=False, widget=forms.HiddenInput)


class ClaimCodeForm(forms.Form):
    code = forms.CharField(label="Code", max_length=32)
