from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse

from core.magic_links import make_magic_login_token
from core.tests.utils_test_data import create_school, create_user


class MagicLinkRequestTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = create_user("parent@example.org", school=create_school())

    def test_known_address_gets_a_link(self) -> None:
        resp = self.client.post(reverse("login-magic"), {"email": "Parent@Example.org", "next": "/claim/?c=ABCD"})

        self.assertEqual(resp.status_code, 200)
        self.assertTemplateUsed(resp, "core/magic_link_sent.html")
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["parent@example.org"])
        self.assertEqual(message.subject, "Dein Anmeldelink")
        self.assertIn("http://localhost:8000/auth/callback?token=", message.body)
        self.assertIn("15 Minuten", message.body)

    def test_unknown_address_looks_the_same(self) -> None:
        resp = self.client.post(reverse("login-magic"), {"email": "stranger@example.org"})

        self.assertEqual(resp.status_code, 200)
        self.assertTemplateUsed(resp, "core/magic_link_sent.html")
        self.assertEqual(mail.outbox, [])

    def test_send_failure_is_not_shown_to_requester(self) -> None:
        with (
            patch("core.views_auth.send_magic_login_link", side_effect=RuntimeError("smtp down")),
            self.assertLogs("core.views_auth", level="ERROR"),
        ):
            resp = self.client.post(reverse("login-magic"), {"email": "parent@example.org"})

        self.assertEqual(resp.status_code, 200)
        self.assertTemplateUsed(resp, "core/magic_link_sent.html")

    def test_invalid_email_rerenders_login(self) -> None:
        resp = self.client.post(reverse("login-magic"), {"email": "not-an-email"})

        self.assertEqual(resp.status_code, 200)
        self.assertTemplateUsed(resp, "core/login.html")


class MagicLinkCallbackTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = create_user("parent@example.org", school=create_school())

    def _callback(self, token: str):
        return self.client.get(reverse("auth-callback"), {"token": token})

    def test_valid_token_logs_in(self) -> None:
        resp = self._callback(make_magic_login_token(user=self.user))

        self.assertRedirects(resp, reverse("home"), fetch_redirect_response=False)
        self.assertEqual(int(self.client.session["_auth_user_id"]), self.user.pk)

    def test_next_url_is_followed(self) -> None:
        resp = self._callback(make_magic_login_token(user=self.user, next_url="/claim/?c=ABCD-EFGH-JKLM"))

        self.assertRedirects(resp, "/claim/?c=ABCD-EFGH-JKLM", fetch_redirect_response=False)

    def test_offsite_next_url_is_ignored(self) -> None:
        resp = self._callback(make_magic_login_token(user=self.user, next_url="https://evil.example.com/"))

        self.assertRedirects(resp, reverse("home"), fetch_redirect_response=False)

    def test_emailed_link_round_trip(self) -> None:
        self.client.post(reverse("login-magic"), {"email": "parent@example.org"})
        link = next(line for line in mail.outbox[0].body.splitlines() if "auth/callback" in line)
        token = parse_qs(urlparse(link.strip()).query)["token"][0]

        resp = self._callback(token)

        self.assertEqual(resp.status_code, 302)
        self.assertIn("_auth_user_id", self.client.session)

    def test_rejected_tokens(self) -> None:
        changed = make_magic_login_token(user=self.user)
        self.user.email = "new@example.org"
        self.user.save(update_fields=["email"])

        for label, token in (("garbage", "not-a-token"), ("email changed", changed)):
            with self.subTest(label):
                resp = self._callback(token)
                self.assertRedirects(resp, reverse("login"), fetch_redirect_response=False)
                self.assertNotIn("_auth_user_id", self.client.session)

    @override_settings(MAGIC_LINK_TTL_SECONDS=-1)
    def test_expired_token(self) -> None:
        resp = self._callback(make_magic_login_token(user=self.user))

        self.assertRedirects(resp, reverse("login"), fetch_redirect_response=False)
        self.assertNotIn("_auth_user_id", self.client.session)

    def test_missing_token(self) -> None:
        resp = self.client.get(reverse("auth-callback"))
        self.assertRedirects(resp, reverse("login"), fetch_redirect_response=False)


class PasswordLoginTests(TestCase):
    def test_login_with_email_and_password(self) -> None:
        user = create_user("parent@example.org", school=create_school())

        resp = self.client.post(reverse("login"), {"username": "parent@example.org", "password": "pw"})

        self.assertRedirects(resp, reverse("home"), fetch_redirect_response=False)
        self.assertEqual(int(self.client.session["_auth_user_id"]), user.pk)

    def test_home_requires_login(self) -> None:
        resp = self.client.get(reverse("home"))
        self.assertRedirects(resp, f"{reverse('login')}?next=/", fetch_redirect_response=False)

    def test_home_asks_for_onboarding_without_school(self) -> None:
        self.client.force_login(create_user("fresh@example.org"))

        resp = self.client.get(reverse("home"))

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.context["needs_onboarding"])

    def test_claim_page_prefills_code(self) -> None:
        self.client.force_login(create_user("fresh@example.org"))

        resp = self.client.get(reverse("claim"), {"c": "abcd-efgh-jklm"})

        self.assertContains(resp, 'value="ABCD-EFGH-JKLM"')
