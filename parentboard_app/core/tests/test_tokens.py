from django.conf import settings
from django.core import signing
from django.test import SimpleTestCase, override_settings

from core.tokens import make_signed_token, read_signed_token


class SignedTokenTests(SimpleTestCase):
    def test_round_trip(self) -> None:
        token = make_signed_token({"uid": 7, "email": "parent@example.org"})

        self.assertEqual(read_signed_token(token, max_age_seconds=60), {"uid": 7, "email": "parent@example.org"})

    def test_salted_with_secret_key(self) -> None:
        token = make_signed_token({"uid": 7})

        self.assertEqual(signing.loads(token, salt=settings.SECRET_KEY), {"uid": 7})
        with self.assertRaises(signing.BadSignature):
            signing.loads(token)

    def test_tampered_token(self) -> None:
        token = make_signed_token({"uid": 7})

        with self.assertRaises(signing.BadSignature):
            read_signed_token(token[:-2] + "xx", max_age_seconds=60)

    def test_expired_token(self) -> None:
        token = make_signed_token({"uid": 7})

        with self.assertRaises(signing.SignatureExpired):
            read_signed_token(token, max_age_seconds=-1)

    def test_non_object_payload_is_rejected(self) -> None:
        token = signing.dumps(["uid", 7], salt=settings.SECRET_KEY)

        with self.assertRaises(signing.BadSignature):
            read_signed_token(token, max_age_seconds=60)

    def test_other_secret_key_cannot_read(self) -> None:
        token = make_signed_token({"uid": 7})

        with override_settings(SECRET_KEY="another-secret-key-for-tests-only"), self.assertRaises(signing.BadSignature):
            read_signed_token(token, max_age_seconds=60)
