import secrets

CLAIM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CLAIM_CODE_GROUPS = 3
CLAIM_CODE_GROUP_LENGTH = 4
CLAIM_CODE_MIN_LENGTH = 8


def _random_group(length: int) -> str:
    return "".join(secrets.choice(CLAIM_CODE_ALPHABET) for _ in range(length))


def generate_claim_code() -> str:
    """Return a code like ``K7QZ-M2PA-9XWD``.

    The alphabet leaves out 0/O and 1/I so codes survive being read aloud or
    copied from a printed card.
    """

    return "-".join(_random_group(CLAIM_CODE_GROUP_LENGTH) for _ in range(CLAIM_CODE_GROUPS))


def normalize_claim_code(raw: object) -> str:
    return str(raw or "").strip().upper()
