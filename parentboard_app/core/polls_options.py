import uuid
from collections.abc import Iterable, Mapping

OPTION_LABEL_MAX_LENGTH = 200

_LABEL_KEYS = ("label", "title", "name")
_ID_KEYS = ("id", "key", "value")


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _first_clean(entry: Mapping[str, object], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = _clean(entry.get(key))
        if value is not None:
            return value
    return None


def normalize_poll_options(raw: object) -> list[dict[str, str]]:
    """Coerce stored or submitted options into ``[{"id", "label"[, "office"]}]``.

    Accepts a list of strings or dicts, a single string, or nothing. Entries
    without a usable label are dropped; entries without an id get a fresh one.
    """

    if not raw:
        return []

    if isinstance(raw, str):
        label = _clean(raw)
        return [{"id": str(uuid.uuid4()), "label": label}] if label else []

    if not isinstance(raw, list | tuple):
        return []

    options: list[dict[str, str]] = []
    for entry in raw:
        if isinstance(entry, Mapping):
            label = _first_clean(entry, _LABEL_KEYS)
            if label is None:
                continue
            option = {
                "id": _first_clean(entry, _ID_KEYS) or str(uuid.uuid4()),
                "label": label,
            }
            office = _clean(entry.get("office"))
            if office:
                option["office"] = office
            options.append(option)
            continue

        label = _clean(entry)
        if label is not None:
            options.append({"id": str(uuid.uuid4()), "label": label})
    return options


def build_poll_options(labels: Iterable[object]) -> list[dict[str, str]]:
    return [{"id": str(uuid.uuid4()), "label": label} for label in (_clean(v) for v in labels) if label]


def dedupe_options(options: Iterable[Mapping[str, str]]) -> list[dict[str, str]]:
    seen: set[str] = set()
    result: list[dict[str, str]] = []
    for option in options:
        label = str(option.get("label") or "").strip()[:OPTION_LABEL_MAX_LENGTH]
        if not label:
            continue
        key = label.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append({**option, "label": label})
    return result


def option_matches_choice(option: Mapping[str, str], choice: str) -> bool:
    return str(option.get("id") or "").strip() == choice or str(option.get("label") or "").strip() == choice
