"""Agenda and minutes documents stored as JSON on ``Event``.

``normalize_*`` read whatever is stored, including older list-shaped
documents. ``sanitize_*`` validate what a client submits before it is saved.
"""

import datetime
import math
import uuid
from collections.abc import Iterable, Mapping

from django.utils import timezone
from django.utils.dateparse import parse_datetime

MAX_AGENDA_ITEMS = 50
MAX_MINUTES_ENTRIES = 200
MAX_TOPIC_LENGTH = 280
MAX_TEXT_LENGTH = 4000
MAX_DURATION_MINUTES = 720


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _first(entry: Mapping[str, object], *keys: str) -> str | None:
    for key in keys:
        value = _clean(entry.get(key))
        if value is not None:
            return value
    return None


def coerce_duration(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value):
        return None
    minutes = round(value)
    if minutes <= 0:
        return None
    return min(minutes, MAX_DURATION_MINUTES)


def _recorded_at(value: str | None, *, now: datetime.datetime) -> str:
    if value:
        try:
            parsed = parse_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            if timezone.is_naive(parsed):
                parsed = timezone.make_aware(parsed, timezone=datetime.UTC)
            return parsed.astimezone(datetime.UTC).isoformat()
    return now.astimezone(datetime.UTC).isoformat()


def _agenda_item(entry: Mapping[str, object], *, item_id: str, topic: str) -> dict[str, object]:
    return {
        "id": item_id,
        "topic": topic[:MAX_TOPIC_LENGTH],
        "owner": _first(entry, "owner", "presenter"),
        "startsAt": _first(entry, "startsAt", "time"),
        "durationMinutes": coerce_duration(entry.get("durationMinutes", entry.get("duration"))),
        "notes": _first(entry, "notes", "description"),
    }


def _minutes_entry(
    entry: Mapping[str, object],
    *,
    entry_id: str,
    note: str,
    now: datetime.datetime,
) -> dict[str, object]:
    return {
        "id": entry_id,
        "note": note[:MAX_TEXT_LENGTH],
        "recordedAt": _recorded_at(_first(entry, "recordedAt", "createdAt", "timestamp"), now=now),
        "agendaItemId": _first(entry, "agendaItemId", "topicId"),
        "author": _first(entry, "author", "recorder"),
    }


def _legacy_agenda_item(raw: object, index: int) -> dict[str, object] | None:
    fallback_id = f"legacy-{index + 1}"
    if not isinstance(raw, Mapping):
        text = _clean(raw)
        if text is None:
            return None
        return {
            "id": fallback_id,
            "topic": text[:MAX_TOPIC_LENGTH],
            "owner": None,
            "startsAt": None,
            "durationMinutes": None,
            "notes": None,
        }

    topic = _first(raw, "topic", "title", "topicTitle")
    if topic is None:
        return None
    return _agenda_item(raw, item_id=_first(raw, "id", "key") or fallback_id, topic=topic)


def _legacy_minutes_entry(raw: object, index: int, *, now: datetime.datetime) -> dict[str, object] | None:
    fallback_id = f"legacy-{index + 1}"
    if not isinstance(raw, Mapping):
        note = _clean(raw)
        if note is None:
            return None
        return {
            "id": fallback_id,
            "note": note[:MAX_TEXT_LENGTH],
            "recordedAt": now.astimezone(datetime.UTC).isoformat(),
            "agendaItemId": None,
            "author": None,
        }

    note = _first(raw, "note", "summary", "text")
    if note is None:
        return None
    return _minutes_entry(raw, entry_id=_first(raw, "id", "key") or fallback_id, note=note, now=now)


def _document_parts(raw: object, list_key: str) -> tuple[list[object], str | None, str | None] | None:
    if raw is None:
        return None
    if isinstance(raw, list):
        return raw, None, None
    if isinstance(raw, Mapping):
        entries = raw.get(list_key)
        return (
            entries if isinstance(entries, list) else [],
            _clean(raw.get("updatedAt")),
            _clean(raw.get("preparedBy")),
        )
    return None


def _compact(values: Iterable[dict[str, object] | None]) -> list[dict[str, object]]:
    return [value for value in values if value is not None]


def normalize_agenda_document(raw: object) -> dict[str, object]:
    parts = _document_parts(raw, "items")
    if parts is None:
        return {"items": [], "updatedAt": None, "preparedBy": None}
    entries, updated_at, prepared_by = parts
    items = _compact(_legacy_agenda_item(item, index) for index, item in enumerate(entries[:MAX_AGENDA_ITEMS]))
    return {"items": items, "updatedAt": updated_at, "preparedBy": prepared_by}


def normalize_minutes_document(raw: object, *, now: datetime.datetime | None = None) -> dict[str, object]:
    reference = timezone.now() if now is None else now
    parts = _document_parts(raw, "entries")
    if parts is None:
        return {"entries": [], "updatedAt": None, "preparedBy": None}
    raw_entries, updated_at, prepared_by = parts
    entries = _compact(
        _legacy_minutes_entry(entry, index, now=reference)
        for index, entry in enumerate(raw_entries[:MAX_MINUTES_ENTRIES])
    )
    return {"entries": entries, "updatedAt": updated_at, "preparedBy": prepared_by}


def sanitize_agenda_payload(raw: object, *, now: datetime.datetime | None = None) -> dict[str, object] | None:
    if not isinstance(raw, Mapping):
        return None
    reference = timezone.now() if now is None else now
    raw_items = raw.get("items")
    items: list[dict[str, object]] = []
    for item in (raw_items if isinstance(raw_items, list) else [])[:MAX_AGENDA_ITEMS]:
        if not isinstance(item, Mapping):
            continue
        topic = _first(item, "topic", "title")
        if topic is None:
            continue
        items.append(_agenda_item(item, item_id=_first(item, "id") or str(uuid.uuid4()), topic=topic))
    return {
        "items": items,
        "updatedAt": reference.astimezone(datetime.UTC).isoformat(),
        "preparedBy": _clean(raw.get("preparedBy")),
    }


def sanitize_minutes_payload(raw: object, *, now: datetime.datetime | None = None) -> dict[str, object] | None:
    if not isinstance(raw, Mapping):
        return None
    reference = timezone.now() if now is None else now
    raw_entries = raw.get("entries")
    entries: list[dict[str, object]] = []
    for entry in (raw_entries if isinstance(raw_entries, list) else [])[:MAX_MINUTES_ENTRIES]:
        if not isinstance(entry, Mapping):
            continue
        note = _first(entry, "note", "summary", "text")
        if note is None:
            continue
        entries.append(_minutes_entry(entry, entry_id=_first(entry, "id") or str(uuid.uuid4()), note=note, now=reference))
    return {
        "entries": entries,
        "updatedAt": reference.astimezone(datetime.UTC).isoformat(),
        "preparedBy": _clean(raw.get("preparedBy")),
    }
