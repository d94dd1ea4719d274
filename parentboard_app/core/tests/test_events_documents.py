import datetime

from django.test import SimpleTestCase

from core.events_documents import (
    MAX_AGENDA_ITEMS,
    coerce_duration,
    normalize_agenda_document,
    normalize_minutes_document,
    sanitize_agenda_payload,
    sanitize_minutes_payload,
)

NOW = datetime.datetime(2025, 9, 1, 18, 0, tzinfo=datetime.UTC)


class CoerceDurationTests(SimpleTestCase):
    def test_values(self) -> None:
        self.assertEqual(coerce_duration(45), 45)
        self.assertEqual(coerce_duration(12.6), 13)
        self.assertEqual(coerce_duration(10_000), 720)
        self.assertIsNone(coerce_duration(0))
        self.assertIsNone(coerce_duration(-5))
        self.assertIsNone(coerce_duration("30"))
        self.assertIsNone(coerce_duration(True))
        self.assertIsNone(coerce_duration(float("nan")))


class NormalizeDocumentTests(SimpleTestCase):
    def test_empty_documents(self) -> None:
        self.assertEqual(normalize_agenda_document(None), {"items": [], "updatedAt": None, "preparedBy": None})
        self.assertEqual(normalize_minutes_document(42), {"entries": [], "updatedAt": None, "preparedBy": None})

    def test_legacy_agenda_list(self) -> None:
        doc = normalize_agenda_document(["Begrüßung", {"title": "Kasse", "presenter": "Tom", "duration": 15}, {}])

        self.assertEqual(
            doc["items"],
            [
                {
                    "id": "legacy-1",
                    "topic": "Begrüßung",
                    "owner": None,
                    "startsAt": None,
                    "durationMinutes": None,
                    "notes": None,
                },
                {
                    "id": "legacy-2",
                    "topic": "Kasse",
                    "owner": "Tom",
                    "startsAt": None,
                    "durationMinutes": 15,
                    "notes": None,
                },
            ],
        )
        self.assertIsNone(doc["updatedAt"])

    def test_agenda_is_capped(self) -> None:
        doc = normalize_agenda_document({"items": [f"Punkt {i}" for i in range(80)], "preparedBy": " Rita "})

        self.assertEqual(len(doc["items"]), MAX_AGENDA_ITEMS)
        self.assertEqual(doc["preparedBy"], "Rita")

    def test_legacy_minutes_use_reference_time(self) -> None:
        doc = normalize_minutes_document(
            ["Beschluss: Ausflug", {"summary": "Kasse geprüft", "timestamp": "2025-08-30T10:00:00"}],
            now=NOW,
        )

        self.assertEqual(doc["entries"][0]["recordedAt"], NOW.isoformat())
        self.assertEqual(doc["entries"][1]["note"], "Kasse geprüft")
        self.assertEqual(doc["entries"][1]["recordedAt"], "2025-08-30T10:00:00+00:00")


class SanitizePayloadTests(SimpleTestCase):
    def test_non_mapping_is_ignored(self) -> None:
        self.assertIsNone(sanitize_agenda_payload([{"topic": "x"}]))
        self.assertIsNone(sanitize_minutes_payload("x"))

    def test_agenda_items_get_ids_and_truncation(self) -> None:
        doc = sanitize_agenda_payload({"items": [{"topic": "x" * 400}, {"id": "keep", "topic": "Kasse"}, "bad"]}, now=NOW)

        self.assertEqual(len(doc["items"]), 2)
        self.assertEqual(len(doc["items"][0]["topic"]), 280)
        self.assertTrue(doc["items"][0]["id"])
        self.assertEqual(doc["items"][1]["id"], "keep")
        self.assertEqual(doc["updatedAt"], NOW.isoformat())

    def test_minutes_entries(self) -> None:
        doc = sanitize_minutes_payload(
            {"entries": [{"text": "y" * 5000, "agendaItemId": "keep"}, {"note": " "}], "preparedBy": ""},
            now=NOW,
        )

        self.assertEqual(len(doc["entries"]), 1)
        self.assertEqual(len(doc["entries"][0]["note"]), 4000)
        self.assertEqual(doc["entries"][0]["agendaItemId"], "keep")
        self.assertIsNone(doc["preparedBy"])
