import datetime

from django.test import SimpleTestCase

from core.polls_codes import CLAIM_CODE_ALPHABET, generate_claim_code, normalize_claim_code
from core.polls_mandates import ScoredCandidate, allocate_seats, rank_candidates
from core.polls_options import dedupe_options, normalize_poll_options, option_matches_choice

T0 = datetime.datetime(2025, 9, 1, 18, 0, tzinfo=datetime.UTC)


def _scored(candidate_id: int, votes: int, *, claimed_minutes: int | None, created_minutes: int | None = 0):
    return ScoredCandidate(
        candidate_id=candidate_id,
        office="class_rep",
        display_name=f"Kandidat {candidate_id}",
        user_id=candidate_id,
        votes=votes,
        claimed_at=None if claimed_minutes is None else T0 + datetime.timedelta(minutes=claimed_minutes),
        created_at=None if created_minutes is None else T0 + datetime.timedelta(minutes=created_minutes),
    )


class RankCandidatesTests(SimpleTestCase):
    def test_orders_by_votes_descending(self) -> None:
        ranked = rank_candidates([_scored(1, 2, claimed_minutes=0), _scored(2, 5, claimed_minutes=0)])
        self.assertEqual([c.candidate_id for c in ranked], [2, 1])

    def test_ties_go_to_earlier_claim_then_earlier_creation(self) -> None:
        ranked = rank_candidates(
            [
                _scored(1, 3, claimed_minutes=10, created_minutes=0),
                _scored(2, 3, claimed_minutes=5, created_minutes=9),
                _scored(3, 3, claimed_minutes=5, created_minutes=1),
            ]
        )
        self.assertEqual([c.candidate_id for c in ranked], [3, 2, 1])

    def test_unclaimed_candidates_rank_after_claimed_ones_on_equal_votes(self) -> None:
        ranked = rank_candidates([_scored(1, 1, claimed_minutes=None), _scored(2, 1, claimed_minutes=30)])
        self.assertEqual([c.candidate_id for c in ranked], [2, 1])

    def test_missing_creation_time_ranks_last(self) -> None:
        ranked = rank_candidates(
            [
                _scored(1, 0, claimed_minutes=None, created_minutes=None),
                _scored(2, 0, claimed_minutes=None, created_minutes=3),
            ]
        )
        self.assertEqual([c.candidate_id for c in ranked], [2, 1])

    def test_ranking_is_idempotent(self) -> None:
        ranked = rank_candidates(
            [
                _scored(1, 1, claimed_minutes=1),
                _scored(2, 4, claimed_minutes=2),
                _scored(3, 1, claimed_minutes=1, created_minutes=0),
            ]
        )
        self.assertEqual(rank_candidates(ranked), ranked)


class AllocateSeatsTests(SimpleTestCase):
    def test_takes_first_n_seats(self) -> None:
        ranked = [_scored(i, 10 - i, claimed_minutes=i) for i in range(1, 5)]
        self.assertEqual([c.candidate_id for c in allocate_seats(ranked, 2)], [1, 2])

    def test_never_returns_more_winners_than_candidates(self) -> None:
        ranked = [_scored(1, 1, claimed_minutes=0)]
        self.assertEqual(len(allocate_seats(ranked, 3)), 1)

    def test_missing_or_invalid_seat_count_means_one_seat(self) -> None:
        ranked = [_scored(1, 2, claimed_minutes=0), _scored(2, 1, claimed_minutes=0)]
        self.assertEqual(len(allocate_seats(ranked, None)), 1)
        self.assertEqual(len(allocate_seats(ranked, 0)), 1)


class ClaimCodeTests(SimpleTestCase):
    def test_generated_code_shape(self) -> None:
        code = generate_claim_code()

        groups = code.split("-")
        self.assertEqual([len(g) for g in groups], [4, 4, 4])
        self.assertTrue(all(ch in CLAIM_CODE_ALPHABET for ch in "".join(groups)))

    def test_alphabet_skips_ambiguous_characters(self) -> None:
        for ch in "01IO":
            self.assertNotIn(ch, CLAIM_CODE_ALPHABET)

    def test_normalize_trims_and_uppercases(self) -> None:
        self.assertEqual(normalize_claim_code("  k7qz-m2pa-9xwd "), "K7QZ-M2PA-9XWD")
        self.assertEqual(normalize_claim_code(None), "")


class PollOptionsTests(SimpleTestCase):
    def test_normalize_accepts_strings_and_dicts(self) -> None:
        options = normalize_poll_options(["Ja", {"id": "n", "title": "Nein"}, {"label": "  "}, 7])

        self.assertEqual(len(options), 2)
        self.assertEqual(options[0]["label"], "Ja")
        self.assertTrue(options[0]["id"])
        self.assertEqual(options[1], {"id": "n", "label": "Nein"})

    def test_normalize_keeps_office(self) -> None:
        options = normalize_poll_options([{"id": "12", "label": "Anna", "office": "class_rep"}])
        self.assertEqual(options, [{"id": "12", "label": "Anna", "office": "class_rep"}])

    def test_normalize_single_string_and_empty(self) -> None:
        self.assertEqual([o["label"] for o in normalize_poll_options("Nur eine")], ["Nur eine"])
        self.assertEqual(normalize_poll_options(None), [])
        self.assertEqual(normalize_poll_options({"label": "x"}), [])

    def test_dedupe_is_case_insensitive_and_truncates(self) -> None:
        options = dedupe_options(
            [
                {"id": "a", "label": "Ja"},
                {"id": "b", "label": "ja"},
                {"id": "c", "label": "x" * 250},
            ]
        )
        self.assertEqual([o["id"] for o in options], ["a", "c"])
        self.assertEqual(len(options[1]["label"]), 200)

    def test_choice_matches_id_or_label(self) -> None:
        option = {"id": "opt-1", "label": "Ja"}
        self.assertTrue(option_matches_choice(option, "opt-1"))
        self.assertTrue(option_matches_choice(option, "Ja"))
        self.assertFalse(option_matches_choice(option, "Nein"))
