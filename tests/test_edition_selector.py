"""Tests for edition selection"""

import pytest

from shelfbridge.edition_selector import (
    EditionConstants,
    score_completeness,
    score_duration,
    score_edition,
    score_format,
    score_popularity,
    select_edition,
)
from shelfbridge.models import Candidate, Edition, SourceBook

AUDIO = Edition(id=1, format="audiobook", users_count=45, audio_seconds=43200)
EBOOK = Edition(id=2, format="ebook", users_count=150)


class TestSelectEdition:
    def test_audiobook_edition_wins_for_audiobook_source(self) -> None:
        candidate = Candidate(id=10, title="Book", editions=(EBOOK, AUDIO))
        selection = select_edition(candidate, SourceBook(duration_seconds=43200), "audiobook")

        assert selection.edition.id == 1
        assert selection.score.total_score == pytest.approx(85.9, abs=0.1)
        assert selection.alternatives[0].edition.id == 2
        assert selection.alternatives[0].total_score == pytest.approx(55.6, abs=0.1)
        assert selection.detected_format == "audiobook"
        assert "perfect_format_bonus" in selection.breakdown

    def test_format_detected_from_source(self) -> None:
        candidate = Candidate(id=10, title="Book", editions=(EBOOK, AUDIO))
        selection = select_edition(candidate, SourceBook(narrator="Ray Porter", duration_seconds=43200))

        assert selection.detected_format == "audiobook"
        assert selection.edition.id == 1

    def test_ebook_source_prefers_ebook(self) -> None:
        candidate = Candidate(id=10, title="Book", editions=(AUDIO, EBOOK))
        selection = select_edition(candidate, SourceBook(media_type="ebook"))

        assert selection.detected_format == "ebook"
        assert selection.edition.id == 2

    @pytest.mark.parametrize("candidate", [Candidate(id=1), None, "book", {"editions": [1]}])
    def test_nothing_to_select(self, candidate) -> None:
        assert select_edition(candidate, SourceBook(), "audiobook") is None

    def test_equal_scores_keep_input_order(self) -> None:
        first = Edition(id="a", format="ebook")
        second = Edition(id="b", format="ebook")
        selection = select_edition(Candidate(id=1, editions=(first, second)), SourceBook(), "ebook")

        assert selection.edition.id == "a"
        assert selection.alternatives[0].edition.id == "b"

    def test_at_most_two_alternatives(self) -> None:
        editions = tuple(Edition(id=i, format="ebook", users_count=i) for i in range(1, 6))
        selection = select_edition(Candidate(id=1, editions=editions), SourceBook(), "ebook")

        assert selection.edition.id == 5
        assert [alt.edition.id for alt in selection.alternatives] == [4, 3]


class TestEditionFactors:
    @pytest.mark.parametrize(
        "edition_format,detected,expected",
        [
            ("audiobook", "audiobook", 100.0),
            ("ebook", "ebook", 100.0),
            ("ebook", "audiobook", 62.5),
            ("audiobook", "ebook", 62.5),
            ("physical", "audiobook", 37.5),
            ("vinyl", "ebook", 12.5),
            (None, "ebook", 20.0),
        ],
    )
    def test_format(self, edition_format, detected, expected) -> None:
        assert score_format(edition_format, detected).score == expected

    def test_popularity(self) -> None:
        assert score_popularity(0).score == 20.0
        assert score_popularity(None).score == 20.0
        assert score_popularity(float("inf")).score == 20.0
        assert score_popularity(99).score == pytest.approx(70.0)
        assert score_popularity(10 ** 9).score == 100.0

    def test_duration(self) -> None:
        assert score_duration(EBOOK, 43200, "ebook").score == 60.0
        assert score_duration(EBOOK, 43200, "audiobook").score == 30.0
        assert score_duration(AUDIO, None, "audiobook").score == 50.0
        assert score_duration(AUDIO, 43200, "audiobook").score == 100.0

    def test_completeness_floor(self) -> None:
        assert score_completeness(Edition(id=1)).score == 40.0

    def test_completeness_full(self) -> None:
        edition = Edition(
            id=1, format="audiobook", asin="B08FHBV4ZX", isbn_13="9780593135204",
            pages=400, audio_seconds=57600, users_count=10,
        )
        assert score_completeness(edition).score == 100.0

    def test_popularity_bonus(self) -> None:
        scored = score_edition(Edition(id=1, format="ebook", users_count=10000), None, "ebook")
        bonus = [a for a in scored.adjustments if a.name == "popularity_bonus"]

        assert bonus[0].points == pytest.approx(1.0)

    def test_popularity_bonus_capped(self) -> None:
        scored = score_edition(Edition(id=1, users_count=10 ** 9), None, "ebook")
        bonus = [a for a in scored.adjustments if a.name == "popularity_bonus"]

        assert bonus[0].points == 2.0

    def test_total_is_bounded(self) -> None:
        edition = Edition(id=1, format="audiobook", users_count=float("nan"), audio_seconds=float("inf"))
        scored = score_edition(edition, float("-inf"), "audiobook")

        assert 0.0 <= scored.total_score <= 100.0

    def test_constants_override(self) -> None:
        constants = EditionConstants.from_overrides({"cross_format_score": 80.0, "title_weight": 1})

        assert score_format("ebook", "audiobook", constants).score == 80.0
