"""
Unit tests for label classification and context building.
"""

import pytest

from trend_pulse.processing.aggregate import CoOccurrence
from trend_pulse.processing.labels import ContextBuilder, classify_label, has_action_word
from trend_pulse.types import LabelQuality


class TestClassifyLabel:
    """Tests for classify_label."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Senate Blocks Tariff Bill", LabelQuality.EVENT_PHRASE),
            ("XYZ Policy Reform", LabelQuality.EVENT_PHRASE),
            ("Pentagon", LabelQuality.ENTITY_ONLY),
            ("Elon Musk", LabelQuality.ENTITY_ONLY),
            ("Quarterly Earnings Season Outlook", LabelQuality.FALLBACK_GENERATED),
        ],
    )
    def test_rules(self, label, expected):
        assert classify_label(label) == expected

    def test_upstream_hint_wins(self):
        """Test the extraction hint marks any label as an event phrase."""
        assert classify_label("Pentagon", is_event_phrase_hint=True) == LabelQuality.EVENT_PHRASE

    def test_action_words(self):
        assert has_action_word("court ruled against")
        assert not has_action_word("blue sky")


class TestContextBuilder:
    """Tests for ContextBuilder."""

    @pytest.fixture
    def cooccurrence(self):
        """Co-occurrence for an entity seen in four documents."""
        return CoOccurrence(
            doc_count=4,
            topic_counts={"budget": 3, "news": 4, "hearing": 2, "senate blocks budget": 1},
            topic_labels={"budget": "Budget", "news": "News", "hearing": "Hearing"},
            docs_by_topic={"budget": {"d1", "d2", "d3"}, "news": {"d1", "d2", "d3", "d4"}},
            phrase_counts={"Senate Blocks Budget": 1, "Budget": 3},
        )

    def test_entity_only_gets_context(self, cooccurrence):
        """Test terms, phrases, summary and burst score."""
        builder = ContextBuilder(blocklist={"news"})

        context = builder.build("Pentagon", LabelQuality.ENTITY_ONLY, cooccurrence)

        # "news" is blocklisted, action-word topics are phrases, not terms
        assert context.terms == ["Budget"]
        assert context.phrases == ["Senate Blocks Budget"]
        assert context.summary == "Pentagon: Senate Blocks Budget"
        assert context.burst_score == pytest.approx(75.0)
        assert context.has_context

    def test_event_phrase_gets_no_context(self, cooccurrence):
        """Test context is only built for entity-only labels."""
        context = ContextBuilder().build(
            "Senate Blocks Tariff Bill", LabelQuality.EVENT_PHRASE, cooccurrence
        )

        assert not context.has_context
        assert context.summary is None

    def test_no_documents(self):
        """Test an entity without co-occurring documents."""
        context = ContextBuilder().build("Pentagon", LabelQuality.ENTITY_ONLY, CoOccurrence())

        assert not context.has_context
