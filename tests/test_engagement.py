"""Tests for engagement scoring and the quality threshold."""

from depthcaster.schemas.cast import CastData
from depthcaster.services.engagement import (
    cast_metadata,
    engagement_score,
    is_bot_cast,
    meets_quality_threshold,
    quality_score,
)
from tests.factories import cast_data


class TestEngagementScore:
    def test_weights_replies_recasts_likes(self):
        cast = cast_data("0x1", likes=3, recasts=2, replies=1)
        assert engagement_score(cast) == 1 * 4 + 2 * 2 + 3

    def test_counts_reaction_lists_when_counts_missing(self):
        cast = CastData.parse(
            {"hash": "0x1", "reactions": {"likes": [{"fid": 1}, {"fid": 2}], "recasts": [{"fid": 3}]}}
        )
        assert cast.likes_count == 2
        assert cast.recasts_count == 1
        assert engagement_score(cast) == 4


class TestQualityScore:
    def test_score_and_length(self):
        cast = cast_data("0x1", score=0.5, text="x" * 100)
        assert quality_score(cast) == 50 + 20

    def test_length_component_caps_at_100(self):
        cast = cast_data("0x1", score=None, text="x" * 5000)
        assert quality_score(cast) == 100


class TestQualityThreshold:
    def test_high_score_passes(self):
        assert meets_quality_threshold(cast_data("0x1", score=0.71, text="hi"))

    def test_score_at_threshold_fails_for_short_text(self):
        assert not meets_quality_threshold(cast_data("0x1", score=0.7, text="hi"))

    def test_long_text_passes_without_score(self):
        assert meets_quality_threshold(cast_data("0x1", score=None, text="x" * 501))
        assert not meets_quality_threshold(cast_data("0x1", score=None, text="x" * 500))

    def test_bot_author_always_fails(self):
        cast = cast_data("0x1", username="Bracky", score=0.99, text="x" * 1000)
        assert is_bot_cast(cast)
        assert not meets_quality_threshold(cast)

    def test_mentioning_a_bot_fails(self):
        cast = cast_data("0x1", score=0.99, mentions=["deepbot"])
        assert not meets_quality_threshold(cast)


class TestCastMetadata:
    def test_extracts_columns(self):
        cast = cast_data("0x1", text="hello", fid=42, likes=1, recasts=1, replies=1)
        meta = cast_metadata(cast)
        assert meta == {
            "cast_text": "hello",
            "cast_text_length": 5,
            "author_fid": 42,
            "likes_count": 1,
            "recasts_count": 1,
            "replies_count": 1,
            "engagement_score": 7,
        }

    def test_empty_text(self):
        meta = cast_metadata(CastData(hash="0x1"))
        assert meta["cast_text"] is None
        assert meta["cast_text_length"] == 0


class TestCastData:
    def test_parse_rejects_garbage(self):
        assert CastData.parse("{not json") is None
        assert CastData.parse([1, 2]) is None
        assert CastData.parse({"text": "no hash"}) is None

    def test_parse_json_string(self):
        cast = CastData.parse('{"hash": "0xabc", "text": "hi"}')
        assert cast.hash == "0xabc"
        assert cast.body == "hi"

    def test_quote_that_replies_elsewhere(self):
        quote = cast_data("0x2", parent_hash="0x9", quotes=["0x1"])
        assert quote.is_quote_cast
        assert quote.replies_elsewhere

    def test_quote_replying_to_quoted_cast(self):
        quote = cast_data("0x2", parent_hash="0x1", quotes=["0x1"])
        assert not quote.replies_elsewhere

    def test_unknown_fields_survive_round_trip(self):
        cast = CastData.parse({"hash": "0x1", "channel": {"id": "books"}})
        assert cast.to_payload()["channel"] == {"id": "books"}
