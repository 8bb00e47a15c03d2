"""Tests for nesting stored replies and quotes into a conversation tree."""

from types import SimpleNamespace

from sqlalchemy import func, select, text

from depthcaster.models.cast_reply import CastReply
from depthcaster.models.curated_cast import PARENT_CAST_PLACEHOLDER_HASH, CuratedCast
from depthcaster.services import neynar
from depthcaster.services.conversation import (
    ORPHAN_DROP,
    ORPHAN_PROMOTE,
    SORT_CHRONOLOGICAL,
    SORT_ENGAGEMENT,
    SORT_NEWEST,
    SORT_QUALITY,
    build_reply_tree,
    count_nodes,
    fetch_and_store_conversation,
    quote_parents_to_resolve,
    reply_row,
    store_replies,
)
from depthcaster.services.curation import curate_cast
from tests.factories import cast_data, make_cast

ROOT = "0xAAA"


def row(cast_hash, parent, depth, curated=ROOT, quoted=None, **kwargs):
    cast = cast_data(cast_hash, parent_hash=parent, quotes=[quoted] if quoted else None, **kwargs)
    return SimpleNamespace(**reply_row(cast, curated, parent, depth, quoted_cast_hash=quoted))


def hashes(nodes):
    return [node.hash for node in nodes]


class TestBuildReplyTree:
    def test_nests_reply_under_its_parent(self):
        rows = [row("0xBBB", ROOT, 1, minutes=1), row("0xCCC", "0xBBB", 2, minutes=2)]
        roots = build_reply_tree(ROOT, rows)

        assert hashes(roots) == ["0xBBB"]
        assert hashes(roots[0].children) == ["0xCCC"]
        assert count_nodes(roots) == 2

        data = roots[0].to_dict()
        assert data["hash"] == "0xBBB"
        assert data["_reply_depth"] == 1
        assert data["_parent_cast_hash"] == ROOT
        assert data["_is_quote_cast"] is False
        assert data["_root_cast_hash"] == ROOT
        assert data["children"][0]["hash"] == "0xCCC"
        assert data["children"][0]["children"] == []

    def test_building_twice_gives_the_same_tree(self):
        rows = [row("0xBBB", ROOT, 1, minutes=1), row("0xCCC", "0xBBB", 2, minutes=2)]
        first = [n.to_dict() for n in build_reply_tree(ROOT, rows)]
        second = [n.to_dict() for n in build_reply_tree(ROOT, rows)]
        assert first == second

    def test_duplicate_rows_keep_the_first(self):
        rows = [row("0xBBB", ROOT, 1, text="first"), row("0xBBB", ROOT, 1, text="second")]
        roots = build_reply_tree(ROOT, rows)
        assert len(roots) == 1
        assert roots[0].cast.text == "first"

    def test_parent_match_ignores_case(self):
        rows = [row("0xBBB", ROOT, 1), row("0xCCC", "0xbbb", 2, minutes=1)]
        roots = build_reply_tree(ROOT, rows)
        assert hashes(roots) == ["0xBBB"]
        assert hashes(roots[0].children) == ["0xCCC"]

    def test_orphan_promoted_to_top_level(self):
        rows = [row("0xBBB", ROOT, 1), row("0xDDD", "0xMISSING", 2, minutes=1)]
        roots = build_reply_tree(ROOT, rows, orphan_policy=ORPHAN_PROMOTE)
        assert hashes(roots) == ["0xBBB", "0xDDD"]

    def test_orphan_dropped(self):
        rows = [row("0xBBB", ROOT, 1), row("0xDDD", "0xMISSING", 2, minutes=1)]
        roots = build_reply_tree(ROOT, rows, orphan_policy=ORPHAN_DROP)
        assert hashes(roots) == ["0xBBB"]

    def test_placeholder_and_undecodable_rows_skipped(self):
        parent_row = row("0xPARENT", None, 0, curated=PARENT_CAST_PLACEHOLDER_HASH)
        broken = row("0xEEE", ROOT, 1)
        broken.cast_data = None
        roots = build_reply_tree(ROOT, [parent_row, broken, row("0xBBB", ROOT, 1)])
        assert hashes(roots) == ["0xBBB"]

    def test_quote_of_root_is_top_level_even_when_replying_elsewhere(self):
        rows = [row("0xQQQ", "0xELSEWHERE", 0, quoted=ROOT)]
        roots = build_reply_tree(ROOT, rows)
        assert hashes(roots) == ["0xQQQ"]
        assert roots[0].to_dict()["_is_quote_cast"] is True
        assert quote_parents_to_resolve(ROOT, roots) == {"0xELSEWHERE"}

    def test_quote_replying_to_quoted_cast_needs_no_parent(self):
        rows = [row("0xQQQ", ROOT, 0, quoted=ROOT)]
        roots = build_reply_tree(ROOT, rows)
        assert quote_parents_to_resolve(ROOT, roots) == set()


class TestSortModes:
    def setup_method(self):
        # 0xB1 is older but has the most recent activity through its child
        self.rows = [
            row("0xB1", ROOT, 1, minutes=1, likes=0, text="short", score=0.1),
            row("0xB2", ROOT, 1, minutes=5, likes=10, text="x" * 400, score=0.9),
            row("0xC1", "0xB1", 2, minutes=10),
            row("0xC0", "0xB1", 2, minutes=3),
        ]

    def test_chronological(self):
        roots = build_reply_tree(ROOT, self.rows, SORT_CHRONOLOGICAL)
        assert hashes(roots) == ["0xB1", "0xB2"]

    def test_newest_uses_latest_activity_in_subtree(self):
        roots = build_reply_tree(ROOT, self.rows, SORT_NEWEST)
        assert hashes(roots) == ["0xB1", "0xB2"]
        assert roots[0].latest_activity() > roots[1].latest_activity()

    def test_engagement(self):
        roots = build_reply_tree(ROOT, self.rows, SORT_ENGAGEMENT)
        assert hashes(roots) == ["0xB2", "0xB1"]

    def test_quality(self):
        roots = build_reply_tree(ROOT, self.rows, SORT_QUALITY)
        assert hashes(roots) == ["0xB2", "0xB1"]

    def test_children_always_chronological(self):
        for sort_by in (SORT_NEWEST, SORT_ENGAGEMENT, SORT_QUALITY, SORT_CHRONOLOGICAL):
            roots = build_reply_tree(ROOT, self.rows, sort_by)
            b1 = next(n for n in roots if n.hash == "0xB1")
            assert hashes(b1.children) == ["0xC0", "0xC1"]


async def seed_thread(db):
    await curate_cast(db, cast_data(ROOT), 1)
    await store_replies(
        db,
        [
            reply_row(cast_data("0xBBB", parent_hash=ROOT, minutes=1), ROOT, ROOT, 1),
            reply_row(cast_data("0xCCC", parent_hash="0xBBB", minutes=2), ROOT, "0xBBB", 2),
        ],
    )
    await db.commit()


class TestConversationEndpoint:
    async def test_returns_nested_replies(self, client, db):
        await seed_thread(db)
        resp = await client.get("/api/conversation/database", params={"cast_hash": ROOT})
        assert resp.status_code == 200
        data = resp.json()
        assert data["root_cast"]["hash"] == ROOT
        assert data["total_replies"] == 2
        assert [r["hash"] for r in data["replies"]] == ["0xBBB"]
        assert [c["hash"] for c in data["replies"][0]["children"]] == ["0xCCC"]

    async def test_quote_carries_stored_parent(self, client, db):
        await seed_thread(db)
        parent = cast_data("0xELSEWHERE", text="the parent")
        quote = cast_data("0xQQQ", parent_hash="0xELSEWHERE", quotes=[ROOT], minutes=3)
        await store_replies(
            db,
            [
                reply_row(parent, PARENT_CAST_PLACEHOLDER_HASH, None, 0),
                reply_row(quote, ROOT, "0xELSEWHERE", 0, quoted_cast_hash=ROOT),
            ],
        )
        await db.commit()

        resp = await client.get("/api/conversation/database", params={"cast_hash": ROOT})
        replies = resp.json()["replies"]
        assert [r["hash"] for r in replies] == ["0xBBB", "0xQQQ"]
        assert replies[1]["parent_cast"]["text"] == "the parent"
        assert resp.json()["total_replies"] == 3

    async def test_undecodable_reply_is_skipped(self, client, db):
        await seed_thread(db)
        await db.execute(text("UPDATE cast_replies SET cast_data = '{not json' WHERE reply_cast_hash = '0xCCC'"))
        await db.commit()

        resp = await client.get("/api/conversation/database", params={"cast_hash": ROOT})
        assert resp.status_code == 200
        assert [r["hash"] for r in resp.json()["replies"]] == ["0xBBB"]
        assert resp.json()["replies"][0]["children"] == []
        assert resp.json()["total_replies"] == 1

    async def test_not_curated(self, client):
        resp = await client.get("/api/conversation/database", params={"cast_hash": "0xNOPE"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Cast is not curated"}

    async def test_missing_hash_and_bad_sort(self, client, db):
        await seed_thread(db)
        resp = await client.get("/api/conversation/database")
        assert resp.status_code == 400
        resp = await client.get("/api/conversation/database", params={"cast_hash": ROOT, "sort_by": "random"})
        assert resp.status_code == 400


class TestConversationIngestion:
    async def test_stores_quality_replies_only(self, db, monkeypatch):
        await curate_cast(db, cast_data(ROOT), 1)
        await db.commit()

        good = make_cast("0xBBB", parent_hash=ROOT, minutes=1)
        good["direct_replies"] = [make_cast("0xCCC", parent_hash="0xBBB", minutes=2)]
        weak = make_cast("0xLOW", parent_hash=ROOT, score=0.1, text="meh", minutes=3)
        weak["direct_replies"] = [make_cast("0xUNDER", parent_hash="0xLOW", minutes=4)]
        root = make_cast(ROOT, likes=5)
        root["direct_replies"] = [good, weak]

        async def fake_conversation(cast_hash, depth):
            return root if cast_hash == ROOT else {}

        async def fake_quotes(cast_hash, limit=50):
            return []

        monkeypatch.setattr(neynar, "lookup_conversation", fake_conversation)
        monkeypatch.setattr(neynar, "fetch_quotes", fake_quotes)

        stats = await fetch_and_store_conversation(db, ROOT)
        await db.commit()
        assert stats == {"stored": 2, "total": 2, "quotes_stored": 0, "quote_replies_stored": 0}

        result = await db.execute(select(CastReply.reply_cast_hash, CastReply.reply_depth).order_by(CastReply.reply_depth))
        assert result.all() == [("0xBBB", 1), ("0xCCC", 2)]

        result = await db.execute(
            select(CuratedCast.likes_count, CuratedCast.conversation_fetched_at).where(CuratedCast.cast_hash == ROOT)
        )
        likes, fetched_at = result.one()
        assert likes == 5
        assert fetched_at is not None

    async def test_refetch_does_not_duplicate(self, db, monkeypatch):
        await curate_cast(db, cast_data(ROOT), 1)
        root = make_cast(ROOT)
        root["direct_replies"] = [make_cast("0xBBB", parent_hash=ROOT, minutes=1)]

        async def fake_conversation(cast_hash, depth):
            return root if cast_hash == ROOT else {}

        async def fake_quotes(cast_hash, limit=50):
            return [make_cast("0xQQQ", quotes=[ROOT], minutes=2)]

        monkeypatch.setattr(neynar, "lookup_conversation", fake_conversation)
        monkeypatch.setattr(neynar, "fetch_quotes", fake_quotes)

        await fetch_and_store_conversation(db, ROOT)
        stats = await fetch_and_store_conversation(db, ROOT)
        await db.commit()
        assert stats["quotes_stored"] == 1

        result = await db.execute(select(func.count(CastReply.id)))
        assert result.scalar() == 2
        result = await db.execute(select(CastReply.quoted_cast_hash).where(CastReply.reply_cast_hash == "0xQQQ"))
        assert result.scalar() == ROOT
