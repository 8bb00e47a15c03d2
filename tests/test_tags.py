"""Tests for admin tags on casts."""

from tests.factories import grant


class TestTags:
    async def test_add_list_remove(self, client, db):
        await grant(db, 9, "admin")
        resp = await client.post("/api/tags", json={"cast_hash": "0xA", "tag": " Books ", "admin_fid": 9})
        assert resp.status_code == 200
        assert resp.json()["tag"] == "books"

        listed = await client.get("/api/tags", params={"cast_hash": "0xA"})
        assert [t["tag"] for t in listed.json()["tags"]] == ["books"]

        dup = await client.post("/api/tags", json={"cast_hash": "0xA", "tag": "BOOKS", "admin_fid": 9})
        assert dup.status_code == 409

        resp = await client.delete("/api/tags", params={"cast_hash": "0xA", "tag": "Books", "admin_fid": 9})
        assert resp.status_code == 200
        resp = await client.delete("/api/tags", params={"cast_hash": "0xA", "tag": "books", "admin_fid": 9})
        assert resp.status_code == 404

    async def test_requires_admin(self, client, db):
        await grant(db, 1, "curator")
        resp = await client.post("/api/tags", json={"cast_hash": "0xA", "tag": "books", "admin_fid": 1})
        assert resp.status_code == 403

    async def test_blank_tag(self, client, db):
        await grant(db, 9, "admin")
        resp = await client.post("/api/tags", json={"cast_hash": "0xA", "tag": "  ", "admin_fid": 9})
        assert resp.status_code == 400
