"""Tests for user watches and in-app notifications."""

import requests

from depthcaster.config import settings
from depthcaster.models.watch import UserWatch
from depthcaster.services import notifications
from depthcaster.services.notifications import notify_watchers, push_payload
from depthcaster.services.users import ensure_user
from tests.factories import cast_data


async def watch(db, watcher, watched):
    await ensure_user(db, watcher)
    await ensure_user(db, watched)
    db.add(UserWatch(watcher_fid=watcher, watched_fid=watched))
    await db.commit()


class TestWatchEndpoints:
    async def test_watch_and_unwatch(self, client):
        resp = await client.post("/api/user-watch", json={"watcher_fid": 1, "watched_fid": 2})
        assert resp.status_code == 200
        assert resp.json()["watch"]["watched_fid"] == 2

        # Watching twice is not an error
        again = await client.post("/api/user-watch", json={"watcher_fid": 1, "watched_fid": 2})
        assert again.json()["watch"]["id"] == resp.json()["watch"]["id"]

        status = await client.get("/api/user/2/watch-status", params={"viewer_fid": 1})
        assert status.json()["is_watching"] is True

        listed = await client.get("/api/user-watch", params={"watcher_fid": 1})
        assert listed.json()["watched_fids"] == [2]

        resp = await client.delete("/api/user-watch", params={"watcher_fid": 1, "watched_fid": 2})
        assert resp.status_code == 200
        status = await client.get("/api/user/2/watch-status", params={"viewer_fid": 1})
        assert status.json()["is_watching"] is False

    async def test_cannot_watch_self(self, client):
        resp = await client.post("/api/user-watch", json={"watcher_fid": 1, "watched_fid": 1})
        assert resp.status_code == 400

    async def test_unwatch_unknown(self, client):
        resp = await client.delete("/api/user-watch", params={"watcher_fid": 1, "watched_fid": 2})
        assert resp.status_code == 404


class TestNotifyWatchers:
    async def test_failed_push_does_not_stop_others(self, db, monkeypatch):
        await watch(db, 2, 100)
        await watch(db, 3, 100)
        attempts = []

        async def flaky_push(user_fid, payload):
            attempts.append(user_fid)
            if user_fid == 2:
                raise requests.ConnectionError("relay down")

        monkeypatch.setattr(notifications, "send_push", flaky_push)
        outcome = await notify_watchers(db, cast_data("0xN", fid=100))
        assert outcome == {"notified": 2, "pushed": 1}
        assert attempts == [2, 3]

    async def test_author_without_watchers(self, db):
        outcome = await notify_watchers(db, cast_data("0xN", fid=100))
        assert outcome == {"notified": 0, "pushed": 0}

    async def test_relay_receives_payload(self, db, monkeypatch):
        await watch(db, 2, 100)
        sent = []

        class FakeResponse:
            def raise_for_status(self):
                pass

        def fake_post(url, json, timeout):
            sent.append((url, json))
            return FakeResponse()

        monkeypatch.setattr(settings, "PUSH_RELAY_URL", "https://push.example.test")
        monkeypatch.setattr(notifications.requests, "post", fake_post)
        await notify_watchers(db, cast_data("0xN", fid=100, text="hi"))
        assert sent[0][0] == "https://push.example.test"
        assert sent[0][1]["user_fid"] == 2
        assert sent[0][1]["data"]["cast_hash"] == "0xN"

    def test_push_body_is_truncated(self):
        payload = push_payload(cast_data("0xN", text="x" * 200))
        assert len(payload["body"]) == 140
        assert payload["body"].endswith("...")
        assert payload["title"] == "New cast from @alice"


class TestNotificationEndpoints:
    async def seed(self, db):
        await watch(db, 2, 100)
        await watch(db, 2, 101)
        await notify_watchers(db, cast_data("0xN1", fid=100, minutes=1))
        await notify_watchers(db, cast_data("0xN2", fid=101, username="bob", minutes=2))
        await db.commit()

    async def test_list_and_count(self, client, db):
        await self.seed(db)
        resp = await client.get("/api/notifications", params={"fid": 2})
        assert resp.status_code == 200
        data = resp.json()
        assert data["unread_count"] == 2
        assert [n["cast_hash"] for n in data["notifications"]] == ["0xN2", "0xN1"]
        assert data["notifications"][0]["cast_data"]["author"]["username"] == "bob"

        count = await client.get("/api/notifications/count", params={"fid": 2})
        assert count.json() == {"unread_count": 2}

    async def test_mark_some_seen(self, client, db):
        await self.seed(db)
        listed = (await client.get("/api/notifications", params={"fid": 2})).json()["notifications"]
        resp = await client.post("/api/notifications/seen", json={"fid": 2, "notification_ids": [listed[0]["id"]]})
        assert resp.json()["updated"] == 1
        count = await client.get("/api/notifications/count", params={"fid": 2})
        assert count.json()["unread_count"] == 1

    async def test_mark_all_seen(self, client, db):
        await self.seed(db)
        resp = await client.post("/api/notifications/seen", json={"fid": 2})
        assert resp.json()["updated"] == 2
        count = await client.get("/api/notifications/count", params={"fid": 2})
        assert count.json()["unread_count"] == 0

    async def test_bad_limit(self, client):
        resp = await client.get("/api/notifications", params={"fid": 2, "limit": 0})
        assert resp.status_code == 400
