"""Tests for the Neynar client with the HTTP session faked out."""

import pytest
import requests

from depthcaster.config import settings
from depthcaster.services import neynar
from tests.factories import make_cast


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json})
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def fake_session(monkeypatch):
    monkeypatch.setattr(settings, "NEYNAR_API_KEY", "test-key")
    session = FakeSession(FakeResponse())
    monkeypatch.setattr(neynar, "_session", lambda: session)
    return session


class TestRequest:
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "NEYNAR_API_KEY", "")
        with pytest.raises(neynar.NeynarError):
            await neynar.lookup_cast("0x1")

    async def test_lookup_cast(self, fake_session):
        fake_session.response = FakeResponse(payload={"cast": make_cast("0x1", text="hello")})
        cast = await neynar.lookup_cast("0x1")
        assert cast.text == "hello"
        assert fake_session.calls[0]["params"] == {"identifier": "0x1", "type": "hash"}
        assert fake_session.calls[0]["url"].endswith("/cast")

    async def test_not_found_is_none(self, fake_session):
        fake_session.response = FakeResponse(status_code=404)
        assert await neynar.lookup_cast("0x404") is None

    async def test_server_error(self, fake_session):
        fake_session.response = FakeResponse(status_code=502, text="bad gateway")
        with pytest.raises(neynar.NeynarError, match="HTTP 502"):
            await neynar.lookup_cast("0x1")

    async def test_network_error(self, fake_session):
        fake_session.error = requests.ConnectionError("refused")
        with pytest.raises(neynar.NeynarError):
            await neynar.lookup_cast("0x1")


class TestConversationAndQuotes:
    async def test_conversation_root(self, fake_session):
        root = make_cast("0x1")
        root["direct_replies"] = [make_cast("0x2", parent_hash="0x1")]
        fake_session.response = FakeResponse(payload={"conversation": {"cast": root}})
        raw = await neynar.lookup_conversation("0x1", 3)
        assert raw["direct_replies"][0]["hash"] == "0x2"
        assert fake_session.calls[0]["params"]["reply_depth"] == 3

    async def test_quotes(self, fake_session):
        fake_session.response = FakeResponse(payload={"casts": [make_cast("0xQ", quotes=["0x1"])]})
        quotes = await neynar.fetch_quotes("0x1")
        assert [q["hash"] for q in quotes] == ["0xQ"]


class TestPublish:
    async def test_sends_parent_and_embeds(self, fake_session):
        fake_session.response = FakeResponse(payload={"cast": make_cast("0xNEW", parent_hash="0xA")})
        cast = await neynar.publish_cast("signer", "hi", parent="0xA", embeds=[{"url": "https://x.test"}])
        assert cast.hash == "0xNEW"
        assert fake_session.calls[0]["json"] == {
            "signer_uuid": "signer",
            "text": "hi",
            "parent": "0xA",
            "embeds": [{"url": "https://x.test"}],
        }

    async def test_response_without_cast(self, fake_session):
        fake_session.response = FakeResponse(payload={"success": True})
        with pytest.raises(neynar.NeynarError):
            await neynar.publish_cast("signer", "hi")
