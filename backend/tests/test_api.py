"""End-to-end tests of the HTTP surface over ASGITransport."""

from __future__ import annotations

import hashlib
import hmac
import json
import uuid

import pytest
from sqlalchemy import select

from bookworm.core.security import create_access_token
from bookworm.models import Match, MatchStatus

API = "/api/v1"
CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client) -> None:
        resp = await client.get(f"{API}/matches")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client) -> None:
        resp = await client.get(f"{API}/matches", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_deleted_user(self, client, factory, auth) -> None:
        gone = await factory.user(deleted=True)
        resp = await client.get(f"{API}/matches", headers=auth(gone))
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_cookie_session(self, client, factory) -> None:
        me = await factory.user()
        client.cookies.set("access_token", create_access_token({"sub": str(me.id)}))
        resp = await client.get(f"{API}/matches")
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------


class TestMatchesApi:
    @pytest.mark.asyncio
    async def test_candidates_and_remaining(self, client, factory, auth) -> None:
        me = await factory.user(genres=["Sci-Fi"])
        other = await factory.user("Other", genres=["sci-fi"])

        resp = await client.get(f"{API}/matches", headers=auth(me))

        assert resp.status_code == 200
        data = resp.json()
        assert data["remaining_today"] == 5
        assert [p["id"] for p in data["profiles"]] == [str(other.id)]
        assert data["profiles"][0]["score"] == 10

    @pytest.mark.asyncio
    async def test_like_then_mutual(self, client, factory, auth) -> None:
        alice = await factory.user("Alice")
        bob = await factory.user("Bob")

        resp = await client.post(
            f"{API}/matches",
            headers=auth(alice),
            json={"receiver_id": str(bob.id), "action": "like", "book_context": "Dune"},
        )
        assert resp.status_code == 201
        assert resp.json()["match"]["status"] == "PENDING"
        assert resp.json()["is_mutual"] is False

        resp = await client.post(
            f"{API}/matches", headers=auth(bob), json={"receiver_id": str(alice.id), "action": "like"}
        )
        assert resp.status_code == 201
        assert resp.json()["is_mutual"] is True

        resp = await client.get(f"{API}/matches/connections", headers=auth(alice))
        connections = resp.json()["connections"]
        assert [c["user"]["id"] for c in connections] == [str(bob.id)]
        assert connections[0]["book_context"] == "Dune"

    @pytest.mark.asyncio
    async def test_error_statuses(self, client, factory, auth) -> None:
        me = await factory.user()
        other = await factory.user()
        body = {"receiver_id": str(other.id), "action": "pass"}

        assert (await client.post(f"{API}/matches", headers=auth(me), json=body)).status_code == 201
        duplicate = await client.post(f"{API}/matches", headers=auth(me), json=body)
        assert duplicate.status_code == 409
        assert "detail" in duplicate.json()

        self_match = await client.post(
            f"{API}/matches", headers=auth(me), json={"receiver_id": str(me.id), "action": "like"}
        )
        assert self_match.status_code == 400

        missing = await client.post(
            f"{API}/matches", headers=auth(me), json={"receiver_id": str(uuid.uuid4()), "action": "like"}
        )
        assert missing.status_code == 404

        bad_action = await client.post(
            f"{API}/matches", headers=auth(me), json={"receiver_id": str(other.id), "action": "superlike"}
        )
        assert bad_action.status_code == 422

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, client, factory, auth) -> None:
        me = await factory.user()
        others = [await factory.user(f"Reader {i}") for i in range(6)]

        for other in others[:5]:
            resp = await client.post(
                f"{API}/matches", headers=auth(me), json={"receiver_id": str(other.id), "action": "like"}
            )
            assert resp.status_code == 201

        resp = await client.post(
            f"{API}/matches", headers=auth(me), json={"receiver_id": str(others[5].id), "action": "like"}
        )
        assert resp.status_code == 429
        assert "Premium" in resp.json()["detail"]

        listing = await client.get(f"{API}/matches", headers=auth(me))
        assert listing.json()["remaining_today"] == 0


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


class TestCallsApi:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, client, factory, auth) -> None:
        host = await factory.user("Host")
        member = await factory.user("Member")
        space = await factory.space(host, members=[member])
        url = f"{API}/spaces/{space.id}/call"

        started = await client.post(url, headers=auth(host))
        assert started.status_code == 201
        session = started.json()["session"]
        assert session["status"] == "WAITING"
        assert session["provider"] == "JITSI"

        again = await client.post(url, headers=auth(member), json={"provider": "jitsi"})
        assert again.status_code == 200
        assert again.json()["session"]["id"] == session["id"]

        token = await client.get(f"{url}/token", headers=auth(member))
        assert token.status_code == 200
        assert token.json()["room_id"] == session["provider_room_id"]
        assert token.json()["uid"] == str(member.id)

        current = (await client.get(url, headers=auth(host))).json()["session"]
        assert current["status"] == "LIVE"
        assert [p["user_id"] for p in current["participants"]] == [str(member.id)]

        assert (await client.delete(url, headers=auth(member))).status_code == 403
        ended = await client.delete(url, headers=auth(host))
        assert ended.status_code == 200
        assert ended.json()["session"]["status"] == "ENDED"
        assert ended.json()["session"]["participants"] == []

        late = await client.get(f"{url}/token", headers=auth(member))
        assert late.status_code == 404
        assert late.json() == {"detail": "No active call session"}

    @pytest.mark.asyncio
    async def test_non_member_and_unknown_provider(self, client, factory, auth) -> None:
        host = await factory.user()
        outsider = await factory.user()
        space = await factory.space(host)
        url = f"{API}/spaces/{space.id}/call"

        assert (await client.post(url, headers=auth(outsider))).status_code == 403
        assert (await client.get(url, headers=auth(host))).status_code == 404
        bad = await client.post(url, headers=auth(host), json={"provider": "zoom"})
        assert bad.status_code == 400


# ---------------------------------------------------------------------------
# Webhooks, cron and health
# ---------------------------------------------------------------------------


class TestWebhooksApi:
    @pytest.mark.asyncio
    async def test_signature_checked(self, client) -> None:
        body = json.dumps({"id": "evt-api", "type": "meeting.started"}).encode()

        rejected = await client.post(
            f"{API}/webhooks/daily", content=body, headers={"X-Daily-Signature": "bad"}
        )
        assert rejected.status_code == 401
        assert rejected.json() == {"detail": "Invalid signature"}

        signature = hmac.new(b"daily-webhook-secret", body, hashlib.sha256).hexdigest()
        accepted = await client.post(
            f"{API}/webhooks/daily", content=body, headers={"X-Daily-Signature": signature}
        )
        assert accepted.status_code == 200
        assert accepted.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client) -> None:
        resp = await client.post(f"{API}/webhooks/stripe", content=b"{}")
        assert resp.status_code == 400


class TestCronApi:
    @pytest.mark.asyncio
    async def test_requires_secret(self, client) -> None:
        assert (await client.get(f"{API}/cron/reset-match-quota")).status_code == 401
        wrong = await client.get(
            f"{API}/cron/expire-matches", headers={"Authorization": "Bearer wrong"}
        )
        assert wrong.status_code == 401

    @pytest.mark.asyncio
    async def test_runs_maintenance(self, client, db_session, factory) -> None:
        alice = await factory.user()
        bob = await factory.user()
        db_session.add(Match(sender_id=alice.id, receiver_id=bob.id, status=MatchStatus.PENDING))
        await db_session.commit()

        reset = await client.get(f"{API}/cron/reset-match-quota", headers=CRON_HEADERS)
        assert reset.json() == {"reset": 0}
        expired = await client.get(f"{API}/cron/expire-matches", headers=CRON_HEADERS)
        assert expired.json() == {"expired": 0}

        status = await db_session.scalar(
            select(Match.status).where(Match.sender_id == alice.id)
        )
        assert status == MatchStatus.PENDING


class TestHealth:
    @pytest.mark.asyncio
    async def test_ok(self, client) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
