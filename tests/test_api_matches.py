"""API tests for the matches and settlement routers."""
import uuid

import pytest

from backend.config import get_settings

REVIEWER_TOKEN = "review-desk-secret"


def _auth(user) -> dict:
    return {"X-User-Id": str(user.user_id)}


def _reviewer() -> dict:
    return {"X-Reviewer-Token": REVIEWER_TOKEN}


async def _create(client, user, stake=100, **extra):
    response = await client.post(
        "/matches",
        json={"activity_type": "chess", "stake_amount": stake, **extra},
        headers=_auth(user),
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def reviewer_configured(test_app):
    """Configure the evidence-review token for dispute resolution."""
    configured = get_settings().model_copy(update={"dispute_reviewer_token": REVIEWER_TOKEN})
    test_app.dependency_overrides[get_settings] = lambda: configured
    return configured


async def _disputed_match(client, a, b) -> str:
    """Start a match between ``a`` and ``b`` and split the vote so it is disputed."""
    match = await _create(client, a)
    match_id = match["match_id"]
    await client.post(f"/matches/{match_id}/join", headers=_auth(b))
    await client.post("/settlement/run")
    await client.post(f"/matches/{match_id}/voting", headers=_auth(a))
    for voter in (a, b):
        response = await client.post(
            f"/matches/{match_id}/vote",
            json={"vote_for_user_id": str(voter.user_id)},
            headers=_auth(voter),
        )
        assert response.status_code == 200

    disputed = await client.post("/settlement/run")
    assert disputed.json()["disputed"] == 1
    return match_id


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_header_rejected(self, client):
        response = await client.get("/matches")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_header_rejected(self, client):
        response = await client.get("/matches", headers={"X-User-Id": "not-a-uuid"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, client):
        response = await client.get("/matches", headers={"X-User-Id": str(uuid.uuid4())})
        assert response.status_code == 401
        assert response.json()["detail"] == "Unknown user"


class TestMatchEndpoints:

    @pytest.mark.asyncio
    async def test_create_match(self, client, user_factory):
        creator = await user_factory(balance=500)

        data = await _create(client, creator, custom_rules="First to 3")

        assert data["status"] == "pending"
        assert data["total_pot"] == 100
        assert data["participant_count"] == 1
        assert data["custom_rules"] == "First to 3"
        assert data["created_at"].endswith("Z")
        assert data["participants"][0]["user_id"] == str(creator.user_id)

    @pytest.mark.asyncio
    async def test_create_without_funds(self, client, user_factory):
        creator = await user_factory(balance=50)

        response = await client.post(
            "/matches",
            json={"activity_type": "chess", "stake_amount": 100},
            headers=_auth(creator),
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient balance. You need 100 tokens."

    @pytest.mark.asyncio
    async def test_create_rejects_non_positive_stake(self, client, user_factory):
        creator = await user_factory(balance=100)

        response = await client.post(
            "/matches",
            json={"activity_type": "chess", "stake_amount": 0},
            headers=_auth(creator),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_join_and_get(self, client, user_factory):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        match = await _create(client, a)

        joined = await client.post(f"/matches/{match['match_id']}/join", headers=_auth(b))
        fetched = await client.get(f"/matches/{match['match_id']}", headers=_auth(a))

        assert joined.status_code == 200
        assert joined.json()["participant_count"] == 2
        assert fetched.json()["total_pot"] == 200

    @pytest.mark.asyncio
    async def test_unknown_match_is_404(self, client, user_factory):
        user = await user_factory()

        response = await client.get(f"/matches/{uuid.uuid4()}", headers=_auth(user))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_mine(self, client, user_factory):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        mine = await _create(client, a)
        await _create(client, b)

        response = await client.get("/matches", params={"mine": True}, headers=_auth(a))

        assert [m["match_id"] for m in response.json()["matches"]] == [mine["match_id"]]

    @pytest.mark.asyncio
    async def test_lone_creator_can_leave(self, client, user_factory, read_wallet):
        a = await user_factory(balance=100)
        match = await _create(client, a)

        response = await client.post(f"/matches/{match['match_id']}/leave", headers=_auth(a))

        assert response.status_code == 200
        assert response.json()["participant_count"] == 0
        assert await read_wallet(a.user_id) == (100, 100)

    @pytest.mark.asyncio
    async def test_resolve_requires_dispute(self, client, user_factory, reviewer_configured):
        a = await user_factory(balance=100)
        match = await _create(client, a)

        response = await client.post(
            f"/matches/{match['match_id']}/resolve",
            json={"winner_id": str(a.user_id)},
            headers=_reviewer(),
        )

        assert response.status_code == 400


class TestDisputeResolution:

    @pytest.mark.asyncio
    async def test_tied_party_cannot_resolve_own_dispute(self, client, user_factory, read_wallet,
                                                         reviewer_configured):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        match_id = await _disputed_match(client, a, b)

        response = await client.post(
            f"/matches/{match_id}/resolve",
            json={"winner_id": str(b.user_id)},
            headers=_auth(b),
        )

        assert response.status_code == 403
        final = (await client.get(f"/matches/{match_id}", headers=_auth(a))).json()
        assert final["status"] == "disputed"
        assert await read_wallet(b.user_id) == (0, 0)

    @pytest.mark.asyncio
    async def test_wrong_reviewer_token_rejected(self, client, user_factory, reviewer_configured):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        match_id = await _disputed_match(client, a, b)

        response = await client.post(
            f"/matches/{match_id}/resolve",
            json={"winner_id": str(a.user_id)},
            headers={**_auth(a), "X-Reviewer-Token": "guessed"},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_resolution_disabled_without_configured_token(self, client, user_factory):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        match_id = await _disputed_match(client, a, b)

        response = await client.post(
            f"/matches/{match_id}/resolve",
            json={"winner_id": str(a.user_id)},
            headers={"X-Reviewer-Token": ""},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_reviewer_settles_dispute(self, client, user_factory, read_wallet, reviewer_configured):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        match_id = await _disputed_match(client, a, b)

        response = await client.post(
            f"/matches/{match_id}/resolve",
            json={"winner_id": str(a.user_id)},
            headers=_reviewer(),
        )

        assert response.status_code == 200
        assert response.json()["applied"] is True
        assert response.json()["to_status"] == "completed"
        assert await read_wallet(a.user_id) == (196, 196)
        assert await read_wallet(b.user_id) == (0, 0)


class TestLifecycleOverApi:

    @pytest.mark.asyncio
    async def test_full_match_settles(self, client, user_factory, read_wallet, notifier):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        match = await _create(client, a)
        match_id = match["match_id"]
        await client.post(f"/matches/{match_id}/join", headers=_auth(b))

        started = await client.post("/settlement/run")
        assert started.status_code == 200
        assert started.json()["started"] == 1

        voting = await client.post(f"/matches/{match_id}/voting", headers=_auth(a))
        assert voting.status_code == 200
        assert voting.json()["applied"] is True
        assert voting.json()["to_status"] == "voting"

        for voter in (a, b):
            response = await client.post(
                f"/matches/{match_id}/vote",
                json={"vote_for_user_id": str(b.user_id)},
                headers=_auth(voter),
            )
            assert response.status_code == 200

        settled = await client.post("/settlement/run")
        assert settled.json()["completed"] == 1

        final = (await client.get(f"/matches/{match_id}", headers=_auth(a))).json()
        assert final["status"] == "completed"
        assert final["payout_amount"] == 196
        assert final["fee_amount"] == 4
        assert await read_wallet(b.user_id) == (196, 196)
        assert notifier.count("match_paid_out") == 1

        activity = await client.get(f"/matches/{match_id}/activity", headers=_auth(a))
        types = [item["activity_type"] for item in activity.json()["activities"]]
        assert types[0] == "created"
        assert types[-1] == "payout"

    @pytest.mark.asyncio
    async def test_vote_for_outsider_rejected(self, client, user_factory):
        a = await user_factory(balance=100)
        b = await user_factory(balance=100)
        outsider = await user_factory()
        match = await _create(client, a)
        match_id = match["match_id"]
        await client.post(f"/matches/{match_id}/join", headers=_auth(b))
        await client.post("/settlement/run")
        await client.post(f"/matches/{match_id}/voting", headers=_auth(a))

        response = await client.post(
            f"/matches/{match_id}/vote",
            json={"vote_for_user_id": str(outsider.user_id)},
            headers=_auth(a),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_voting_before_start_rejected(self, client, user_factory):
        a = await user_factory(balance=100)
        match = await _create(client, a)

        response = await client.post(f"/matches/{match['match_id']}/voting", headers=_auth(a))

        assert response.status_code == 400


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
