"""
HTTP tests for the channel points API

Tests cover:
1. Error mapping (404 / 400 / 403 / 409 and request validation)
2. Redemption and admin point routes end to end
3. Action type discovery and config validation
"""

import pytest
from fastapi.testclient import TestClient

from channel_points.api import create_app
from channel_points.models import RewardTier


@pytest.fixture
def client(service, settings):
    with TestClient(create_app(service=service, settings=settings)) as client:
        yield client


class TestHealthAndUsers:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_create_user_grants_starting_points(self, client):
        response = client.post("/users", json={"email": "mira@example.com", "display_name": "mira"})

        assert response.status_code == 201
        body = response.json()
        assert body["points"] == 1000

        history = client.get(f"/users/{body['id']}/transactions").json()
        assert history["current_balance"] == 1000
        assert history["total_count"] == 1
        assert history["entries"][0]["description"] == "Welcome bonus"

    def test_duplicate_user(self, client, make_user):
        make_user(name="mira")
        response = client.post("/users", json={"email": "mira@example.com", "display_name": "mira"})

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_user"

    def test_unknown_user(self, client):
        response = client.get("/users/missing-user")

        assert response.status_code == 404
        assert response.json() == {"error": "user_not_found", "detail": "User missing-user not found"}

    @pytest.mark.parametrize("path", [
        "/users/{id}/transactions?limit=-1",
        "/users/{id}/transactions?limit=0",
        "/leaderboard?limit=-5",
        "/leaderboard?limit=0",
    ])
    def test_non_positive_limit_rejected(self, client, make_user, path):
        user = make_user()

        response = client.get(path.format(id=user.id))

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_redemptions_of_unknown_user(self, client):
        response = client.get("/users/missing-user/redemptions")

        assert response.status_code == 404
        assert response.json()["error"] == "user_not_found"


class TestRedeemRoute:
    def test_redeem(self, client, make_user, make_reward):
        user = make_user(points=600)
        reward = make_reward(cost=250)

        response = client.post(f"/users/{user.id}/rewards/{reward.id}/redeem")

        assert response.status_code == 200
        body = response.json()
        assert body["new_balance"] == 350
        assert body["redemption"]["status"] == "completed"
        assert body["action"]["data"]["chat_message"] == f"{user.display_name} got Shout-out"

    def test_insufficient_points(self, client, make_user, make_reward):
        user = make_user(points=100)
        reward = make_reward(cost=250)

        response = client.post(f"/users/{user.id}/rewards/{reward.id}/redeem")

        assert response.status_code == 400
        assert response.json()["error"] == "insufficient_points"

    def test_premium_required(self, client, make_user, make_reward):
        user = make_user(points=1000)
        reward = make_reward(cost=100, tier=RewardTier.PREMIUM)

        response = client.post(f"/users/{user.id}/rewards/{reward.id}/redeem")

        assert response.status_code == 403
        assert response.json()["error"] == "premium_required"

    def test_reward_not_found(self, client, make_user):
        user = make_user()
        response = client.post(f"/users/{user.id}/rewards/missing-reward/redeem")
        assert response.status_code == 404


class TestAdminRoutes:
    def test_give_points(self, client, make_user):
        user = make_user(points=0)

        response = client.post(
            f"/admin/users/{user.id}/give-points",
            json={"amount": 75, "description": "Raid bonus"},
        )

        assert response.status_code == 200
        assert response.json()["points"] == 75

    @pytest.mark.parametrize("payload", [
        {"amount": 0, "description": "nothing"},
        {"amount": -10, "description": "negative"},
        {"amount": 10, "description": ""},
        {"amount": 10, "description": "x" * 501},
        {"description": "missing amount"},
    ])
    def test_invalid_admin_payload(self, client, make_user, payload):
        user = make_user()

        response = client.post(f"/admin/users/{user.id}/give-points", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert client.get(f"/users/{user.id}").json()["points"] == 1000

    def test_remove_points_clamps(self, client, make_user):
        user = make_user(points=40)

        response = client.post(
            f"/admin/users/{user.id}/remove-points",
            json={"amount": 100, "description": "Penalty"},
        )

        assert response.json()["points"] == 0

    def test_transfer_to_self(self, client, make_user):
        user = make_user()

        response = client.post(
            "/admin/points/transfer",
            json={"from_user_id": user.id, "to_user_id": user.id, "amount": 5},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "same_user"

    def test_transfer(self, client, make_user):
        alice = make_user(points=100, name="alice")
        bob = make_user(points=0, name="bob")

        response = client.post(
            "/admin/points/transfer",
            json={"from_user_id": alice.id, "to_user_id": bob.id, "amount": 60},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["from_user"]["points"] == 40
        assert body["to_user"]["points"] == 60

    def test_bulk_points(self, client, make_user):
        user = make_user(points=0)

        response = client.post("/owner/bulk-points", json={"updates": [
            {"user_id": user.id, "points_earned": 20},
            {"user_id": "missing-user", "points_earned": 20},
        ]})

        assert response.status_code == 200
        assert response.json()["successful"] == 1
        assert response.json()["failed"] == 1

    def test_empty_bulk_rejected(self, client):
        response = client.post("/owner/bulk-points", json={"updates": []})
        assert response.status_code == 400


class TestRedemptionProcessingRoutes:
    def test_pending_then_complete(self, client, make_user, make_reward):
        user = make_user()
        reward = make_reward(cost=100, action_type="music_control", action_config={"action": "request_song"})
        redemption_id = client.post(f"/users/{user.id}/rewards/{reward.id}/redeem").json()["redemption"]["id"]

        pending = client.get("/owner/redemptions/pending").json()
        assert [p["id"] for p in pending] == [redemption_id]
        assert pending[0]["reward"]["title"] == "Shout-out"

        response = client.put(f"/owner/redemptions/{redemption_id}/status", json={"status": "completed"})
        assert response.status_code == 200
        assert response.json()["processed_at"] is not None

        response = client.put(f"/owner/redemptions/{redemption_id}/status", json={"status": "failed"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state_transition"

    def test_unknown_redemption(self, client):
        response = client.put("/owner/redemptions/missing/status", json={"status": "completed"})
        assert response.status_code == 404


class TestRewardsAndActionTypes:
    def test_list_action_types(self, client):
        types = {entry["type"] for entry in client.get("/action-types").json()}
        assert {"chat_message", "sound_effect", "screen_effect", "music_control", "custom"} <= types

    def test_validate_action_config(self, client):
        response = client.post("/action-types/screen_effect/validate", json={"config": {"effect": "confetti"}})
        assert response.json() == {"action_type": "screen_effect", "valid": True, "reason": None}

        response = client.post("/action-types/screen_effect/validate", json={"config": {"effect": "lasers"}})
        body = response.json()
        assert body["valid"] is False
        assert body["reason"]

    def test_validate_unknown_action_type(self, client):
        response = client.post("/action-types/fog_machine/validate", json={"config": {}})

        assert response.status_code == 400
        assert response.json()["error"] == "unknown_action_type"

    def test_create_reward_with_bad_config(self, client):
        response = client.post("/admin/rewards", json={
            "title": "Airhorn",
            "cost": 100,
            "action_type": "sound_effect",
            "action_config": {"volume": 0.5},
        })

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_action_config"

    def test_premium_rewards_hidden_from_regular_users(self, client, make_user, make_reward):
        regular = make_user()
        premium = make_user(is_premium=True)
        make_reward(cost=100, title="Common")
        make_reward(cost=200, title="VIP", tier=RewardTier.PREMIUM)

        assert [r["title"] for r in client.get(f"/users/{regular.id}/rewards").json()] == ["Common"]
        assert [r["title"] for r in client.get(f"/users/{premium.id}/rewards").json()] == ["Common", "VIP"]

    def test_categories(self, client):
        response = client.post("/categories", json={"name": "Alerts"})
        assert response.status_code == 201
        assert response.json()["color"] == "#8b5cf6"

        assert client.post("/categories", json={"name": "Alerts"}).status_code == 409
        assert [c["name"] for c in client.get("/categories").json()] == ["Alerts"]
