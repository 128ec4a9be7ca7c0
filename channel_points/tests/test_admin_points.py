"""
Unit Tests for admin point operations

Tests cover:
1. Give / remove (clamped) / set points
2. Transfers, including rollback and same-user rejection
3. Bulk updates with partial failures
4. Ledger reconciliation: balance equals the sum of logged amounts
"""

import pytest

from channel_points.exceptions import (
    InsufficientPointsError,
    InvalidRequestError,
    SameUserTransferError,
    UserNotFoundError,
)
from channel_points.models import BulkPointUpdateItem, TransactionType


def logged_total(service, user_id):
    return sum(e.amount for e in service.get_user_history(user_id))


class TestGivePoints:
    def test_give_points(self, service, make_user):
        user = make_user(points=100)

        updated = service.give_points(user.id, 250, "Raid bonus")

        assert updated.points == 350
        latest = service.get_user_history(user.id)[0]
        assert latest.type == TransactionType.ADMIN_ADDED
        assert latest.amount == 250
        assert latest.description == "Raid bonus"

    def test_give_to_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            service.give_points("missing-user", 10, "bonus")

    @pytest.mark.parametrize("amount", [0, -5, 2.5, True])
    def test_invalid_amounts(self, service, make_user, amount):
        user = make_user()
        with pytest.raises(InvalidRequestError):
            service.give_points(user.id, amount, "bonus")

    def test_description_required(self, service, make_user):
        user = make_user()
        with pytest.raises(InvalidRequestError):
            service.give_points(user.id, 10, "   ")


class TestRemovePoints:
    def test_remove_within_balance(self, service, make_user):
        user = make_user(points=300)

        updated = service.remove_points(user.id, 120, "Spam penalty")

        assert updated.points == 180
        latest = service.get_user_history(user.id)[0]
        assert latest.type == TransactionType.ADMIN_REMOVED
        assert latest.amount == -120

    def test_remove_clamps_and_logs_actual_amount(self, service, make_user):
        user = make_user(points=80)

        updated = service.remove_points(user.id, 200, "Reset")

        assert updated.points == 0
        latest = service.get_user_history(user.id)[0]
        assert latest.amount == -80
        assert logged_total(service, user.id) == 0

    def test_remove_from_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            service.remove_points("missing-user", 10, "penalty")


class TestSetPoints:
    def test_set_lower_logs_removal(self, service, make_user):
        user = make_user(points=300)

        updated = service.set_points(user.id, 100, "correction")

        assert updated.points == 100
        latest = service.get_user_history(user.id)[0]
        assert latest.type == TransactionType.ADMIN_REMOVED
        assert latest.amount == -200
        assert latest.description == "Points set to 100 (-200): correction"

    def test_set_higher_logs_addition(self, service, make_user):
        user = make_user(points=100)

        service.set_points(user.id, 450, "giveaway winner")

        latest = service.get_user_history(user.id)[0]
        assert latest.type == TransactionType.ADMIN_ADDED
        assert latest.amount == 350

    def test_set_zero_allowed(self, service, make_user):
        user = make_user(points=100)
        assert service.set_points(user.id, 0, "wipe").points == 0

    def test_negative_target_rejected(self, service, make_user):
        user = make_user(points=100)
        with pytest.raises(InvalidRequestError):
            service.set_points(user.id, -1, "nope")


class TestTransferPoints:
    def test_transfer_logs_both_sides(self, service, make_user):
        alice = make_user(points=500, name="alice")
        bob = make_user(points=100, name="bob")

        result = service.transfer_points(alice.id, bob.id, 50, "Gift")

        assert result.from_user.points == 450
        assert result.to_user.points == 150
        assert result.message == "Transferred 50 points from alice to bob"

        alice_entry = service.get_user_history(alice.id)[0]
        bob_entry = service.get_user_history(bob.id)[0]
        assert (alice_entry.type, alice_entry.amount) == (TransactionType.TRANSFER, -50)
        assert alice_entry.description == "Transfer to bob: Gift"
        assert (bob_entry.type, bob_entry.amount) == (TransactionType.TRANSFER, 50)
        assert bob_entry.description == "Transfer from alice: Gift"

    def test_missing_destination_changes_nothing(self, service, make_user):
        alice = make_user(points=500)
        entries_before = len(service.get_user_history(alice.id))

        with pytest.raises(UserNotFoundError):
            service.transfer_points(alice.id, "missing-user", 50, "Gift")

        assert service.get_user(alice.id).points == 500
        assert len(service.get_user_history(alice.id)) == entries_before

    def test_missing_source(self, service, make_user):
        bob = make_user(points=100)
        with pytest.raises(UserNotFoundError):
            service.transfer_points("missing-user", bob.id, 50, "Gift")

    def test_insufficient_source(self, service, make_user):
        alice = make_user(points=30)
        bob = make_user(points=0)

        with pytest.raises(InsufficientPointsError):
            service.transfer_points(alice.id, bob.id, 50, "Gift")

        assert service.get_user(alice.id).points == 30
        assert service.get_user(bob.id).points == 0

    def test_same_user_rejected(self, service, make_user):
        alice = make_user(points=100)

        with pytest.raises(SameUserTransferError) as exc_info:
            service.transfer_points(alice.id, alice.id, 10, "Loop")

        assert exc_info.value.status_code == 400


class TestBulkUpdate:
    def test_partial_failure_does_not_abort_siblings(self, service, make_user):
        alice = make_user(points=0)
        bob = make_user(points=10)

        result = service.bulk_update_points([
            BulkPointUpdateItem(user_id=alice.id, points_earned=40, description="Watch time"),
            BulkPointUpdateItem(user_id="missing-user", points_earned=15, description="Watch time"),
            {"user_id": bob.id, "points_earned": 5},
        ])

        assert result.successful == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert "missing-user" in result.errors[0]
        assert service.get_user(alice.id).points == 40
        assert service.get_user(bob.id).points == 15

        bob_entry = service.get_user_history(bob.id)[0]
        assert bob_entry.type == TransactionType.EARNED
        assert bob_entry.description == "Points earned from streaming"

    def test_invalid_item_is_counted(self, service, make_user):
        alice = make_user(points=0)

        result = service.bulk_update_points([
            {"user_id": alice.id, "points_earned": -3},
            {"user_id": alice.id, "points_earned": 3},
        ])

        assert (result.successful, result.failed) == (1, 1)
        assert service.get_user(alice.id).points == 3

    def test_repeated_user_history_follows_batch_order(self, service, make_user):
        alice = make_user(points=0)

        service.bulk_update_points([
            {"user_id": alice.id, "points_earned": 10, "description": "first stream"},
            {"user_id": alice.id, "points_earned": 20, "description": "second stream"},
        ])

        latest = service.get_user_history(alice.id, limit=2)
        assert [e.description for e in latest] == ["second stream", "first stream"]

    def test_empty_batch_rejected(self, service):
        with pytest.raises(InvalidRequestError):
            service.bulk_update_points([])


class TestReconciliation:
    def test_balance_equals_logged_total(self, service, make_user, make_reward):
        alice = make_user(name="alice")
        bob = make_user(name="bob")
        reward = make_reward(cost=150)

        service.give_points(alice.id, 200, "bonus")
        service.redeem_reward(alice.id, reward.id)
        service.remove_points(alice.id, 5000, "reset")
        service.set_points(alice.id, 640, "restore")
        service.transfer_points(alice.id, bob.id, 140, "share")
        service.bulk_update_points([{"user_id": bob.id, "points_earned": 60}])

        for user_id in (alice.id, bob.id):
            user = service.get_user(user_id)
            assert user.points >= 0
            assert user.points == logged_total(service, user_id)

        assert service.get_user(alice.id).points == 500
        assert service.get_user(bob.id).points == 1200
