"""
Shared fixtures for the channel points tests.

Each test gets its own file-backed SQLite database so that threads in the
concurrency tests see the same data through separate connections.
"""

import time

import pytest

from channel_points.actions import ActionConfig, ActionHandler, build_default_registry
from channel_points.config import Settings
from channel_points.db import create_db_engine, create_schema, create_session_factory
from channel_points.models import (
    ActionResult,
    CreateRewardRequest,
    CreateUserRequest,
    RedemptionStatus,
    RewardTier,
)
from channel_points.service import LedgerService


class AlwaysFailsHandler(ActionHandler):
    action_type = "always_fails"
    config_model = ActionConfig

    def execute(self, user, reward, redemption):
        raise RuntimeError("overlay offline")


class SlowHandler(ActionHandler):
    action_type = "slow"
    config_model = ActionConfig

    def execute(self, user, reward, redemption):
        time.sleep(1.0)
        return ActionResult(success=True, message="done", next_status=RedemptionStatus.COMPLETED)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'points.db'}",
        starting_points=1000,
        action_timeout_seconds=0.3,
        action_workers=2,
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url, busy_timeout=settings.sqlite_busy_timeout)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def registry():
    return build_default_registry(AlwaysFailsHandler(), SlowHandler())


@pytest.fixture
def service(session_factory, registry, settings):
    service = LedgerService(session_factory, registry=registry, settings=settings)
    yield service
    service.close()


@pytest.fixture
def make_user(service):
    counter = {"n": 0}

    def _make_user(points=None, is_premium=False, name=None):
        counter["n"] += 1
        name = name or f"viewer{counter['n']}"
        user = service.create_user(CreateUserRequest(
            email=f"{name}@example.com",
            display_name=name,
            is_premium=is_premium,
        ))
        if points is not None:
            user = service.set_points(user.id, points, "test setup")
        return user

    return _make_user


@pytest.fixture
def make_reward(service):
    def _make_reward(
        cost=500,
        action_type="chat_message",
        action_config=None,
        tier=RewardTier.COMMON,
        is_active=True,
        title="Shout-out",
    ):
        return service.create_reward(CreateRewardRequest(
            title=title,
            cost=cost,
            action_type=action_type,
            action_config=action_config if action_config is not None else {"message": "{{username}} got {{reward}}"},
            tier=tier,
            is_active=is_active,
        ))

    return _make_reward
