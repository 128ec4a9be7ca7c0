"""
Reward action handlers.

A reward's behaviour is data: an ``action_type`` tag plus a config object.
New reward kinds are added by registering another handler, not by touching
the redemption workflow.
"""

import logging

from .base import ActionConfig, ActionHandler, ActionRegistry
from .chat_message import ChatMessageHandler
from .custom import CustomActionHandler
from .music_control import MusicControlHandler
from .screen_effect import ScreenEffectHandler
from .sound_effect import SoundEffectHandler

logger = logging.getLogger(__name__)

BUILTIN_HANDLERS = (
    ChatMessageHandler,
    SoundEffectHandler,
    ScreenEffectHandler,
    MusicControlHandler,
    CustomActionHandler,
)


def build_default_registry(*extra: ActionHandler, freeze: bool = True) -> ActionRegistry:
    registry = ActionRegistry()
    for handler_cls in BUILTIN_HANDLERS:
        registry.register(handler_cls())
    for handler in extra:
        registry.register(handler)
    if freeze:
        registry.freeze()
    logger.info("Registered %d action handlers: %s", len(registry), registry.supported_types())
    return registry


__all__ = [
    "ActionConfig",
    "ActionHandler",
    "ActionRegistry",
    "ChatMessageHandler",
    "SoundEffectHandler",
    "ScreenEffectHandler",
    "MusicControlHandler",
    "CustomActionHandler",
    "build_default_registry",
]
