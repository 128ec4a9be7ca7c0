import logging
from typing import Any, Literal, Optional

from pydantic import StrictBool

from ..models import ActionResult, RedemptionRecord, RedemptionStatus, RewardRecord, UserRecord
from .base import ActionConfig, ActionHandler

logger = logging.getLogger(__name__)

MusicAction = Literal["skip", "play", "pause", "volume_up", "volume_down", "request_song"]

RESULT_MESSAGES = {
    "skip": "Skipped current song",
    "play": "Started music playback",
    "pause": "Paused music playback",
    "volume_up": "Increased volume",
    "volume_down": "Decreased volume",
    "request_song": "Song request submitted for review",
}


class MusicControlConfig(ActionConfig):
    action: MusicAction
    requires_confirmation: Optional[StrictBool] = None
    custom_data: Optional[Any] = None


class MusicControlHandler(ActionHandler):
    """
    Controls stream music playback.

    Song requests and actions flagged ``requires_confirmation`` are left in
    ``processing`` until the streamer confirms them.
    """

    action_type = "music_control"
    config_model = MusicControlConfig
    label = "Music control"

    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        config = self.parse_config(reward.action_config)

        logger.info(
            "[MUSIC] Music control action: %s", config.action,
            extra={
                "requires_confirmation": config.requires_confirmation,
                "user_id": user.id,
                "redemption_id": redemption.id,
            },
        )

        message = RESULT_MESSAGES[config.action]
        should_complete = config.action != "request_song"
        if config.requires_confirmation and config.action != "request_song":
            message += " (pending confirmation)"
            should_complete = False

        return ActionResult(
            success=True,
            message=message,
            data={
                "action": config.action,
                "requires_confirmation": config.requires_confirmation,
                "custom_data": config.custom_data,
            },
            next_status=RedemptionStatus.COMPLETED if should_complete else RedemptionStatus.PROCESSING,
        )
