import logging
from typing import Annotated, Optional

from pydantic import Field, StrictStr

from ..models import ActionResult, RedemptionRecord, RedemptionStatus, RewardRecord, UserRecord
from .base import ActionConfig, ActionHandler

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MS = 3000


class SoundEffectConfig(ActionConfig):
    sound_url: Annotated[StrictStr, Field(min_length=1)]
    volume: Optional[Annotated[float, Field(ge=0, le=1, strict=True)]] = None
    duration: Optional[Annotated[float, Field(ge=0, strict=True)]] = None


class SoundEffectHandler(ActionHandler):
    action_type = "sound_effect"
    config_model = SoundEffectConfig
    label = "Sound effect"

    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        config = self.parse_config(reward.action_config)
        volume = config.volume if config.volume is not None else 1.0
        duration = config.duration or DEFAULT_DURATION_MS

        logger.info(
            "[SOUND] Playing sound effect: %s", config.sound_url,
            extra={
                "volume": volume,
                "duration": duration,
                "user_id": user.id,
                "redemption_id": redemption.id,
                "triggered_by": user.display_name,
            },
        )

        return ActionResult(
            success=True,
            message=f"Sound effect triggered: {config.sound_url}",
            data={"sound_url": config.sound_url, "volume": volume, "duration": duration},
            next_status=RedemptionStatus.COMPLETED,
        )
