import logging
from typing import Annotated, Literal, Optional

from pydantic import Field, StrictStr

from ..models import ActionResult, RedemptionRecord, RedemptionStatus, RewardRecord, UserRecord
from .base import HEX_COLOR, ActionConfig, ActionHandler

logger = logging.getLogger(__name__)

Effect = Literal["confetti", "fireworks", "rain", "snow", "hearts", "stars", "explosion"]
Intensity = Literal["low", "medium", "high", "extreme"]


class ScreenEffectConfig(ActionConfig):
    effect: Effect
    duration: Optional[Annotated[float, Field(ge=0, strict=True)]] = None
    intensity: Optional[Intensity] = None
    color: Optional[Annotated[StrictStr, Field(pattern=HEX_COLOR)]] = None


class ScreenEffectHandler(ActionHandler):
    action_type = "screen_effect"
    config_model = ScreenEffectConfig
    label = "Screen effect"

    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        config = self.parse_config(reward.action_config)
        duration = config.duration or 3000
        intensity = config.intensity or "medium"

        logger.info(
            "[SCREEN] Triggering screen effect: %s", config.effect,
            extra={
                "duration": duration,
                "intensity": intensity,
                "color": config.color,
                "user_id": user.id,
                "redemption_id": redemption.id,
            },
        )

        return ActionResult(
            success=True,
            message=f"Screen effect triggered: {config.effect}",
            data={
                "effect": config.effect,
                "duration": duration,
                "intensity": intensity,
                "color": config.color,
            },
            next_status=RedemptionStatus.COMPLETED,
        )
