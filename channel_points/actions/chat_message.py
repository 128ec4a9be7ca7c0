import logging
from typing import Annotated, Optional

from pydantic import Field, StrictBool, StrictStr

from ..models import ActionResult, RedemptionRecord, RedemptionStatus, RewardRecord, UserRecord
from .base import HEX_COLOR, ActionConfig, ActionHandler

logger = logging.getLogger(__name__)

NonNegativeNumber = Annotated[float, Field(ge=0, strict=True)]


class ChatMessageConfig(ActionConfig):
    message: Optional[StrictStr] = None
    color: Optional[Annotated[StrictStr, Field(pattern=HEX_COLOR)]] = None
    highlight: Optional[StrictBool] = None
    duration: Optional[NonNegativeNumber] = None


class ChatMessageHandler(ActionHandler):
    """Posts a templated message into stream chat."""

    action_type = "chat_message"
    config_model = ChatMessageConfig
    label = "Chat message"

    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        config = self.parse_config(reward.action_config)

        message = config.message or "Reward redeemed!"
        message = message.replace("{{username}}", user.display_name)
        message = message.replace("{{reward}}", reward.title)

        logger.info(
            "[CHAT] %s", message,
            extra={
                "color": config.color,
                "highlight": config.highlight,
                "duration": config.duration,
                "user_id": user.id,
                "redemption_id": redemption.id,
            },
        )

        return ActionResult(
            success=True,
            message=f"Chat message displayed: {message}",
            data={
                "chat_message": message,
                "color": config.color,
                "highlight": config.highlight,
                "duration": config.duration,
            },
            next_status=RedemptionStatus.COMPLETED,
        )
