import logging
from typing import Any, Literal, Optional

from pydantic import StrictBool, StrictStr, model_validator

from ..exceptions import ActionExecutionError
from ..models import ActionResult, RedemptionRecord, RedemptionStatus, RewardRecord, UserRecord
from .base import ActionConfig, ActionHandler

logger = logging.getLogger(__name__)

CustomType = Literal["webhook", "api_call", "notification", "script"]


class CustomActionConfig(ActionConfig):
    type: CustomType
    name: Optional[StrictStr] = None
    parameters: Optional[dict[str, Any]] = None
    auto_complete: Optional[StrictBool] = None

    @model_validator(mode="after")
    def _check_required_parameters(self):
        params = self.parameters or {}
        if self.type == "webhook":
            url = params.get("url")
            if not url or not isinstance(url, str):
                raise ValueError("Webhook URL is required and must be a string")
        if self.type == "script":
            script_name = params.get("script_name") or params.get("scriptName")
            if not script_name or not isinstance(script_name, str):
                raise ValueError("Script name is required and must be a string")
        return self


class CustomActionHandler(ActionHandler):
    """Free-form actions dispatched on ``config.type``."""

    action_type = "custom"
    config_model = CustomActionConfig
    label = "Custom action"

    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        config = self.parse_config(reward.action_config)
        params = config.parameters or {}

        logger.info(
            "[CUSTOM] Executing custom action: %s", config.name or "unnamed",
            extra={"custom_type": config.type, "user_id": user.id, "redemption_id": redemption.id},
        )

        dispatch = {
            "webhook": self._webhook,
            "api_call": self._api_call,
            "notification": self._notification,
            "script": self._script,
        }
        try:
            message = dispatch[config.type](params, user, reward, redemption)
        except ActionExecutionError as exc:
            return ActionResult(
                success=False,
                message=f"Custom action failed: {exc}",
                next_status=RedemptionStatus.FAILED,
            )

        return ActionResult(
            success=True,
            message=message,
            data={"custom_type": config.type, "name": config.name, "parameters": config.parameters},
            next_status=RedemptionStatus.PROCESSING if config.auto_complete is False else RedemptionStatus.COMPLETED,
        )

    def _webhook(self, params: dict, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> str:
        url = params.get("url")
        if not url:
            raise ActionExecutionError("Webhook URL is required")
        method = params.get("method", "POST")

        payload = {
            "user": {"id": user.id, "display_name": user.display_name, "email": user.email},
            "reward": {"id": reward.id, "title": reward.title, "cost": reward.cost},
            "redemption": {"id": redemption.id, "redeemed_at": redemption.redeemed_at.isoformat()},
        }
        logger.info(
            "[WEBHOOK] %s %s", method, url,
            extra={"headers": params.get("headers", {}), "payload": payload},
        )
        return f"Webhook sent to {url}"

    def _api_call(self, params: dict, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> str:
        service = params.get("service")
        logger.info(
            "[API] Calling %s API at %s", service or "service", params.get("endpoint"),
            extra={"user_id": user.id, "reward_id": reward.id, "redemption_id": redemption.id},
        )
        return f"API call made to {service or 'external service'}"

    def _notification(self, params: dict, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> str:
        text = params.get("message") or f"{user.display_name} redeemed {reward.title}"
        channels = params.get("channels") or ["desktop"]
        logger.info(
            "[NOTIFICATION] Sending notification to channels: %s", ", ".join(channels),
            extra={"text": text, "user_id": user.id, "redemption_id": redemption.id},
        )
        return f"Notification sent: {text}"

    def _script(self, params: dict, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> str:
        script_name = params.get("script_name") or params.get("scriptName")
        if not script_name:
            raise ActionExecutionError("Script name is required")
        logger.info(
            "[SCRIPT] Executing script: %s", script_name,
            extra={"arguments": params.get("arguments", []), "redemption_id": redemption.id},
        )
        return f"Script executed: {script_name}"
