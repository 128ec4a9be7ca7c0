import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ..exceptions import UnknownActionTypeError
from ..models import ActionResult, RedemptionRecord, RedemptionStatus, RewardRecord, UserRecord

logger = logging.getLogger(__name__)

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class ActionConfig(BaseModel):
    """Base for per-action config models; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def describe_validation_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"])
    return f"{location}: {error['msg']}" if location else error["msg"]


class ActionHandler(ABC):
    """A reward side effect selected by a reward's ``action_type``."""

    action_type: ClassVar[str]
    config_model: ClassVar[type[ActionConfig]]
    label: ClassVar[str] = ""

    def parse_config(self, config: Any) -> ActionConfig:
        return self.config_model.model_validate(config)

    def validate_config(self, config: Any) -> Union[bool, str]:
        """Return True when ``config`` is usable, otherwise a readable reason."""
        if not isinstance(config, dict):
            return f"{self.label or self.action_type} config must be an object"
        try:
            self.parse_config(config)
        except ValidationError as exc:
            return describe_validation_error(exc)
        return True

    @abstractmethod
    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        ...


class ActionRegistry:
    """
    Maps action-type tags to handlers.

    Populated once at startup and then frozen; the service receives the
    registry explicitly.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, handler: ActionHandler, action_type: Optional[str] = None) -> None:
        if self._frozen:
            raise RuntimeError("Action registry is frozen; register handlers before serving requests")
        key = action_type or handler.action_type
        if key in self._handlers:
            logger.warning("Replacing action handler for %s", key)
        self._handlers[key] = handler

    def freeze(self) -> "ActionRegistry":
        self._frozen = True
        return self

    def get(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    def require(self, action_type: str) -> ActionHandler:
        handler = self._handlers.get(action_type)
        if handler is None:
            raise UnknownActionTypeError(action_type)
        return handler

    def supported_types(self) -> list[str]:
        return list(self._handlers)

    def __contains__(self, action_type: str) -> bool:
        return action_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def validate_config(self, action_type: str, config: Any) -> Union[bool, str]:
        return self.require(action_type).validate_config(config)

    def execute(self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord) -> ActionResult:
        """
        Run the reward's handler. Handler exceptions become a failed result;
        an unknown action type raises UnknownActionTypeError.
        """
        handler = self.require(reward.action_type)
        try:
            return handler.execute(user, reward, redemption)
        except Exception as exc:
            logger.exception("Action execution error for %s", reward.action_type)
            return ActionResult(
                success=False,
                message=f"Action execution failed: {exc}",
                next_status=RedemptionStatus.FAILED,
            )
