"""
Error taxonomy for ledger and redemption operations.

Every error carries a ``kind`` (the caller-visible discriminator) and the
HTTP status the API layer answers with.
"""


class LedgerServiceError(Exception):
    kind = "ledger_error"
    status_code = 400


# Not found

class NotFoundError(LedgerServiceError):
    kind = "not_found"
    status_code = 404


class UserNotFoundError(NotFoundError):
    kind = "user_not_found"

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class RewardNotFoundError(NotFoundError):
    kind = "reward_not_found"

    def __init__(self, reward_id: str):
        super().__init__(f"Reward {reward_id} not found")
        self.reward_id = reward_id


class RedemptionNotFoundError(NotFoundError):
    kind = "redemption_not_found"

    def __init__(self, redemption_id: str):
        super().__init__(f"Redemption {redemption_id} not found")
        self.redemption_id = redemption_id


class CategoryNotFoundError(NotFoundError):
    kind = "category_not_found"

    def __init__(self, category_id: str):
        super().__init__(f"Category {category_id} not found")
        self.category_id = category_id


# Invalid state

class InvalidStateError(LedgerServiceError):
    kind = "invalid_state"


class RewardInactiveError(InvalidStateError):
    kind = "reward_inactive"

    def __init__(self, reward_id: str):
        super().__init__("Reward is not active")
        self.reward_id = reward_id


class InvalidStateTransitionError(InvalidStateError):
    kind = "invalid_state_transition"


# Policy violations

class PolicyViolationError(LedgerServiceError):
    kind = "policy_violation"
    status_code = 403


class PremiumRequiredError(PolicyViolationError):
    kind = "premium_required"

    def __init__(self, reward_id: str):
        super().__init__("Premium access required for this reward")
        self.reward_id = reward_id


class SameUserTransferError(PolicyViolationError):
    kind = "same_user"
    status_code = 400

    def __init__(self):
        super().__init__("Cannot transfer points to the same user")


# Funds

class InsufficientPointsError(LedgerServiceError):
    kind = "insufficient_points"

    def __init__(self, user_id: str, balance: int, required: int):
        super().__init__(f"Insufficient points: have {balance}, need {required}")
        self.user_id = user_id
        self.balance = balance
        self.required = required


# Actions

class UnknownActionTypeError(LedgerServiceError):
    kind = "unknown_action_type"

    def __init__(self, action_type: str):
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class ActionExecutionError(LedgerServiceError):
    """Raised by an action handler when its side effect cannot be performed."""

    kind = "action_execution_failed"
    status_code = 500


# Validation

class InvalidRequestError(LedgerServiceError):
    kind = "validation_error"


class InvalidActionConfigError(InvalidRequestError):
    kind = "invalid_action_config"

    def __init__(self, action_type: str, reason: str):
        super().__init__(f"Invalid {action_type} config: {reason}")
        self.action_type = action_type
        self.reason = reason


class DuplicateCategoryError(InvalidRequestError):
    kind = "duplicate_category"
    status_code = 409


class DuplicateUserError(InvalidRequestError):
    kind = "duplicate_user"
    status_code = 409
