from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"
    ADMIN_ADDED = "admin_added"
    ADMIN_REMOVED = "admin_removed"
    TRANSFER = "transfer"


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RedemptionStatus.COMPLETED, RedemptionStatus.FAILED)


class RewardTier(str, Enum):
    COMMON = "common"
    PREMIUM = "premium"


# Records

class UserRecord(BaseModel):
    id: str
    email: str
    display_name: str
    points: int
    is_admin: bool = False
    is_premium: bool = False
    is_owner: bool = False
    photo_url: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CategoryRecord(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    icon: str
    color: str
    sort_order: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RewardRecord(BaseModel):
    id: str
    title: str
    description: str
    cost: int
    is_active: bool
    action_type: str
    action_config: dict[str, Any]
    category_id: Optional[str] = None
    tier: RewardTier
    availability: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RedemptionRecord(BaseModel):
    id: str
    user_id: str
    reward_id: str
    status: RedemptionStatus
    redeemed_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PointTransactionRecord(BaseModel):
    id: str
    user_id: str
    amount: int
    type: TransactionType
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Requests

class CreateUserRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    display_name: str = Field(..., min_length=1, max_length=100)
    is_premium: bool = False
    is_admin: bool = False
    is_owner: bool = False
    photo_url: Optional[str] = None


class AdminPointsRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount must be a positive integer")
    description: str = Field(..., min_length=1, max_length=500)

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 250, "description": "Stream raid bonus"}
    })


class AdminSetPointsRequest(BaseModel):
    amount: int = Field(..., ge=0, description="Amount must be non-negative")
    description: str = Field(..., min_length=1, max_length=500)


class TransferPointsRequest(BaseModel):
    from_user_id: str
    to_user_id: str
    amount: int = Field(..., gt=0)
    description: str = Field(default="Admin transfer", min_length=1, max_length=500)


class BulkPointUpdateItem(BaseModel):
    user_id: str
    points_earned: int = Field(..., ge=0)
    description: str = Field(default="Points earned from streaming", min_length=1)


class BulkPointUpdateRequest(BaseModel):
    updates: list[BulkPointUpdateItem] = Field(..., min_length=1, max_length=1000)


class UpdateRedemptionStatusRequest(BaseModel):
    status: RedemptionStatus


class UpdatePremiumRequest(BaseModel):
    is_premium: bool


class CreateRewardRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    cost: int = Field(..., gt=0)
    action_type: str
    action_config: dict[str, Any] = Field(default_factory=dict)
    tier: RewardTier = RewardTier.COMMON
    is_active: bool = True
    category_id: Optional[str] = None
    availability: Optional[str] = "Unlimited"

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Confetti Blast",
            "cost": 500,
            "action_type": "screen_effect",
            "action_config": {"effect": "confetti", "intensity": "high"},
        }
    })


class UpdateRewardRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    cost: Optional[int] = Field(default=None, gt=0)
    action_type: Optional[str] = None
    action_config: Optional[dict[str, Any]] = None
    tier: Optional[RewardTier] = None
    is_active: Optional[bool] = None
    category_id: Optional[str] = None
    availability: Optional[str] = None


class CreateCategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    icon: str = Field(default="tag", min_length=1)
    color: str = Field(default="#8b5cf6", pattern=r"^#[0-9A-Fa-f]{6}$")
    sort_order: int = 0


class ValidateActionConfigRequest(BaseModel):
    config: Any = None


# Results

class ActionResult(BaseModel):
    success: bool
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    next_status: Literal[
        RedemptionStatus.PROCESSING,
        RedemptionStatus.COMPLETED,
        RedemptionStatus.FAILED,
    ] = RedemptionStatus.COMPLETED


class RedemptionResult(BaseModel):
    redemption: RedemptionRecord
    new_balance: int
    message: str
    action: Optional[ActionResult] = None


class TransferResult(BaseModel):
    from_user: UserRecord
    to_user: UserRecord
    message: str


class BulkUpdateResult(BaseModel):
    successful: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class PendingRedemption(RedemptionRecord):
    user: UserRecord
    reward: RewardRecord


class PointHistoryResponse(BaseModel):
    user_id: str
    entries: list[PointTransactionRecord]
    total_count: int
    current_balance: int


class ActionConfigValidation(BaseModel):
    action_type: str
    valid: bool
    reason: Optional[str] = None
