"""
Points ledger and redemption engine.

LedgerService is the single entry point used by the HTTP layer:
- reward redemption (validate → debit → record → execute action → reconcile)
- admin give / remove / set / transfer / bulk point operations
- transaction history and redemption processing
- reward, category and user management needed around the ledger

Each balance change and its audit entry are written inside one unit of work.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .actions import ActionHandler, ActionRegistry, build_default_registry
from .config import Settings, get_settings
from .db import unit_of_work
from .exceptions import (
    CategoryNotFoundError,
    DuplicateCategoryError,
    DuplicateUserError,
    InsufficientPointsError,
    InvalidActionConfigError,
    InvalidRequestError,
    InvalidStateTransitionError,
    LedgerServiceError,
    PremiumRequiredError,
    RedemptionNotFoundError,
    RewardInactiveError,
    RewardNotFoundError,
    SameUserTransferError,
    UnknownActionTypeError,
    UserNotFoundError,
)
from .models import (
    ActionResult,
    BulkPointUpdateItem,
    BulkUpdateResult,
    CategoryRecord,
    CreateCategoryRequest,
    CreateRewardRequest,
    CreateUserRequest,
    PendingRedemption,
    PointTransactionRecord,
    RedemptionRecord,
    RedemptionResult,
    RedemptionStatus,
    RewardRecord,
    RewardTier,
    TransactionType,
    TransferResult,
    UpdateRewardRequest,
    UserRecord,
)
from .store import USER_NOT_FOUND, LedgerStore, RedemptionStore, TransactionLog
from .tables import Redemption, Reward, RewardCategory, User

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500
AWAITING_STATUSES = (RedemptionStatus.PENDING, RedemptionStatus.PROCESSING)


def _check_amount(amount: Any, *, allow_zero: bool = False) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidRequestError("Amount must be an integer")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidRequestError(
            "Amount must be non-negative" if allow_zero else "Amount must be positive"
        )
    return amount


def _check_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidRequestError("Limit must be a positive integer")
    return limit


def _check_description(description: Any) -> str:
    if not isinstance(description, str) or not description.strip():
        raise InvalidRequestError("Description is required")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidRequestError("Description too long")
    return description


class LedgerService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: Optional[ActionRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry if registry is not None else build_default_registry()
        self.settings = settings or get_settings()
        self.store = LedgerStore()
        self.log = TransactionLog()
        self.redemptions = RedemptionStore()
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.action_workers,
            thread_name_prefix="reward-action",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _unit(self):
        return unit_of_work(self.session_factory)

    # ---------------------------------------------------------
    # Redemption workflow
    # ---------------------------------------------------------
    def redeem_reward(self, user_id: str, reward_id: str) -> RedemptionResult:
        """
        Spend ``reward.cost`` points on a reward and run its action.

        The debit, the redemption row and the ``spent`` entry commit together.
        The action runs afterwards; its failure marks the redemption failed
        but does not refund the charge.
        """
        with self._unit() as session:
            reward = session.get(Reward, reward_id)
            if reward is None:
                raise RewardNotFoundError(reward_id)
            if not reward.is_active:
                raise RewardInactiveError(reward_id)

            # Row lock: a premium revocation cannot interleave with the debit
            user = self.store.lock_user(session, user_id)
            if reward.tier == RewardTier.PREMIUM.value and not user.is_premium:
                raise PremiumRequiredError(reward_id)

            debit = self.store.debit(session, user_id, reward.cost)
            if not debit.success:
                if debit.error == USER_NOT_FOUND:
                    raise UserNotFoundError(user_id)
                raise InsufficientPointsError(user_id, debit.new_balance, reward.cost)

            redemption = self.redemptions.create(session, user_id, reward_id)
            self.log.append(
                session, user_id, -reward.cost, TransactionType.SPENT, f"Redeemed: {reward.title}"
            )

            user_record = UserRecord.model_validate(user).model_copy(update={"points": debit.new_balance})
            reward_record = RewardRecord.model_validate(reward)
            redemption_record = RedemptionRecord.model_validate(redemption)

        logger.info(
            "Redemption %s committed: user=%s reward=%s cost=%s balance=%s",
            redemption_record.id, user_id, reward_id, reward_record.cost, debit.new_balance,
        )

        action, redemption_record = self._run_action(user_record, reward_record, redemption_record)
        return RedemptionResult(
            redemption=redemption_record,
            new_balance=debit.new_balance,
            message=f"Successfully redeemed {reward_record.title}",
            action=action,
        )

    def _run_action(
        self, user: UserRecord, reward: RewardRecord, redemption: RedemptionRecord
    ) -> tuple[ActionResult, RedemptionRecord]:
        timeout = self.settings.action_timeout_seconds
        future = self._executor.submit(self.registry.execute, user, reward, redemption)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Action %s for redemption %s timed out after %ss", reward.action_type, redemption.id, timeout)
            result = ActionResult(
                success=False,
                message=f"Action timed out after {timeout}s",
                next_status=RedemptionStatus.FAILED,
            )
        except UnknownActionTypeError as exc:
            logger.error("Redemption %s: %s", redemption.id, exc)
            result = ActionResult(success=False, message=str(exc), next_status=RedemptionStatus.FAILED)
        except Exception as exc:
            logger.exception("Action dispatch failed for redemption %s", redemption.id)
            result = ActionResult(
                success=False,
                message=f"Action execution failed: {exc}",
                next_status=RedemptionStatus.FAILED,
            )

        next_status = result.next_status if result.success else RedemptionStatus.FAILED
        logger.info(
            "[REWARD ACTION] %s", result.message,
            extra={
                "user_id": user.id,
                "reward_id": reward.id,
                "redemption_id": redemption.id,
                "success": result.success,
                "action_type": reward.action_type,
            },
        )

        try:
            with self._unit() as session:
                updated = self.redemptions.transition(session, redemption.id, next_status)
                redemption = RedemptionRecord.model_validate(updated)
        except InvalidStateTransitionError as exc:
            # Already moved on by an owner; the charge stands either way
            logger.warning("Redemption %s status not updated: %s", redemption.id, exc)
        except SQLAlchemyError:
            logger.exception("Could not record %s for redemption %s", next_status.value, redemption.id)

        return result, redemption

    # ---------------------------------------------------------
    # Admin point operations
    # ---------------------------------------------------------
    def give_points(self, user_id: str, amount: int, description: str) -> UserRecord:
        _check_amount(amount)
        _check_description(description)
        with self._unit() as session:
            self.store.credit(session, user_id, amount)
            self.log.append(session, user_id, amount, TransactionType.ADMIN_ADDED, description)
            user = UserRecord.model_validate(self.store.get_user(session, user_id))
        logger.info("Added %s points to %s", amount, user.display_name)
        return user

    def remove_points(self, user_id: str, amount: int, description: str) -> UserRecord:
        """
        Remove up to ``amount`` points, clamping at zero. The audit entry
        records what was actually removed.
        """
        _check_amount(amount)
        _check_description(description)
        with self._unit() as session:
            before = self.store.lock_user(session, user_id).points
            after = self.store.adjust(session, user_id, -amount)
            removed = before - after
            self.log.append(session, user_id, -removed, TransactionType.ADMIN_REMOVED, description)
            user = UserRecord.model_validate(self.store.get_user(session, user_id))
        logger.info("Removed %s of %s requested points from %s", removed, amount, user.display_name)
        return user

    def set_points(self, user_id: str, amount: int, description: str) -> UserRecord:
        _check_amount(amount, allow_zero=True)
        _check_description(description)
        with self._unit() as session:
            current = self.store.lock_user(session, user_id).points
            difference = amount - current
            self.store.set_balance(session, user_id, amount)
            sign = "+" if difference >= 0 else ""
            self.log.append(
                session,
                user_id,
                difference,
                TransactionType.ADMIN_ADDED if difference >= 0 else TransactionType.ADMIN_REMOVED,
                f"Points set to {amount} ({sign}{difference}): {description}",
            )
            user = UserRecord.model_validate(self.store.get_user(session, user_id))
        logger.info("Set points of %s to %s (%s%s)", user.display_name, amount, sign, difference)
        return user

    def transfer_points(
        self, from_user_id: str, to_user_id: str, amount: int, description: str = "Admin transfer"
    ) -> TransferResult:
        if from_user_id == to_user_id:
            raise SameUserTransferError()
        _check_amount(amount)
        _check_description(description)

        with self._unit() as session:
            result = self.store.transfer(session, from_user_id, to_user_id, amount)
            if not result.success:
                if result.error == USER_NOT_FOUND:
                    raise UserNotFoundError(from_user_id)
                raise InsufficientPointsError(from_user_id, result.from_balance, amount)

            from_user = UserRecord.model_validate(self.store.get_user(session, from_user_id))
            to_user = UserRecord.model_validate(self.store.get_user(session, to_user_id))
            self.log.append(
                session, from_user_id, -amount, TransactionType.TRANSFER,
                f"Transfer to {to_user.display_name}: {description}",
            )
            self.log.append(
                session, to_user_id, amount, TransactionType.TRANSFER,
                f"Transfer from {from_user.display_name}: {description}",
            )

        message = f"Transferred {amount} points from {from_user.display_name} to {to_user.display_name}"
        logger.info(message)
        return TransferResult(from_user=from_user, to_user=to_user, message=message)

    def bulk_update_points(
        self, updates: Iterable[Union[BulkPointUpdateItem, dict[str, Any]]]
    ) -> BulkUpdateResult:
        """
        Credit many users in one batch. Each item runs in its own savepoint,
        so a failing item is counted and skipped without undoing the others.
        """
        updates = list(updates)
        if not updates:
            raise InvalidRequestError("At least one update is required")
        if len(updates) > self.settings.bulk_update_max_items:
            raise InvalidRequestError("Too many updates at once")

        result = BulkUpdateResult()
        with self._unit() as session:
            for raw in updates:
                user_id = raw.get("user_id") if isinstance(raw, dict) else raw.user_id
                try:
                    item = BulkPointUpdateItem.model_validate(raw)
                    with session.begin_nested():
                        self.store.credit(session, item.user_id, item.points_earned)
                        self.log.append(
                            session, item.user_id, item.points_earned, TransactionType.EARNED, item.description
                        )
                except (LedgerServiceError, ValidationError, SQLAlchemyError) as exc:
                    result.failed += 1
                    result.errors.append(f"Failed to update {user_id}: {exc}")
                else:
                    result.successful += 1

        logger.info("Bulk point update: %s successful, %s failed", result.successful, result.failed)
        return result

    # ---------------------------------------------------------
    # History and redemption processing
    # ---------------------------------------------------------
    def get_user_history(self, user_id: str, limit: Optional[int] = None) -> list[PointTransactionRecord]:
        if limit is not None:
            _check_limit(limit)
        with self._unit() as session:
            if self.store.get_user(session, user_id) is None:
                raise UserNotFoundError(user_id)
            return [PointTransactionRecord.model_validate(e) for e in self.log.history(session, user_id, limit)]

    def get_user_redemptions(self, user_id: str) -> list[RedemptionRecord]:
        with self._unit() as session:
            if self.store.get_user(session, user_id) is None:
                raise UserNotFoundError(user_id)
            return [RedemptionRecord.model_validate(r) for r in self.redemptions.for_user(session, user_id)]

    def get_pending_redemptions(self) -> list[PendingRedemption]:
        """Redemptions still awaiting an outcome, oldest first."""
        with self._unit() as session:
            stmt = (
                select(Redemption, User, Reward)
                .join(User, Redemption.user_id == User.id)
                .join(Reward, Redemption.reward_id == Reward.id)
                .where(Redemption.status.in_([s.value for s in AWAITING_STATUSES]))
                .order_by(Redemption.redeemed_at)
            )
            return [
                PendingRedemption(
                    **RedemptionRecord.model_validate(redemption).model_dump(),
                    user=UserRecord.model_validate(user),
                    reward=RewardRecord.model_validate(reward),
                )
                for redemption, user, reward in session.execute(stmt)
            ]

    def update_redemption_status(self, redemption_id: str, status: RedemptionStatus) -> RedemptionRecord:
        with self._unit() as session:
            redemption = self.redemptions.transition(session, redemption_id, status)
            record = RedemptionRecord.model_validate(redemption)
        logger.info("Redemption %s moved to %s", redemption_id, record.status.value)
        return record

    def get_redemption(self, redemption_id: str) -> RedemptionRecord:
        with self._unit() as session:
            redemption = self.redemptions.get(session, redemption_id)
            if redemption is None:
                raise RedemptionNotFoundError(redemption_id)
            return RedemptionRecord.model_validate(redemption)

    # ---------------------------------------------------------
    # Action registry
    # ---------------------------------------------------------
    def register_action_handler(self, action_type: str, handler: ActionHandler) -> None:
        self.registry.register(handler, action_type=action_type)

    def validate_reward_action_config(self, action_type: str, config: Any) -> Union[bool, str]:
        return self.registry.validate_config(action_type, config)

    def list_action_types(self) -> list[dict[str, str]]:
        return [
            {"type": action_type, "label": self.registry.require(action_type).label or action_type}
            for action_type in self.registry.supported_types()
        ]

    def _ensure_valid_action(self, action_type: str, config: Any) -> None:
        verdict = self.validate_reward_action_config(action_type, config)
        if verdict is not True:
            raise InvalidActionConfigError(action_type, verdict)

    # ---------------------------------------------------------
    # Users
    # ---------------------------------------------------------
    def create_user(self, request: CreateUserRequest) -> UserRecord:
        """Create a user and grant the configured starting balance."""
        starting = self.settings.starting_points
        try:
            with self._unit() as session:
                user = User(
                    email=request.email,
                    display_name=request.display_name,
                    points=0,
                    is_premium=request.is_premium,
                    is_admin=request.is_admin,
                    is_owner=request.is_owner,
                    photo_url=request.photo_url,
                )
                session.add(user)
                session.flush()
                if starting:
                    self.store.credit(session, user.id, starting)
                    self.log.append(session, user.id, starting, TransactionType.EARNED, "Welcome bonus")
                record = UserRecord.model_validate(self.store.get_user(session, user.id))
        except IntegrityError:
            raise DuplicateUserError("A user with this email or display name already exists")
        logger.info("Created user %s with %s points", record.display_name, record.points)
        return record

    def get_user(self, user_id: str) -> UserRecord:
        with self._unit() as session:
            user = self.store.get_user(session, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            return UserRecord.model_validate(user)

    def set_user_premium(self, user_id: str, is_premium: bool) -> UserRecord:
        with self._unit() as session:
            user = self.store.lock_user(session, user_id)
            user.is_premium = is_premium
            session.flush()
            return UserRecord.model_validate(user)

    def get_leaderboard(self, limit: int = 10) -> list[UserRecord]:
        _check_limit(limit)
        with self._unit() as session:
            stmt = select(User).order_by(User.points.desc(), User.display_name).limit(limit)
            return [UserRecord.model_validate(u) for u in session.execute(stmt).scalars()]

    # ---------------------------------------------------------
    # Rewards and categories
    # ---------------------------------------------------------
    def create_reward(self, request: CreateRewardRequest) -> RewardRecord:
        self._ensure_valid_action(request.action_type, request.action_config)
        with self._unit() as session:
            if request.category_id and session.get(RewardCategory, request.category_id) is None:
                raise CategoryNotFoundError(request.category_id)
            data = request.model_dump()
            data["tier"] = request.tier.value
            reward = Reward(**data)
            session.add(reward)
            session.flush()
            return RewardRecord.model_validate(reward)

    def update_reward(self, reward_id: str, request: UpdateRewardRequest) -> RewardRecord:
        changes = request.model_dump(exclude_unset=True)
        with self._unit() as session:
            reward = session.get(Reward, reward_id)
            if reward is None:
                raise RewardNotFoundError(reward_id)
            if "action_type" in changes or "action_config" in changes:
                self._ensure_valid_action(
                    changes.get("action_type") or reward.action_type,
                    changes.get("action_config", reward.action_config),
                )
            if changes.get("category_id") and session.get(RewardCategory, changes["category_id"]) is None:
                raise CategoryNotFoundError(changes["category_id"])
            if changes.get("tier") is not None:
                changes["tier"] = RewardTier(changes["tier"]).value
            for field, value in changes.items():
                if value is None and field not in ("category_id", "availability"):
                    continue
                setattr(reward, field, value)
            session.flush()
            return RewardRecord.model_validate(reward)

    def get_reward(self, reward_id: str) -> RewardRecord:
        with self._unit() as session:
            reward = session.get(Reward, reward_id)
            if reward is None:
                raise RewardNotFoundError(reward_id)
            return RewardRecord.model_validate(reward)

    def list_rewards(self, active_only: bool = False) -> list[RewardRecord]:
        with self._unit() as session:
            stmt = select(Reward).order_by(Reward.cost, Reward.title)
            if active_only:
                stmt = stmt.where(Reward.is_active.is_(True))
            return [RewardRecord.model_validate(r) for r in session.execute(stmt).scalars()]

    def list_rewards_for_user(self, user_id: str) -> list[RewardRecord]:
        """Active rewards the user may redeem; premium rewards only for premium users."""
        with self._unit() as session:
            user = self.store.get_user(session, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            stmt = select(Reward).where(Reward.is_active.is_(True)).order_by(Reward.cost, Reward.title)
            if not user.is_premium:
                stmt = stmt.where(Reward.tier == RewardTier.COMMON.value)
            return [RewardRecord.model_validate(r) for r in session.execute(stmt).scalars()]

    def create_category(self, request: CreateCategoryRequest) -> CategoryRecord:
        try:
            with self._unit() as session:
                category = RewardCategory(**request.model_dump())
                session.add(category)
                session.flush()
                return CategoryRecord.model_validate(category)
        except IntegrityError:
            raise DuplicateCategoryError(f"Category {request.name!r} already exists")

    def list_categories(self) -> list[CategoryRecord]:
        with self._unit() as session:
            stmt = select(RewardCategory).order_by(RewardCategory.sort_order, RewardCategory.name)
            return [CategoryRecord.model_validate(c) for c in session.execute(stmt).scalars()]
