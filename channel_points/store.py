"""
Storage primitives for balances, the transaction log and redemptions.

Every balance change is a single conditional UPDATE ... RETURNING, so the
check and the write cannot be split by a concurrent caller. All methods take
the Session of the caller's unit of work; nothing here commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from .exceptions import (
    InvalidRequestError,
    InvalidStateTransitionError,
    RedemptionNotFoundError,
    UserNotFoundError,
)
from .models import RedemptionStatus, TransactionType
from .tables import PointTransaction, Redemption, User

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "user_not_found"
INSUFFICIENT_POINTS = "insufficient_points"


@dataclass
class DebitResult:
    success: bool
    new_balance: int
    error: Optional[str] = None


@dataclass
class TransferBalances:
    success: bool
    from_balance: int
    to_balance: int
    error: Optional[str] = None


def _require_non_negative(amount: int) -> None:
    if amount < 0:
        raise InvalidRequestError(f"Amount must be non-negative, got {amount}")


class LedgerStore:
    """Per-user integer balances with race-safe primitives."""

    # -----------------------------------------------------------
    # Reads
    # -----------------------------------------------------------
    def get_user(self, session: Session, user_id: str) -> Optional[User]:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one_or_none()

    def lock_user(self, session: Session, user_id: str) -> User:
        """Load a user with a row lock held until the unit ends."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = session.execute(stmt).scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def lock_users(self, session: Session, user_ids: Iterable[str]) -> dict[str, User]:
        # Fixed lock order so two opposite transfers cannot deadlock
        ids = sorted(set(user_ids))
        stmt = (
            select(User)
            .where(User.id.in_(ids))
            .order_by(User.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {user.id: user for user in session.execute(stmt).scalars()}

    def balance(self, session: Session, user_id: str) -> Optional[int]:
        return session.execute(select(User.points).where(User.id == user_id)).scalar_one_or_none()

    # -----------------------------------------------------------
    # Writes
    # -----------------------------------------------------------
    def _update_points(self, session: Session, user_id: str, value, *criteria) -> Optional[int]:
        stmt = (
            update(User)
            .where(User.id == user_id, *criteria)
            .values(points=value)
            .returning(User.points)
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).scalar_one_or_none()

    def adjust(self, session: Session, user_id: str, delta: int) -> int:
        """Apply ``delta``, clamping the result at zero."""
        new_points = User.points + delta
        new_balance = self._update_points(
            session, user_id, case((new_points < 0, 0), else_=new_points)
        )
        if new_balance is None:
            raise UserNotFoundError(user_id)
        return new_balance

    def debit(self, session: Session, user_id: str, amount: int) -> DebitResult:
        """Subtract ``amount`` only if the balance covers it."""
        _require_non_negative(amount)
        new_balance = self._update_points(
            session, user_id, User.points - amount, User.points >= amount
        )
        if new_balance is not None:
            return DebitResult(success=True, new_balance=new_balance)

        current = self.balance(session, user_id)
        if current is None:
            return DebitResult(success=False, new_balance=0, error=USER_NOT_FOUND)
        return DebitResult(success=False, new_balance=current, error=INSUFFICIENT_POINTS)

    def credit(self, session: Session, user_id: str, amount: int) -> int:
        _require_non_negative(amount)
        new_balance = self._update_points(session, user_id, User.points + amount)
        if new_balance is None:
            raise UserNotFoundError(user_id)
        return new_balance

    def set_balance(self, session: Session, user_id: str, amount: int) -> int:
        _require_non_negative(amount)
        new_balance = self._update_points(session, user_id, amount)
        if new_balance is None:
            raise UserNotFoundError(user_id)
        return new_balance

    def transfer(self, session: Session, from_user_id: str, to_user_id: str, amount: int) -> TransferBalances:
        """
        Debit the source then credit the destination inside the caller's unit.

        A missing destination raises UserNotFoundError after the debit; the
        caller's unit of work must roll back so the debit is discarded.
        """
        self.lock_users(session, (from_user_id, to_user_id))

        debit = self.debit(session, from_user_id, amount)
        if not debit.success:
            return TransferBalances(
                success=False,
                from_balance=debit.new_balance,
                to_balance=0,
                error=debit.error,
            )

        to_balance = self.credit(session, to_user_id, amount)
        return TransferBalances(success=True, from_balance=debit.new_balance, to_balance=to_balance)


class TransactionLog:
    """Append-only audit entries for balance changes."""

    def append(
        self,
        session: Session,
        user_id: str,
        amount: int,
        type: TransactionType,
        description: str,
    ) -> PointTransaction:
        entry = PointTransaction(
            user_id=user_id,
            amount=amount,
            type=TransactionType(type).value,
            description=description,
        )
        session.add(entry)
        session.flush()
        logger.debug("ledger %s user=%s amount=%s", entry.type, user_id, amount)
        return entry

    def history(self, session: Session, user_id: str, limit: Optional[int] = None) -> list[PointTransaction]:
        stmt = (
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.created_at.desc(), PointTransaction.seq.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.execute(stmt).scalars())


# Forward-only redemption state machine
ALLOWED_TRANSITIONS: dict[RedemptionStatus, frozenset[RedemptionStatus]] = {
    RedemptionStatus.PENDING: frozenset({
        RedemptionStatus.PROCESSING,
        RedemptionStatus.COMPLETED,
        RedemptionStatus.FAILED,
    }),
    RedemptionStatus.PROCESSING: frozenset({
        RedemptionStatus.COMPLETED,
        RedemptionStatus.FAILED,
    }),
    RedemptionStatus.COMPLETED: frozenset(),
    RedemptionStatus.FAILED: frozenset(),
}


class RedemptionStore:
    def create(self, session: Session, user_id: str, reward_id: str) -> Redemption:
        redemption = Redemption(
            user_id=user_id,
            reward_id=reward_id,
            status=RedemptionStatus.PENDING.value,
        )
        session.add(redemption)
        session.flush()
        return redemption

    def get(self, session: Session, redemption_id: str) -> Optional[Redemption]:
        stmt = (
            select(Redemption)
            .where(Redemption.id == redemption_id)
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one_or_none()

    def transition(self, session: Session, redemption_id: str, status: RedemptionStatus) -> Redemption:
        """
        Move a redemption forward, guarded by its current status in the WHERE
        clause so two racing updates cannot both leave the same state.
        """
        status = RedemptionStatus(status)
        sources = [src.value for src, targets in ALLOWED_TRANSITIONS.items() if status in targets]
        values = {"status": status.value}
        if status.is_terminal:
            values["processed_at"] = datetime.now(timezone.utc)

        stmt = (
            update(Redemption)
            .where(Redemption.id == redemption_id, Redemption.status.in_(sources))
            .values(**values)
            .returning(Redemption.id)
            .execution_options(synchronize_session=False)
        )
        updated = session.execute(stmt).scalar_one_or_none()

        redemption = self.get(session, redemption_id)
        if redemption is None:
            raise RedemptionNotFoundError(redemption_id)
        if updated is None:
            raise InvalidStateTransitionError(
                f"Cannot move redemption {redemption_id} from {redemption.status} to {status.value}"
            )
        return redemption

    def list_by_status(self, session: Session, statuses: Iterable[RedemptionStatus]) -> list[Redemption]:
        stmt = (
            select(Redemption)
            .where(Redemption.status.in_([RedemptionStatus(s).value for s in statuses]))
            .order_by(Redemption.redeemed_at)
        )
        return list(session.execute(stmt).scalars())

    def for_user(self, session: Session, user_id: str) -> list[Redemption]:
        stmt = (
            select(Redemption)
            .where(Redemption.user_id == user_id)
            .order_by(Redemption.redeemed_at.desc())
        )
        return list(session.execute(stmt).scalars())
