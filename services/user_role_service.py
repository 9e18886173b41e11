"""
User Role Service
Users are created on first login and afterwards only change through
explicit role events: premium elevation (paid subscription) and blocking.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from database import Database
from models import User, UserRole
from utils.exception_handler import NotFoundError, ValidationError
from utils.helpers import generate_id, utc_now, validate_email

logger = logging.getLogger(__name__)


class UserRoleService:

    def __init__(self, db: Database):
        self.db = db

    def get_by_email(self, email: str) -> Optional[User]:
        email = validate_email(email)
        with self.db.managed_session() as session:
            return session.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def ensure_user(self, email: str, name: Optional[str] = None, image: Optional[str] = None) -> Tuple[User, bool]:
        """
        Register a user on first login, otherwise refresh last_login_at.

        Returns (user, created). Two first logins racing on the same email
        meet at UNIQUE(email); the loser falls back to the refresh path.
        """
        email = validate_email(email)
        now = utc_now()

        refreshed = self._touch_login(email, now)
        if refreshed is not None:
            return refreshed, False

        try:
            with self.db.managed_session() as session:
                user = User(
                    id=generate_id("user"),
                    email=email,
                    name=name,
                    image=image,
                    role=UserRole.CITIZEN.value,
                    is_premium=False,
                    subscribed_by=None,
                    is_blocked=False,
                    blocked_by=None,
                    created_at=now,
                    updated_at=now,
                    last_login_at=now,
                )
                session.add(user)
        except IntegrityError:
            logger.info(f"🔄 CONCURRENCY_DETECTED: user {email} registered concurrently")
            refreshed = self._touch_login(email, now)
            if refreshed is None:
                raise
            return refreshed, False

        logger.info(f"👤 USER_REGISTERED: {user.id} {email}")
        return user, True

    def _touch_login(self, email: str, now) -> Optional[User]:
        with self.db.managed_session() as session:
            user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
            if user is None:
                return None
            user.last_login_at = now
            return user

    def elevate_to_premium(self, user_id: str, paid_by: Optional[str]) -> bool:
        """Mark a user premium; False when the user does not exist"""
        with self.db.managed_session() as session:
            result = session.execute(
                update(User)
                .where(User.id == user_id)
                .values(is_premium=True, subscribed_by=paid_by, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            found = result.rowcount > 0

        if found:
            logger.info(f"⭐ USER_PREMIUM: {user_id} subscribed by {paid_by}")
        return found

    def set_blocked(self, email: str, is_blocked: bool, blocked_by: Optional[str]) -> User:
        email = validate_email(email)
        if not isinstance(is_blocked, bool):
            raise ValidationError("isBlocked must be a boolean")

        with self.db.managed_session() as session:
            user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
            if user is None:
                raise NotFoundError(f"User not found: {email}")
            user.is_blocked = is_blocked
            user.blocked_by = blocked_by if is_blocked else None
            user.updated_at = utc_now()

        logger.info(f"🔒 USER_BLOCK_CHANGED: {email} blocked={is_blocked} by {blocked_by}")
        return user
