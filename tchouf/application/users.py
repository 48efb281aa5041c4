"""
User Service - Directory Users Keyed by External Identity
=========================================================

The core trusts the uid handed over by the authentication provider and
performs no credential checks. A user row is created on first sign-in.
"""

import logging
from typing import Optional

from tchouf.domain.errors import ConstraintViolationError
from tchouf.domain.models import User
from tchouf.domain.schemas import NewUser, UserProfileUpdate
from tchouf.infrastructure.persistence import Repository

logger = logging.getLogger(__name__)


class UserService:

    def __init__(self, repository: Repository):
        self.repository = repository

    def resolve_user(self, data: NewUser) -> User:
        """Return the user for ``data.uid``, creating it on first sign-in."""
        user = self.repository.find_user_by_uid(data.uid)
        if user is not None:
            return user
        try:
            user = self.repository.create_user(data)
        except ConstraintViolationError:
            # Lost a race with a concurrent first sign-in of the same uid
            user = self.repository.find_user_by_uid(data.uid)
            if user is None:
                raise
            return user
        logger.info(f"Registered user {user.id} ({user.email})")
        return user

    def get_user(self, user_id: int) -> User:
        return self.repository.get_user(user_id)

    def find_by_uid(self, uid: str) -> Optional[User]:
        return self.repository.find_user_by_uid(uid)

    def find_by_email(self, email: str) -> Optional[User]:
        return self.repository.find_user_by_email(email)

    def update_profile(self, user_id: int, data: UserProfileUpdate) -> User:
        updates = data.model_dump(exclude_unset=True)
        if not updates:
            return self.repository.get_user(user_id)
        return self.repository.update_user(user_id, **updates)

    def set_admin(self, user_id: int, is_admin: bool = True) -> User:
        user = self.repository.update_user(user_id, is_admin=is_admin)
        logger.info(f"User {user_id} admin flag set to {is_admin}")
        return user
