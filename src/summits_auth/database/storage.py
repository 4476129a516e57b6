"""User storage used by the auth core.

The auth core only needs to look users up by external identity or id,
create them on first login and record where their avatars were uploaded.

## Concurrency

Writes are serialized through a single lock, and the unique constraint on
(oauth_id, src) rejects a second registration of the same external identity.
A rejected insert surfaces as `UserAlreadyExistsError` so the caller can
repeat its lookup instead of failing the login.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from summits_auth.database.connection import Database
from summits_auth.database.models import User, UserImage

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the database cannot serve a request."""


class UserAlreadyExistsError(StorageError):
    """Raised when a user with the same external identity already exists."""

    def __init__(self, oauth_id: str, src: int):
        super().__init__(f"User with source {src} already registered")
        self.oauth_id = oauth_id
        self.src = src


class Storage:
    """Data access for local user accounts."""

    def __init__(self, database: Database):
        self._db = database
        self._write_lock = asyncio.Lock()

    async def create_user(self, name: str, oauth_id: str, src: int) -> int:
        """Create a user and return its id.

        Raises:
            UserAlreadyExistsError: If (oauth_id, src) is already registered
            StorageError: On any other database failure
        """
        async with self._write_lock:
            try:
                async with self._db.session() as session:
                    user = User(name=name, oauth_id=oauth_id, src=src)
                    session.add(user)
                    await session.commit()
                    return user.id
            except IntegrityError as e:
                raise UserAlreadyExistsError(oauth_id, src) from e
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to create user: {e}") from e

    async def get_user(self, oauth_id: str, src: int) -> User | None:
        """Find a user by external identity."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(User).where(User.oauth_id == oauth_id, User.src == src)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load user: {e}") from e

    async def get_user_by_id(self, user_id: int) -> User | None:
        """Find a user by internal id."""
        try:
            async with self._db.session() as session:
                return await session.get(User, user_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load user {user_id}: {e}") from e

    async def update_user_image(self, user_id: int, size: str, url: str) -> None:
        """Insert or replace the avatar of the given size."""
        async with self._write_lock:
            try:
                async with self._db.session() as session:
                    await session.merge(UserImage(user_id=user_id, size=size, url=url))
                    await session.commit()
            except SQLAlchemyError as e:
                raise StorageError(
                    f"Failed to store image for user {user_id}: {e}"
                ) from e

    async def get_user_images(self, user_id: int) -> dict[str, str]:
        """Map of avatar size to object storage key."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(UserImage).where(UserImage.user_id == user_id)
                )
                return {image.size: image.url for image in result.scalars()}
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load images for user {user_id}: {e}") from e
