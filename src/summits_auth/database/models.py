"""Database models for the auth core.

## Schema Overview

```
users (unique oauth_id + src)
└── user_images (1:N, one row per avatar size)
sessions (opaque token -> encoded session data, expiry as epoch seconds)
```

Users are keyed internally by an integer id. The external identity
(oauth_id, src) is unique, so two concurrent first logins of the same person
cannot both create a row.
"""

from __future__ import annotations

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Avatar sizes
IMAGE_SMALL = "S"
IMAGE_MEDIUM = "M"


class Base(DeclarativeBase):
    """Base class for all database models."""


class User(Base):
    """Local user account.

    Created on the first successful OAuth login. `src` is the source id of
    the provider that authenticated the user and `oauth_id` is the id the
    provider assigned to them.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("oauth_id", "src", name="uq_users_oauth_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    oauth_id: Mapped[str] = mapped_column(String(255), nullable=False)
    src: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    images: Mapped[list["UserImage"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.id} src={self.src}>"


class UserImage(Base):
    """Object storage key of a user's avatar in a given size."""

    __tablename__ = "user_images"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    size: Mapped[str] = mapped_column(String(8), primary_key=True)
    url: Mapped[str] = mapped_column(String(512), nullable=False)

    user: Mapped["User"] = relationship(back_populates="images")


class SessionRecord(Base):
    """Persisted server-side session."""

    __tablename__ = "sessions"
    __table_args__ = (Index("sessions_expiry_idx", "expiry"),)

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    expiry: Mapped[float] = mapped_column(Float, nullable=False)

    def __repr__(self) -> str:
        return f"<SessionRecord expiry={self.expiry}>"
