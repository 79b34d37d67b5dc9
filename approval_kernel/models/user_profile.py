"""
Module: approval_kernel.models.user_profile
Responsibility: Directory data used to resolve approver references --
    display name, department, and role memberships per user.

Architecture position: Kernel > Models.  May import from db/ only.

Notes:
    ``id`` is the user id issued by the identity provider; profiles are
    keyed by it rather than generating a new uuid.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class UserProfileModel(Base):
    """Display and organisational data for one user."""

    __tablename__ = "user_profiles"

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    roles: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<UserProfile {self.display_name}>"
