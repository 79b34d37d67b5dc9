"""
approval_kernel.services.approver_directory -- Approver resolution.

Responsibility:
    Implements the ApproverDirectory protocol: turns approver references
    into display names and expands a user id into every approver reference
    that user satisfies (their own USER ref, each ROLE they hold, and
    their DEPARTMENT).

Architecture position:
    Kernel > Services.  May import from domain/ and models/.

Failure modes:
    - None raised.  Unknown users resolve to their raw id and to a
      principal set containing only their USER reference.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApproverRef, ApproverType
from approval_kernel.models.user_profile import UserProfileModel


class UserProfileDirectory:
    """ApproverDirectory backed by the ``user_profiles`` table."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _profile(self, user_id: UUID | str) -> UserProfileModel | None:
        try:
            key = user_id if isinstance(user_id, UUID) else UUID(str(user_id))
        except ValueError:
            return None
        return self._session.get(UserProfileModel, key)

    def display_name(self, approver: ApproverRef) -> str:
        if approver.approver_type == ApproverType.USER:
            profile = self._profile(approver.approver_id)
            if profile is not None:
                return profile.display_name
        return approver.approver_id

    def principals_for(self, user_id: UUID) -> frozenset[ApproverRef]:
        principals = {ApproverRef.user(user_id)}
        profile = self._profile(user_id)
        if profile is None or not profile.is_active:
            return frozenset(principals)
        principals.update(ApproverRef.role(role) for role in profile.roles or ())
        if profile.department:
            principals.add(ApproverRef.department(profile.department))
        return frozenset(principals)


class StaticApproverDirectory:
    """In-memory ApproverDirectory for scripts and tests.

    ``names`` maps user ids to display names; ``memberships`` maps user ids
    to the extra ROLE / DEPARTMENT references they satisfy.
    """

    def __init__(
        self,
        names: Mapping[UUID, str] | None = None,
        memberships: Mapping[UUID, Iterable[ApproverRef]] | None = None,
    ) -> None:
        self._names = {str(k): v for k, v in (names or {}).items()}
        self._memberships = {
            k: frozenset(v) for k, v in (memberships or {}).items()
        }

    def display_name(self, approver: ApproverRef) -> str:
        if approver.approver_type == ApproverType.USER:
            return self._names.get(approver.approver_id, approver.approver_id)
        return approver.approver_id

    def principals_for(self, user_id: UUID) -> frozenset[ApproverRef]:
        return frozenset({ApproverRef.user(user_id)}) | self._memberships.get(
            user_id, frozenset()
        )
