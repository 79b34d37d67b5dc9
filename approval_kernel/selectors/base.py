"""
Module: approval_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors are the query side of the kernel: structured read access to
    templates, requests, and step records without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/ DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, never
      ORM model instances.
    - Session ownership: the caller owns the session and its transaction.

Failure modes:
    - Return None or an empty list when nothing matches (never raise on
      absence of data).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base
from approval_kernel.domain.approval import ApproverDirectory, ApproverRef

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs.  An optional ApproverDirectory resolves
        approver display names; without one the raw reference is shown.
    """

    def __init__(self, session: Session, directory: ApproverDirectory | None = None):
        self.session = session
        self.directory = directory

    def _display_name(self, approver: ApproverRef) -> str:
        if self.directory is None:
            return approver.approver_id
        return self.directory.display_name(approver)
