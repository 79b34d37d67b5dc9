"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer, plus ``atomic_unit`` -- the
    savepoint wrapper used for multi-write workflow operations.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback the outer transaction.
      The caller (session_scope, a script, or the test harness) owns
      commit/rollback.
    - Multi-write atomicity: writes grouped in ``atomic_unit`` either all
      land in the caller's transaction or none do.

Failure modes:
    - Any exception inside ``atomic_unit`` rolls back the savepoint and is
      re-raised unchanged.
    - PartialWriteError when the savepoint rollback itself fails; the
      writes made so far may or may not be visible to the caller's
      transaction and an operator must reconcile.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.db.base import Base
from approval_kernel.exceptions import PartialWriteError
from approval_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage the outer transaction lifecycle.
        - Does NOT provide query-only (read) methods -- those belong
          in ``approval_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session


@contextmanager
def atomic_unit(
    session: Session,
    operation: str,
    context: dict[str, Any] | None = None,
) -> Iterator[None]:
    """Run a block of writes inside a SAVEPOINT.

    On success the savepoint is released (flushed into the caller's
    transaction).  On failure the savepoint is rolled back and the
    original exception propagates unchanged.  If the rollback fails,
    PartialWriteError is raised from the rollback error and logged at
    CRITICAL with ``operation`` and ``context``.

    Args:
        session: The caller's session.
        operation: Operation name for logs and PartialWriteError.
        context: Identifiers describing the unit (request id, target...).
    """
    context = dict(context or {})
    savepoint = session.begin_nested()
    try:
        yield
    except Exception as exc:
        try:
            if savepoint.is_active:
                savepoint.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.critical(
                "partial_write_detected",
                extra={
                    "operation": operation,
                    "original_error": type(exc).__name__,
                    **context,
                },
                exc_info=True,
            )
            raise PartialWriteError(operation, context) from rollback_exc
        # Bulk compare-and-swap UPDATEs are not tracked by the savepoint's
        # own expiry; reload everything from the database on next access.
        session.expire_all()
        logger.warning(
            "atomic_unit_rolled_back",
            extra={
                "operation": operation,
                "error": type(exc).__name__,
                **context,
            },
        )
        raise
    else:
        savepoint.commit()
