"""
approval_kernel.services.target_document_adapter -- Quote / PO status bridge.

Responsibility:
    Maps a TargetRef to the concrete document table and reads or updates
    its status field together with updated_at / updated_by_id.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Failure modes:
    - TargetDocumentNotFoundError if the document is absent or soft-deleted.
      Reported, never retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.db.base import TrackedBase
from approval_kernel.domain.approval import (
    DocumentStatus,
    TargetDocument,
    TargetRef,
    TargetType,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import TargetDocumentNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.document import PurchaseOrderModel, QuoteModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.target_document_adapter")


@dataclass(frozen=True)
class _DocumentTable:
    model: type[TrackedBase]
    number_attr: str


_DOCUMENT_TABLES: dict[TargetType, _DocumentTable] = {
    TargetType.QUOTE: _DocumentTable(QuoteModel, "quote_number"),
    TargetType.PURCHASE_ORDER: _DocumentTable(PurchaseOrderModel, "po_number"),
}


class TargetDocumentAdapter(BaseService[TrackedBase]):
    """Reads and writes the status of the document a request gates."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _load(self, target: TargetRef, for_update: bool = False):
        table = _DOCUMENT_TABLES[target.target_type]
        stmt = select(table.model).where(
            table.model.id == target.target_id,
            table.model.is_deleted.is_(False),
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise TargetDocumentNotFoundError(
                target.target_type.value, str(target.target_id),
            )
        return table, model

    @staticmethod
    def _to_dto(target: TargetRef, table: _DocumentTable, model) -> TargetDocument:
        return TargetDocument(
            target=target,
            document_number=getattr(model, table.number_attr),
            status=DocumentStatus(model.status),
            total_amount=model.total_amount,
        )

    def get_document(self, target: TargetRef, for_update: bool = False) -> TargetDocument:
        """Current status view of the target document.

        ``for_update`` takes a row lock (PostgreSQL) so concurrent
        submissions for the same document serialise.
        """
        table, model = self._load(target, for_update=for_update)
        return self._to_dto(target, table, model)

    def get_documents(self, target_type: TargetType, target_ids: set[UUID]) -> dict[UUID, TargetDocument]:
        """Bulk status view keyed by document id; deleted documents are omitted."""
        if not target_ids:
            return {}
        table = _DOCUMENT_TABLES[target_type]
        models = self.session.execute(
            select(table.model).where(
                table.model.id.in_(target_ids),
                table.model.is_deleted.is_(False),
            )
        ).scalars().all()
        return {
            m.id: self._to_dto(TargetRef(target_type, m.id), table, m)
            for m in models
        }

    def set_status(
        self,
        target: TargetRef,
        status: DocumentStatus,
        actor_id: UUID,
    ) -> TargetDocument:
        """Write the document status plus updated_at / updated_by_id."""
        table, model = self._load(target)
        previous = model.status
        model.status = status.value
        model.updated_at = self._clock.now()
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "target_document_status_changed",
            extra={
                "target_type": target.target_type.value,
                "target_id": str(target.target_id),
                "from_status": previous,
                "to_status": status.value,
            },
        )
        return self._to_dto(target, table, model)
