"""
Module: approval_kernel.models.document
Responsibility: The target documents gated by approval requests -- quotes
    and purchase orders.  Only the columns the workflow reads or writes are
    modelled here (number, status, total, soft-delete flag).

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Document numbers are unique per table.
    - status is one of the document status values.

Failure modes:
    - IntegrityError on duplicate quote_number / po_number.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString

_DOCUMENT_STATUS_CHECK = (
    "status IN ('draft', 'pending', 'approved', 'rejected', "
    "'expired', 'ordered', 'delivered', 'completed')"
)


class QuoteModel(TrackedBase):
    """Customer quote."""

    __tablename__ = "quotes"

    __table_args__ = (
        CheckConstraint(_DOCUMENT_STATUS_CHECK, name="ck_quotes_valid_status"),
    )

    quote_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    subject: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="draft", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Quote {self.quote_number} status={self.status}>"


class PurchaseOrderModel(TrackedBase):
    """Supplier purchase order, optionally raised from a quote."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        CheckConstraint(_DOCUMENT_STATUS_CHECK, name="ck_purchase_orders_valid_status"),
    )

    po_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    quote_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("quotes.id"),
        nullable=True,
    )
    subject: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="draft", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} status={self.status}>"
