"""
Module: approval_kernel.models.flow_template
Responsibility: ORM persistence for flow templates and their ordered steps.

Architecture position: Kernel > Models.  May import from db/ only (domain
    types are imported lazily inside ``to_dto``).

Invariants enforced:
    - template_code is unique across all templates (deleted included).
    - Live steps of one template have unique step_order values (partial
      unique index over non-deleted rows); contiguity 1..N is validated by
      FlowTemplateService before persisting.
    - Steps belong exclusively to one template; they are never shared.

Failure modes:
    - IntegrityError on duplicate template_code.
    - IntegrityError on duplicate live (template_id, step_order).
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.approval import FlowStep, FlowTemplate


class FlowTemplateModel(TrackedBase):
    """Persistent approval flow template header.

    Guarantees:
        - Soft delete only; rows are never physically removed.
    """

    __tablename__ = "flow_templates"

    __table_args__ = (
        CheckConstraint(
            "target_type IN ('quote', 'purchase_order')",
            name="ck_flow_templates_target_type",
        ),
        Index("ix_flow_templates_listing", "is_deleted", "is_active", "target_type"),
    )

    template_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_type: Mapped[str] = mapped_column(String(30), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    steps: Mapped[list["FlowStepModel"]] = relationship(
        "FlowStepModel",
        back_populates="template",
        order_by="FlowStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<FlowTemplate {self.template_code} {self.target_type}>"

    def live_steps(self) -> list["FlowStepModel"]:
        """Active, non-deleted steps ordered by step_order."""
        return [s for s in self.steps if s.is_active and not s.is_deleted]

    def to_dto(self, steps: tuple[FlowStep, ...] | None = None) -> FlowTemplate:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import FlowTemplate as FlowTemplateDTO
        from approval_kernel.domain.approval import TargetType

        if steps is None:
            steps = tuple(s.to_dto() for s in self.live_steps())

        return FlowTemplateDTO(
            template_id=self.id,
            template_code=self.template_code,
            name=self.name,
            target_type=TargetType(self.target_type),
            description=self.description,
            is_active=self.is_active,
            steps=steps,
            created_at=self.created_at,
            updated_at=self.updated_at,
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
        )


class FlowStepModel(TrackedBase):
    """Persistent step of a flow template."""

    __tablename__ = "flow_steps"

    __table_args__ = (
        CheckConstraint("step_order >= 1", name="ck_flow_steps_positive_order"),
        CheckConstraint(
            "approver_type IN ('user', 'role', 'department')",
            name="ck_flow_steps_approver_type",
        ),
        Index(
            "ix_flow_steps_live_order_unique",
            "template_id", "step_order",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("flow_templates.id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    approver_type: Mapped[str] = mapped_column(String(30), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    is_skippable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    template: Mapped["FlowTemplateModel"] = relationship(
        "FlowTemplateModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<FlowStep template={self.template_id} order={self.step_order} "
            f"{self.approver_type}:{self.approver_id}>"
        )

    def to_dto(self, approver_name: str = "") -> FlowStep:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApproverRef,
            ApproverType,
            FlowStep as FlowStepDTO,
        )

        return FlowStepDTO(
            step_id=self.id,
            template_id=self.template_id,
            step_order=self.step_order,
            approver=ApproverRef(ApproverType(self.approver_type), self.approver_id),
            step_name=self.step_name,
            description=self.description,
            is_skippable=self.is_skippable,
            approver_name=approver_name,
        )
