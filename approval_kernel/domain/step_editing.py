"""
Step-list editing transforms (``approval_kernel.domain.step_editing``).

Responsibility
--------------
Pure, in-memory edits applied to a template's step list while it is being
authored: add, move up/down, duplicate, remove.  Every transform returns a
new tuple whose ``step_order`` values are exactly ``1..N`` in list order,
so the result can be handed straight to ``FlowTemplateService``.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Nothing here touches the database;
persistence happens only when the edited list is saved.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Literal

from approval_kernel.domain.approval import ApproverRef, FlowStepSpec

Direction = Literal["up", "down"]


def step_orders_contiguous(step_orders: Iterable[int]) -> bool:
    """True when the orders are exactly {1..N} with no duplicates."""
    orders = sorted(step_orders)
    return orders == list(range(1, len(orders) + 1))


def renumber_steps(steps: Sequence[FlowStepSpec]) -> tuple[FlowStepSpec, ...]:
    """Assign step_order 1..N following the current list order."""
    return tuple(
        step if step.step_order == i else replace(step, step_order=i)
        for i, step in enumerate(steps, start=1)
    )


def sort_steps(steps: Iterable[FlowStepSpec]) -> tuple[FlowStepSpec, ...]:
    """Order steps by their declared step_order (stable for ties)."""
    return tuple(sorted(steps, key=lambda s: s.step_order))


def add_step(
    steps: Sequence[FlowStepSpec],
    approver: ApproverRef,
    step_name: str = "",
    description: str | None = None,
    is_skippable: bool = False,
) -> tuple[FlowStepSpec, ...]:
    """Append a new step at the end of the list."""
    new_step = FlowStepSpec(
        step_order=len(steps) + 1,
        approver=approver,
        step_name=step_name,
        description=description,
        is_skippable=is_skippable,
    )
    return renumber_steps([*steps, new_step])


def move_step(
    steps: Sequence[FlowStepSpec],
    index: int,
    direction: Direction,
) -> tuple[FlowStepSpec, ...]:
    """Swap the step at ``index`` with its neighbour.

    Moving the first step up or the last step down is a no-op.

    Raises:
        IndexError: if ``index`` is outside the list.
        ValueError: if ``direction`` is not "up" or "down".
    """
    if not 0 <= index < len(steps):
        raise IndexError(f"step index {index} out of range")
    if direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")

    new_index = index - 1 if direction == "up" else index + 1
    if not 0 <= new_index < len(steps):
        return renumber_steps(steps)

    reordered = list(steps)
    reordered[index], reordered[new_index] = reordered[new_index], reordered[index]
    return renumber_steps(reordered)


def duplicate_step(
    steps: Sequence[FlowStepSpec],
    index: int,
) -> tuple[FlowStepSpec, ...]:
    """Append a copy of the step at ``index`` to the end of the list.

    Raises:
        IndexError: if ``index`` is outside the list.
    """
    if not 0 <= index < len(steps):
        raise IndexError(f"step index {index} out of range")
    return renumber_steps([*steps, steps[index]])


def remove_step(
    steps: Sequence[FlowStepSpec],
    index: int,
) -> tuple[FlowStepSpec, ...]:
    """Delete the step at ``index`` and close the gap.

    Raises:
        IndexError: if ``index`` is outside the list.
    """
    if not 0 <= index < len(steps):
        raise IndexError(f"step index {index} out of range")
    return renumber_steps([s for i, s in enumerate(steps) if i != index])
