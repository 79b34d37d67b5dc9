#!/usr/bin/env python3
"""
End-to-end approval scenario against an in-memory SQLite database.

Seeds the default template set, creates a quote, submits it with the
QUOTE-STANDARD flow, walks both approval steps, and prints the history
and the requester's notifications.

Usage:
    python3 scripts/demo_approval.py
    python3 scripts/demo_approval.py --reject   # director rejects step 2
"""

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run a sample quote approval")
    p.add_argument("--reject", action="store_true", help="Reject at the final step")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from approval_config import get_active_config
    from approval_config.bridges import build_workflow_engine, seed_templates
    from approval_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from approval_kernel.domain.approval import ApprovalDecision, TargetRef, TargetType
    from approval_kernel.models.document import QuoteModel
    from approval_kernel.models.user_profile import UserProfileModel
    from approval_kernel.services.notification_service import NotificationService
    from approval_kernel.services.template_service import FlowTemplateService

    settings = get_active_config()
    init_engine_from_url("sqlite://")
    create_tables()

    requester, manager, director = uuid4(), uuid4(), uuid4()

    with session_scope() as session:
        session.add_all([
            UserProfileModel(id=requester, display_name="Rep", department="sales"),
            UserProfileModel(id=manager, display_name="Manager", roles=["sales_manager"]),
            UserProfileModel(id=director, display_name="Director", roles=["sales_director"]),
        ])
        quote = QuoteModel(
            quote_number="Q-2026-0001",
            subject="Pump assembly",
            total_amount=Decimal("12500.00"),
            status="draft",
            created_by_id=requester,
        )
        session.add(quote)
        session.flush()
        seed_templates(session, settings, actor_id=requester)
        quote_id = quote.id

    with session_scope() as session:
        engine = build_workflow_engine(session, settings)
        template = next(
            t for t in FlowTemplateService(session).list_templates(TargetType.QUOTE)
            if t.template_code == "QUOTE-STANDARD"
        )
        request = engine.submit_for_approval(
            template.template_id, TargetRef(TargetType.QUOTE, quote_id), requester,
        )
        print(f"Submitted request {request.request_id} status={request.status.value}")

        for actor in (manager, director):
            task = engine.get_pending_tasks_for(actor)[0]
            reject = args.reject and actor == director
            request = engine.decide(
                request.request_id,
                task.step_record_id,
                actor,
                ApprovalDecision.REJECT if reject else ApprovalDecision.APPROVE,
                comments="price too high" if reject else None,
            )
            print(f"  step {task.step_order} decided -> request {request.status.value}")

        print("History:")
        for record in engine.get_history(request.request_id):
            print(f"  {record.step_order}. {record.step_name:<28} {record.approver_name:<10} {record.status.value}")

        print("Notifications:")
        for n in NotificationService(session).list_for_user(requester):
            print(f"  [{n.notification_type.value}] {n.title}: {n.message} ({n.link})")

    return 0


if __name__ == "__main__":
    sys.exit(main())
