"""
Signoff Quickstart

Runs a paid campaign through the three-stage launch workflow in
../workflows/campaign_launch.yaml, entirely in memory.

What's happening:
  1. The creator submits the campaign. Routing picks two brand reviewers
     from the team by seniority and current workload.
  2. Both reviewers approve, so the request moves to legal.
  3. Legal approves. The budget is over the threshold, so the budget
     stage is not skipped and an admin signs off.
  4. The request is APPROVED and the artifact takes the "approve"
     lifecycle transition.

Every step prints the notifications that were delivered.

Run:
  cd examples/quickstart
  python quickstart.py
"""

import asyncio
from pathlib import Path

from signoff import (
    Actor,
    ApprovalCoordinator,
    ApprovalStateMachine,
    TeamMember,
    WorkflowEngine,
    WorkflowRegistry,
)
from signoff.lifecycle import TransitionContext
from signoff.workflow import TargetContext

HERE = Path(__file__).parent

TEAM = [
    TeamMember("ana", "approver", name="Ana", expertise=("campaign",)),
    TeamMember("ben", "approver", name="Ben"),
    TeamMember("chloe", "publisher", name="Chloe"),
    TeamMember("dev", "admin", name="Dev"),
]
WORKLOAD = {"ana": 1, "ben": 5, "chloe": 2, "dev": 0}


def show(step, result):
    status = result.request.status.value if result.request else "-"
    print(f"\n{step}: {'ok' if result.success else result.error.message} [{status}]")
    for item in result.notifications:
        print(f"  -> {item.recipient_id}: {item.notification.title}")


async def main():
    registry = WorkflowRegistry()
    registry.load_path(HERE.parent / "workflows")
    coordinator = ApprovalCoordinator(WorkflowEngine(registry))

    creator = Actor(user_id="maya", role="creator", name="Maya")
    started = await coordinator.submit(
        "campaign-launch",
        "campaign",
        "spring-sale",
        creator,
        context=TargetContext(target_type="campaign", title="Spring Sale", budget=25000),
        team_members=TEAM,
        workload=WORKLOAD,
    )
    show("Submitted", started)
    for line in started.routing.reasoning:
        print(f"  . {line}")

    request = started.request
    for user_id in request.assigned_approvers:
        member = next(m for m in TEAM if m.user_id == user_id)
        result = await coordinator.act(
            request.id,
            "brand",
            Actor(user_id=user_id, role=member.role, name=member.name),
            "approve",
        )
        show(f"Brand approval by {member.name}", result)

    legal = await coordinator.act(
        request.id,
        "legal",
        Actor(user_id="lena.legal", role="approver"),
        "approve",
        team_members=TEAM,
        workload=WORKLOAD,
    )
    show("Legal approval", legal)

    final = await coordinator.act(
        request.id,
        "budget",
        Actor(user_id="dev", role="admin", name="Dev"),
        "approve",
        comment="Within Q2 budget",
    )
    show("Budget sign-off", final)

    progress = await coordinator.status(request.id)
    print(f"\nProgress: {progress.progress}% ({', '.join(progress.completed_stages)})")

    # Apply the outcome to the artifact itself
    machine = ApprovalStateMachine()
    outcome = machine.execute_transition(
        "PENDING_REVIEW",
        final.artifact_transition,
        TransitionContext(user_id="dev", user_role="admin", content_id="spring-sale"),
    )
    print(f"Artifact status: {outcome.new_status.value}")

    inbox = coordinator.notifications.get_notifications("maya")
    print(f"\nMaya has {len(inbox)} notifications, newest: {inbox[0].title}")


if __name__ == "__main__":
    asyncio.run(main())
