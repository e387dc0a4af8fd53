"""
Signoff CLI entry point.

Commands:
- signoff validate: Validate a workflow definition file
- signoff info: Show workflow stages
- signoff actions: List artifact lifecycle actions for a state
- signoff route: Dry-run approver routing for a stage
- signoff version: Show version information
"""

import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
import yaml

from signoff import __version__
from signoff.cli_ui import (
    config_panel,
    console,
    dim,
    error,
    key_value,
    make_table,
    status_badge,
    success,
    title_line,
    warning,
)


def setup_logging(debug: bool = False, log_level: str = "WARNING") -> None:
    """Configure logging. ``debug`` wins over ``log_level``."""
    level = logging.DEBUG if debug else getattr(logging, log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _load_team(path: Path) -> Tuple[list, Dict[str, int]]:
    """Read team members and their open approval counts from YAML.

    Accepts either a top-level list or a mapping with a ``members`` list.
    Each entry may carry ``open_approvals`` for load balancing.
    """
    from signoff.routing import TeamMember

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    if isinstance(data, dict):
        data = data.get("members", [])
    if not isinstance(data, list):
        raise ValueError(f"Team file must contain a list of members: {path}")

    members = []
    workload: Dict[str, int] = {}
    for entry in data:
        entry = dict(entry)
        open_approvals = entry.pop("open_approvals", None)
        entry["expertise"] = tuple(entry.get("expertise") or ())
        member = TeamMember(**entry)
        members.append(member)
        if open_approvals is not None:
            workload[member.user_id] = int(open_approvals)
    return members, workload


@click.group()
@click.version_option(version=__version__, prog_name="signoff")
def main() -> None:
    """Signoff - approval orchestration for marketing artifacts.

    Validate workflow definitions, inspect the artifact lifecycle and
    preview approver routing.
    """
    pass


@main.command()
@click.argument(
    "config_path",
    type=click.Path(exists=True, path_type=Path),
)
def validate(config_path: Path) -> None:
    """Validate a workflow definition file.

    Checks that the workflow YAML is valid and every stage can be staffed.

    Example:
        signoff validate content_review.yaml
    """
    from signoff.workflow import WorkflowParser

    try:
        workflow = WorkflowParser.parse_file(config_path)
    except FileNotFoundError:
        error(f"File not found: {config_path}")
        raise SystemExit(1)
    except Exception as e:
        error(f"Validation error: {e}")
        raise SystemExit(1)

    config_panel(
        "✓ Valid Workflow",
        {
            "Name": workflow.name,
            "Version": workflow.version,
            "Stages": str(len(workflow.stages)),
            "Targets": ", ".join(t.value for t in workflow.applicable_target_types),
            "Active": str(workflow.is_active),
        },
    )
    if not workflow.is_active:
        warning("Workflow is inactive and will not start new requests")
    if workflow.allow_parallel_stages:
        warning("allow_parallel_stages is set; stages still run in order")
    for stage in workflow.stages:
        if stage.timeout_hours is None and workflow.default_timeout_hours is None:
            dim(f"Stage '{stage.id}' uses the global default timeout")


@main.command()
@click.argument(
    "config_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show detailed information",
)
def info(config_path: Path, verbose: bool) -> None:
    """Show detailed workflow information.

    Displays stages with their approvers, quorum and timeouts.

    Example:
        signoff info content_review.yaml --verbose
    """
    from signoff.workflow import WorkflowParser

    try:
        workflow = WorkflowParser.parse_file(config_path)
    except Exception as e:
        error(str(e))
        raise SystemExit(1)

    console.print()
    title_line(workflow.name, workflow.version)
    if workflow.description:
        dim(workflow.description)

    rows: List[List[str]] = []
    for stage in workflow.stages:
        approvers = ", ".join(stage.approvers) or ", ".join(r.value for r in stage.approver_roles)
        if stage.auto_approve:
            approvers = "[green]auto-approve[/]"
        if workflow.require_all_approvers and stage.approvers:
            quorum = "all"
        else:
            quorum = str(stage.approvers_required)
        timeout = stage.timeout_hours or workflow.default_timeout_hours
        row = [
            str(stage.order),
            stage.name,
            approvers or "-",
            quorum,
            f"{timeout:g}h" if timeout else "default",
        ]
        if verbose:
            row.append(
                "; ".join(
                    f"{c.field or c.type.value} {c.operator.value} {c.value}"
                    for c in stage.skip_conditions
                )
                or "-"
            )
        rows.append(row)

    columns = ["#", "Stage", "Approvers", "Quorum", "Timeout"]
    if verbose:
        columns.append("Skip when")
    make_table("Stages", columns, rows)

    if verbose:
        console.print()
        key_value("Targets", ", ".join(t.value for t in workflow.applicable_target_types))
        key_value("Auto start", str(workflow.auto_start))
        key_value("Require all approvers", str(workflow.require_all_approvers))
    console.print()


@main.command()
@click.argument("status", type=str)
@click.option(
    "--role",
    "-r",
    type=str,
    default=None,
    help="Only show actions this role may perform",
)
def actions(status: str, role: Optional[str]) -> None:
    """List lifecycle actions available from an artifact state.

    Example:
        signoff actions PENDING_REVIEW --role approver
    """
    from signoff.lifecycle import ApprovalStateMachine, ArtifactStatus
    from signoff.permissions import Role

    machine = ApprovalStateMachine()
    try:
        current = ArtifactStatus(status)
        if role is not None:
            role = Role.parse(role)
    except ValueError as e:
        error(str(e), hint=f"States: {', '.join(s.value for s in ArtifactStatus)}")
        raise SystemExit(1)

    info = machine.get_state_info(current)
    console.print()
    key_value("State", status_badge(info.label, info.color))
    dim(info.description)

    available = machine.get_available_actions(current, role)
    if not available:
        warning("No actions available" + (f" for role {role.value}" if role else ""))
        return

    targets = {
        t["action"]: t["to"]
        for t in machine.get_workflow_diagram()["transitions"]
        if t["from"] == current.value
    }
    rows = []
    for action in available:
        target = machine.get_state_info(targets[action])
        rows.append([action, f"→ {status_badge(target.label, target.color)}"])
    make_table("Actions", ["Action", "Result"], rows)


@main.command()
@click.argument(
    "config_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option("--stage", "-s", "stage_id", type=str, required=True, help="Stage id to route")
@click.option(
    "--team",
    "-t",
    "team_path",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="YAML file listing team members",
)
@click.option(
    "--priority",
    "-p",
    type=click.Choice(["low", "medium", "high", "urgent"]),
    default="medium",
    help="Request priority (default: medium)",
)
@click.option("--requester", type=str, default="requester", help="Requester user id")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to signoff.yaml config file",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging",
)
def route(
    config_path: Path,
    stage_id: str,
    team_path: Path,
    priority: str,
    requester: str,
    config: Optional[Path],
    debug: bool,
) -> None:
    """Preview who a stage would be routed to.

    Example:
        signoff route campaign_launch.yaml --stage legal --team team.yaml --priority urgent
    """
    from signoff.config.settings import SignoffSettings
    from signoff.routing import RoutingContext, RoutingEngine
    from signoff.workflow import ApprovalRequest, WorkflowParser

    try:
        settings = SignoffSettings(_config_path=str(config) if config else None)
        setup_logging(debug or settings.debug, settings.log_level)
        workflow = WorkflowParser.parse_file(config_path)
        stage = workflow.get_stage(stage_id)
        if stage is None:
            raise ValueError(
                f"Stage '{stage_id}' not found "
                f"(stages: {', '.join(s.id for s in workflow.stages)})"
            )
        members, workload = _load_team(team_path)
    except Exception as e:
        error(str(e))
        raise SystemExit(1)

    request = ApprovalRequest(
        workflow_id=workflow.id,
        target_type=workflow.applicable_target_types[0],
        target_id="dry-run",
        requester_id=requester,
        current_stage_id=stage.id,
        priority=priority,
    )
    engine = RoutingEngine(
        settings.routing, default_timeout_hours=settings.workflows.default_timeout_hours
    )
    decision = engine.route_approval(
        RoutingContext(
            request=request,
            stage=stage,
            team_members=members,
            workflow=workflow,
            workload=workload or None,
        )
    )

    if decision.ranked:
        chosen = set(decision.target_approvers)
        rows = [
            [
                ("[green]✓[/] " if c.user_id in chosen else "  ") + c.user_id,
                c.role.value if c.role else "-",
                f"{c.score:.2f}",
                str(c.workload),
            ]
            for c in decision.ranked
        ]
        make_table(f"Candidates for '{stage.name}'", ["User", "Role", "Score", "Open"], rows)

    config_panel(
        "Routing Decision",
        {
            "Approvers": ", ".join(decision.target_approvers) or "-",
            "Estimated time": f"{decision.estimated_time:g}h",
            "Confidence": f"{decision.confidence:.2f}",
        },
    )
    for line in decision.reasoning:
        dim(line)

    if decision.should_route:
        success("Stage can be routed")
    else:
        error("No eligible approvers", hint="Check roles and availability in the team file")
        raise SystemExit(1)


@main.command()
def version() -> None:
    """Show version information."""
    title_line("Signoff", __version__)


if __name__ == "__main__":
    main()
