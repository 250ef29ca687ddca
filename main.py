"""Ad Variation Engine: entry point.

Usage:
    # Decision pass only: analysis report -> winning strategy (or failure)
    python main.py select --report report.json --goal retention

    # Compile + validate a plan from a stored selection
    python main.py plan --selection outputs/selection_output.json --input plan_input.json

    # Lock and execute a stored plan
    python main.py execute plan_1a2b3c4d5e6f

    # Everything in one go
    python main.py run --report report.json --input plan_input.json --count 5

    # List stored plans
    python main.py plans
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

import config
from pipeline.creative_engine import compile_and_validate, generate_selection, lock_and_execute
from pipeline.plan_store import InputDataError, PlanStore, load_model, read_json_file
from pipeline.render_backends import RenderBackend, build_render_backends
from schemas.creative_brain import AnalysisReport, BrainFailureOutput, ScoringPolicy, SelectionResult
from schemas.creative_plan import CreativePlan, InvalidStateError, PlanExecutionResult, PlanGeneratorInput

console = Console()

SELECTION_OUTPUT = config.OUTPUT_DIR / "selection_output.json"


def setup_logging():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


# ---------------------------------------------------------------------------
# Input assembly
# ---------------------------------------------------------------------------

def load_policy(args: argparse.Namespace) -> ScoringPolicy:
    data: dict = read_json_file(Path(args.policy)) if getattr(args, "policy", None) else {}
    if getattr(args, "goal", None):
        data["goal"] = args.goal
    if getattr(args, "risk_tolerance", None):
        data.setdefault("constraints", {})["risk_tolerance"] = args.risk_tolerance
    return ScoringPolicy.model_validate(data)


def load_plan_input(args: argparse.Namespace, backends: list[RenderBackend]) -> PlanGeneratorInput:
    """Plan input from JSON and flags; engines default to the configured render backends."""
    data: dict = read_json_file(Path(args.input)) if getattr(args, "input", None) else {}
    if args.count is not None:
        data["variation_count"] = args.count
    if args.platform:
        data["platform"] = args.platform
    if args.seed is not None:
        data["seed"] = args.seed
    if args.country or args.language:
        audience = dict(data.get("audience") or {})
        if args.country:
            audience["country"] = args.country
        if args.language:
            audience["language"] = args.language
        data["audience"] = audience
    if not data.get("available_engines"):
        data["available_engines"] = [row.descriptor.model_dump() for row in backends]
    data.setdefault(
        "vps_available",
        any(row.descriptor.is_vps and row.descriptor.available for row in backends),
    )
    return PlanGeneratorInput.model_validate(data)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def print_selection(outcome: SelectionResult | BrainFailureOutput):
    if isinstance(outcome, BrainFailureOutput):
        body = f"[bold yellow]{outcome.mode}[/bold yellow]\n{outcome.reason}"
        if outcome.fallback_suggestion:
            body += f"\n\n[cyan]Suggestion:[/cyan] {outcome.fallback_suggestion}"
        console.print(Panel(body, title="No strategy selected", border_style="yellow"))
        return

    table = Table(title="Scored Strategies")
    table.add_column("Strategy", style="cyan")
    table.add_column("Framework")
    table.add_column("Impact", justify="right")
    table.add_column("Safety", justify="right")
    table.add_column("Economy", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Final", justify="right", style="bold")
    for row in outcome.scored_strategies:
        marker = " *" if row.strategy_id == outcome.selected.strategy_id else ""
        table.add_row(
            row.strategy_id + marker,
            row.framework,
            f"{row.impact_score:.2f}",
            f"{row.safety:.2f}",
            f"{row.economy:.2f}",
            f"{row.confidence_score:.2f}",
            f"{row.final_score:.3f}",
        )
    console.print(table)
    explanation = outcome.explanation
    console.print(
        Panel(
            f"[bold]{outcome.selected.framework}[/bold] ({outcome.selected.strategy_id})\n"
            f"{explanation.why_this_strategy}\n\n"
            f"[green]{explanation.expected_outcome}[/green]  "
            f"confidence: {explanation.confidence_level}",
            title="Selected strategy",
            border_style="green",
        )
    )


def print_plan(plan: CreativePlan, errors: list[str], warnings: list[str]):
    table = Table(title=f"Plan {plan.id} [{plan.status}]")
    table.add_column("#", justify="right")
    table.add_column("Hook", style="cyan")
    table.add_column("Pacing")
    table.add_column("Transitions")
    table.add_column("Duration", justify="right")
    table.add_column("Engine")
    table.add_column("Cost", justify="right")
    for row in plan.variations:
        table.add_row(
            str(row.index + 1),
            row.hook_type,
            row.pacing,
            ", ".join(row.transitions),
            f"{row.target_duration:g}s",
            row.engine_id,
            f"{row.estimated_cost:.4f}",
        )
    console.print(table)
    cost = plan.cost_estimate
    console.print(
        f"  [green]Cost:[/green] optimized {cost.optimized:.4f} "
        f"(min {cost.minimum:.4f}, max {cost.maximum:.4f}; free {cost.free_count}, paid {cost.paid_count})"
    )
    for message in errors:
        console.print(f"  [red]ERROR[/red] {message}")
    for message in warnings:
        console.print(f"  [yellow]WARN[/yellow] {message}")


def print_execution(result: PlanExecutionResult):
    table = Table(title=f"Execution {result.plan_id}")
    table.add_column("#", justify="right")
    table.add_column("Status", style="bold")
    table.add_column("Backend")
    table.add_column("Time", justify="right")
    table.add_column("Output / reason")
    for row in result.results:
        if row.completed:
            status = "[green]completed[/green]"
            detail = row.video_url or row.output_path
        else:
            status = f"[red]{row.failure_kind or 'failed'}[/red]"
            detail = row.error or row.human_readable_message
        table.add_row(
            str(row.variation_index + 1),
            status,
            row.backend_id or "-",
            f"{row.processing_time_ms / 1000:.1f}s",
            detail,
        )
    console.print(table)
    color = "green" if result.status == "completed" else "yellow"
    console.print(Panel(result.human_readable_message, title=result.status, border_style=color))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def run_select(args: argparse.Namespace) -> SelectionResult | BrainFailureOutput:
    report = load_model(Path(args.report), AnalysisReport)
    outcome = generate_selection(report, load_policy(args))
    print_selection(outcome)
    SELECTION_OUTPUT.write_text(outcome.model_dump_json(indent=2), encoding="utf-8")
    console.print(f"  [green]Output saved:[/green] {SELECTION_OUTPUT}")
    return outcome


def run_plan(args: argparse.Namespace, selection: SelectionResult | None = None) -> CreativePlan | None:
    if selection is None:
        path = Path(args.selection) if args.selection else SELECTION_OUTPUT
        data = read_json_file(path)
        if "mode" in data:
            console.print(f"[red]{path} holds a {data['mode']} result; nothing to plan.[/red]")
            return None
        selection = SelectionResult.model_validate(data)

    backends = build_render_backends()
    plan, errors, warnings = compile_and_validate(selection, load_plan_input(args, backends))
    print_plan(plan, errors, warnings)
    path = PlanStore().save_plan(plan)
    console.print(f"  [green]Plan saved:[/green] {path}")
    return plan


def run_execute(plan: CreativePlan) -> PlanExecutionResult:
    result = lock_and_execute(plan, build_render_backends())
    store = PlanStore()
    store.save_plan(result.plan)
    store.save_execution(result)
    print_execution(result)
    return result


def run_full(args: argparse.Namespace):
    outcome = run_select(args)
    if isinstance(outcome, BrainFailureOutput):
        return
    plan = run_plan(args, selection=outcome)
    if plan is None or plan.status != "validated":
        console.print("[red]Plan did not validate; not executing.[/red]")
        return
    run_execute(plan)


def list_plans():
    table = Table(title="Stored Plans")
    table.add_column("Plan", style="cyan")
    table.add_column("Status")
    table.add_column("Variations", justify="right")
    table.add_column("Created")
    for row in PlanStore().list_plans():
        table.add_row(row["id"], row["status"], str(row["variations"]), row["created_at"])
    console.print(table)


def main():
    parser = argparse.ArgumentParser(
        description="Ad Variation Engine: select, plan and render ad variations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # -- select command --
    sel = subparsers.add_parser("select", help="Pick a strategy from an analysis report")
    _add_selection_args(sel)

    # -- plan command --
    pl = subparsers.add_parser("plan", help="Compile and validate a plan from a selection")
    pl.add_argument("--selection", "-s", help=f"Selection JSON (default: {SELECTION_OUTPUT})")
    _add_plan_args(pl)

    # -- execute command --
    ex = subparsers.add_parser("execute", help="Lock and execute a stored plan")
    ex.add_argument("plan_id", help="Stored plan id")

    # -- run command (select -> plan -> execute) --
    run_cmd = subparsers.add_parser("run", help="Select, plan and execute in one go")
    _add_selection_args(run_cmd)
    _add_plan_args(run_cmd)

    subparsers.add_parser("plans", help="List stored plans")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging()

    console.print(
        Panel(
            "[bold]AD VARIATION ENGINE[/bold]\n"
            "Strategy selection, planning and rendering",
            border_style="bright_magenta",
        )
    )

    try:
        if args.command == "select":
            run_select(args)
        elif args.command == "plan":
            run_plan(args)
        elif args.command == "execute":
            plan = PlanStore().load_plan(args.plan_id)
            if plan is None:
                console.print(f"[red]Plan not found: {args.plan_id}[/red]")
                sys.exit(1)
            run_execute(plan)
        elif args.command == "run":
            run_full(args)
        elif args.command == "plans":
            list_plans()
    except InputDataError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(2)
    except InvalidStateError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(3)


def _add_selection_args(parser: argparse.ArgumentParser):
    parser.add_argument("--report", "-r", required=True, help="Path to analysis report JSON")
    parser.add_argument("--policy", help="Path to scoring policy JSON")
    parser.add_argument("--goal", choices=sorted(config.GOAL_WEIGHTS), help="Optimization goal")
    parser.add_argument("--risk-tolerance", choices=["low", "medium", "high"], help="Risk tolerance")


def _add_plan_args(parser: argparse.ArgumentParser):
    parser.add_argument("--input", "-i", help="Path to plan input JSON")
    parser.add_argument("--count", "-c", type=int, help="Number of variations")
    parser.add_argument("--platform", "-p", help="Target platform (tiktok, instagram-reels, ...)")
    parser.add_argument("--country", help="Audience country code")
    parser.add_argument("--language", help="Audience language")
    parser.add_argument("--seed", type=int, help="Deterministic seed")


if __name__ == "__main__":
    main()
