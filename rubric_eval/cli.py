"""
rubric_eval CLI

Command-line interface for running generation/evaluation pipelines.

Usage:
    # Run a pipeline from a request YAML
    python -m rubric_eval run --config requests/onboarding.yaml --output results.json

    # Show which model each assistant would use
    python -m rubric_eval assign --config requests/onboarding.yaml --seed 7

    # Check provider connectivity for the request's models
    python -m rubric_eval check --config requests/onboarding.yaml
"""

import argparse
import asyncio
import json
import random
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.table import Table

import config as app_config
from utils.exceptions import ConfigError, FatalConstructionError
from utils.logging_config import setup_logging

from .assignment import SelectedModel, assign_models

console = Console()

EFFECTIVENESS_STYLES = {"high": "green", "medium": "yellow", "low": "red"}


def _load_request(path: str):
    from .pipeline.config import RunRequestConfig

    config_path = Path(path)
    console.print(f"[cyan]Loading run request: {config_path}[/cyan]")
    request = RunRequestConfig.from_yaml(config_path)
    console.print(f"[dim]Request: {request.request_id}[/dim]")
    console.print(f"[dim]Strategy: {request.strategy.value}[/dim]")
    console.print(
        f"[dim]Assistants: {len(request.assistants)}, criteria: {len(request.criteria)}, "
        f"test cases: {len(request.test_cases)}[/dim]"
    )
    return request


def _assignment_table(selected: List[SelectedModel]) -> Table:
    table = Table(title="Model Assignment")
    table.add_column("Assistant", style="cyan")
    table.add_column("Type")
    table.add_column("Model ID", style="green")
    table.add_column("Provider")
    table.add_column("Model")
    for m in selected:
        table.add_row(
            str(m.name or m.assistant_id), m.type.value, m.model_id, m.provider or "-", m.model
        )
    return table


async def cmd_assign(args: argparse.Namespace) -> int:
    """Print the model assignment for a request without running it."""
    request = _load_request(args.config)
    rng = random.Random(args.seed) if args.seed is not None else None

    selected = assign_models(
        request.assistants, request.strategy, models=request.model_catalog(), rng=rng
    )
    if not selected:
        console.print("[yellow]No assistant could be assigned a model[/yellow]")
        return 1

    console.print(_assignment_table(selected))
    return 0


async def cmd_check(args: argparse.Namespace) -> int:
    """Health-check the provider behind every model in the request."""
    from .pipeline.provider_operations import default_provider_builder
    from .providers import GenerationConfig

    request = _load_request(args.config)
    selected = assign_models(
        request.assistants, request.strategy, models=request.model_catalog()
    )

    failed = 0
    for m in selected:
        try:
            provider = default_provider_builder(m, GenerationConfig(), 30.0)
        except ValueError as e:
            console.print(f"  [red]✗[/red] {m.model_id}: {e}")
            failed += 1
            continue
        if await provider.health_check():
            console.print(f"  [green]✓[/green] {m.model_id}")
        else:
            console.print(f"  [red]✗[/red] {m.model_id}: unreachable")
            failed += 1
    return 1 if failed else 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the generation/evaluation pipeline for a request."""
    from .pipeline import PipelinePhase, run_pipeline
    from .pipeline.provider_operations import JudgeEvaluateOperation, ProviderGenerateOperation

    request = _load_request(args.config)
    run_config = request.run_config
    if args.max_concurrent is not None:
        run_config = replace(run_config, max_concurrent=args.max_concurrent)
    rng = random.Random(args.seed) if args.seed is not None else None

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed:.0f}/{task.total:.0f}"),
        console=console,
        transient=False,
    ) as progress:
        tasks = {}

        def on_progress(phase: PipelinePhase, completed: int, total: int, index: int) -> None:
            task: Optional[TaskID] = tasks.get(phase)
            if task is None:
                task = progress.add_task(phase.value, total=max(total, 1))
                tasks[phase] = task
            progress.update(task, completed=completed, total=max(total, 1))

        result = await run_pipeline(
            request.test_cases,
            request.criteria,
            request.assistants,
            request.strategy,
            generate_op=ProviderGenerateOperation(rng=rng),
            evaluate_op=JudgeEvaluateOperation(timeout_seconds=run_config.timeout_seconds),
            on_progress=on_progress,
            models=request.model_catalog(),
            config=run_config,
            rng=rng,
            run_id=request.request_id,
        )

    console.print(_assignment_table(result.selected_models))

    table = Table(title=f"Results: {request.request_id}")
    table.add_column("Test Case", style="cyan")
    table.add_column("Model")
    for criterion in request.criteria:
        table.add_column(criterion.name, justify="right")
    table.add_column("Effectiveness")

    for tc, outcome in zip(result.test_cases, result.outcomes()):
        style = EFFECTIVENESS_STYLES[outcome.effectiveness.value]
        label = f"[{style}]{outcome.effectiveness.value}[/{style}]"
        if not tc.model_outputs:
            table.add_row(tc.id, "[red]no outputs[/red]", *["-"] * len(request.criteria), label)
            continue
        for n, output in enumerate(tc.model_outputs):
            scores = [
                f"{output.rubric_scores[c.id]:.0f}" if c.id in output.rubric_scores else "-"
                for c in request.criteria
            ]
            table.add_row(tc.id if n == 0 else "", output.model_name, *scores, label if n == 0 else "")
    console.print(table)

    for outcome in result.outcomes():
        if outcome.suggestions:
            console.print(f"\n[bold]{outcome.test_case_id}[/bold] suggestions:")
            for suggestion in outcome.suggestions:
                console.print(f"  - {suggestion}")

    if result.failures:
        console.print(f"\n[yellow]{len(result.failures)} failed calls:[/yellow]")
        for reason in result.failure_reasons:
            console.print(f"  [yellow]- {reason}[/yellow]")

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(result.to_dict(), indent=2, default=str))
        console.print(f"\n[green]Results saved to {output_path}[/green]")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="rubric-eval",
        description="Multi-model generation and rubric evaluation pipeline",
    )
    parser.add_argument("--log-level", default=app_config.LOG_LEVEL, help="Log level")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run
    run_parser = subparsers.add_parser("run", help="Run a pipeline from a request YAML")
    run_parser.add_argument("--config", "-c", required=True, help="Path to run request YAML")
    run_parser.add_argument("--output", "-o", help="Output path for results JSON")
    run_parser.add_argument("--seed", type=int, help="Seed for random model assignment")
    run_parser.add_argument(
        "--max-concurrent", type=int, help="Max in-flight remote calls per phase"
    )

    # assign
    assign_parser = subparsers.add_parser("assign", help="Show the model assignment only")
    assign_parser.add_argument("--config", "-c", required=True, help="Path to run request YAML")
    assign_parser.add_argument("--seed", type=int, help="Seed for random model assignment")

    # check
    check_parser = subparsers.add_parser("check", help="Check provider connectivity")
    check_parser.add_argument("--config", "-c", required=True, help="Path to run request YAML")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    app_config.validate_config()
    setup_logging(level=args.log_level, log_dir=app_config.LOG_DIR)

    commands = {
        "run": cmd_run,
        "assign": cmd_assign,
        "check": cmd_check,
    }
    try:
        return asyncio.run(commands[args.command](args))
    except (ConfigError, FatalConstructionError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 2
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
