"""MAKER CLI — Typer + Rich terminal interface.

Commands: run, plan, models, config.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import nullcontext
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.status import Status
from rich.table import Table

from maker import __version__
from maker.errors import DecompositionError, StepFailedError
from maker.events import EventType, RunEvent, RunEventEmitter
from maker.keys import has_key, load_keys_env, missing_keys
from maker.orchestrator import build_orchestrator
from maker.planner import TaskDecomposer
from maker.providers.litellm_provider import LiteLLMProvider
from maker.providers.registry import (
    high_quality_profile,
    load_maker_config,
    load_models,
    resolve_model,
)
from maker.schemas.config import ConsensusStrategy, MakerConfig, ModelConfig

# Load API keys from ~/.maker/keys.env and .env on startup
load_keys_env()

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="maker",
    help=(
        "Massively decomposed agentic processes: reliable task execution "
        "through First-to-Ahead-by-K consensus voting."
    ),
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"maker {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """MAKER — decompose a task, then vote every step to consensus."""


# ── Helpers ──────────────────────────────────────────────────────


def _setup_logging(dev_mode: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if dev_mode else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    # LiteLLM is very chatty at DEBUG
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _load_registry() -> dict[str, ModelConfig]:
    """Load the model registry, exit on error."""
    try:
        return load_models()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading models:[/red] {e}")
        raise typer.Exit(1) from None


def _load_config(path: Path | None) -> MakerConfig:
    """Load run defaults, exit on error."""
    try:
        return load_maker_config(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _apply_overrides(config: MakerConfig, **overrides: Any) -> MakerConfig:
    """Return a validated copy of ``config`` with non-None overrides applied."""
    update = {k: v for k, v in overrides.items() if v is not None}
    if not update:
        return config
    try:
        return MakerConfig(**{**config.model_dump(), **update})
    except ValidationError as e:
        console.print(f"[red]Invalid options:[/red] {e}")
        raise typer.Exit(1) from None


def _resolve_model(
    registry: dict[str, ModelConfig], config: MakerConfig,
) -> ModelConfig:
    try:
        return resolve_model(registry, config.model)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _warn_missing_key(model: ModelConfig) -> None:
    for env_var in missing_keys([model]):
        console.print(
            f"[yellow]Warning:[/yellow] {env_var} is not set; "
            f"calls to {model.display_name} will fail."
        )


def _print_json_error(
    error: str,
    *,
    step: int | None = None,
    instruction: str | None = None,
    state: dict[str, Any] | None = None,
) -> None:
    """Report a failed run as a single JSON object (``--json`` mode)."""
    payload = {
        "error": error,
        "step": step,
        "instruction": instruction,
        "state": state,
    }
    console.print_json(json.dumps(payload, ensure_ascii=False, default=str))


def _format_value(value: Any, limit: int = 50) -> str:
    if isinstance(value, (dict, list)):
        text = json.dumps(value, ensure_ascii=False)
        return text if len(text) <= limit else text[:limit] + "…"
    return str(value)


class _ProgressReporter:
    """Renders run events onto a Rich status line and the console."""

    def __init__(self, status: Status, dev_mode: bool = False) -> None:
        self._status = status
        self._dev_mode = dev_mode
        self._total = 0
        self._label = ""
        self._counted = 0
        self._flagged = 0

    def __call__(self, event: RunEvent) -> None:
        data = event.data
        if event.type == EventType.PLAN_CREATED:
            console.print(
                f"[green]✓[/green] Plan created with {len(data['steps'])} steps."
            )
        elif event.type == EventType.RUN_STARTED:
            self._total = data["total_steps"]
        elif event.type == EventType.STEP_STARTED:
            self._counted = self._flagged = 0
            self._label = (
                f"Step {data['index'] + 1}/{self._total}: {data['instruction']}"
            )
            self._status.update(self._label)
        elif event.type == EventType.VOTE_CAST:
            if data["kind"] == "counted":
                self._counted += 1
            else:
                self._flagged += 1
            suffix = f"[dim](Voting… {self._counted} votes)[/dim]"
            if self._flagged:
                suffix += f" [red]({self._flagged} flagged)[/red]"
            self._status.update(f"{self._label} {suffix}")
        elif event.type == EventType.STEP_COMPLETED:
            k_info = f" [dim](K={data['margin']})[/dim]" if self._dev_mode else ""
            console.print(
                f"[green]✓ Step {data['index'] + 1} complete:[/green] "
                f"[bold]{_format_value(data['value'])}[/bold]{k_info}"
            )
        elif event.type == EventType.STEP_FAILED:
            console.print(
                f"[red]✗ Step {data['index'] + 1} failed:[/red] {data['reason']}"
            )
        elif event.type == EventType.COOLDOWN_STARTED:
            self._status.update(
                f"[yellow]Rate limit safety: cooling down for "
                f"{data['seconds']:.0f}s…[/yellow]"
            )
        elif event.type == EventType.COOLDOWN_FINISHED:
            console.print("[dim]Cooled down. Resuming.[/dim]")


# ── Commands ─────────────────────────────────────────────────────


@app.command()
def run(
    prompt: str = typer.Argument(
        ..., help='Task to execute, e.g. "Start with 0, add 10, multiply by 2"',
    ),
    high: bool = typer.Option(
        False, "--high",
        help="Use the higher-quality (slower) worker model with step cooldowns.",
    ),
    margin: int | None = typer.Option(
        None, "--margin", "-k", help="Votes ahead required to win a step.",
    ),
    max_attempts: int | None = typer.Option(
        None, "--max-attempts", help="Worker invocations allowed per step.",
    ),
    batch_size: int | None = typer.Option(
        None, "--batch-size", help="Worker invocations per parallel batch.",
    ),
    sequential: bool = typer.Option(
        False, "--sequential", help="Invoke one worker at a time.",
    ),
    exhaustive: bool = typer.Option(
        False, "--exhaustive",
        help="Tally whole batches before checking the margin.",
    ),
    rpm: int | None = typer.Option(
        None, "--rpm", help="Override the model's requests-per-minute ceiling.",
    ),
    max_steps: int | None = typer.Option(
        None, "--max-steps", help="Reject plans longer than this many steps.",
    ),
    prompt_file: Path | None = typer.Option(
        None, "--prompt-file", exists=True, dir_okay=False,
        help="Custom worker prompt template.",
    ),
    config_file: Path | None = typer.Option(
        None, "--config", exists=True, dir_okay=False,
        help="Alternative defaults.toml.",
    ),
    dev: bool = typer.Option(
        False, "--dev", help="Verbose logging of flagged replies and failures.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print the run result as JSON only.",
    ),
) -> None:
    """Decompose a task and execute every step by consensus voting."""
    config = _load_config(config_file)
    if high:
        config = high_quality_profile(config)
    config = _apply_overrides(
        config,
        vote_margin_k=margin,
        max_attempts_per_step=max_attempts,
        batch_size=batch_size,
        max_rpm=rpm,
        max_steps=max_steps,
        strategy=ConsensusStrategy.SEQUENTIAL if sequential else None,
        early_termination=False if exhaustive else None,
        dev_mode=True if dev else None,
    )
    _setup_logging(config.dev_mode)

    registry = _load_registry()
    model = _resolve_model(registry, config)
    if not json_output:
        _warn_missing_key(model)

    custom_prompt = (
        prompt_file.read_text(encoding="utf-8") if prompt_file else None
    )

    if not json_output:
        console.print("[bold blue]🤖 MAKER — initializing…[/bold blue]")
        if high:
            console.print(f"[dim]Using {model.display_name} (high quality mode)[/dim]")

    emitter = RunEventEmitter()
    orchestrator = build_orchestrator(
        config, registry, emitter=emitter, custom_prompt=custom_prompt,
    )

    progress = (
        nullcontext() if json_output
        else console.status("[bold blue]Decomposing task…", spinner="dots")
    )
    try:
        with progress as status:
            if status is not None:
                emitter.add_listener(_ProgressReporter(status, config.dev_mode))
            result = asyncio.run(orchestrator.run(prompt))
    except DecompositionError as e:
        if json_output:
            _print_json_error(str(e))
        else:
            console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except StepFailedError as e:
        if json_output:
            _print_json_error(
                e.reason, step=e.index + 1, instruction=e.instruction, state=e.state,
            )
            raise typer.Exit(1) from None
        console.print(
            Panel(
                f"[bold]{e.instruction}[/bold]\n\n{e.reason}",
                title=f"[red]Step {e.index + 1} failed[/red]",
                border_style="red",
            )
        )
        console.print("[bold]Partial state:[/bold]")
        console.print_json(json.dumps(e.state, ensure_ascii=False, default=str))
        raise typer.Exit(1) from None

    if json_output:
        console.print_json(result.model_dump_json())
        return

    console.print("\n[bold magenta]🎉 Final result:[/bold magenta]")
    console.print_json(json.dumps(result.state, ensure_ascii=False, default=str))
    console.print(
        f"[dim]{len(result.steps)} steps, {result.total_attempts} worker calls, "
        f"{result.total_tokens:,} tokens, {result.duration_seconds:.1f}s[/dim]"
    )


@app.command()
def plan(
    prompt: str = typer.Argument(..., help="Task to decompose."),
    high: bool = typer.Option(False, "--high", help="Use the higher-quality model."),
    max_steps: int | None = typer.Option(
        None, "--max-steps", help="Reject plans longer than this many steps.",
    ),
    config_file: Path | None = typer.Option(
        None, "--config", exists=True, dir_okay=False,
        help="Alternative defaults.toml.",
    ),
) -> None:
    """Show the steps a task decomposes into, without running them."""
    config = _load_config(config_file)
    if high:
        config = high_quality_profile(config)
    config = _apply_overrides(config, max_steps=max_steps)
    _setup_logging(config.dev_mode)

    registry = _load_registry()
    model = _resolve_model(registry, config)
    _warn_missing_key(model)

    decomposer = TaskDecomposer(
        LiteLLMProvider(model),
        timeout=max(config.default_timeout, 90),
        max_steps=config.max_steps,
    )
    try:
        with console.status("[bold blue]Decomposing task…", spinner="dots"):
            steps = asyncio.run(decomposer.decompose(prompt))
    except DecompositionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    table = Table(title=f"Plan ({len(steps)} steps)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Instruction")
    for i, step in enumerate(steps, start=1):
        table.add_row(str(i), step)
    console.print(table)


@app.command()
def models() -> None:
    """List the models in the registry."""
    registry = _load_registry()

    table = Table(title="Model Registry")
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("LiteLLM ID", style="dim")
    table.add_column("RPM", justify="right")
    table.add_column("Key Env")
    table.add_column("Key Set", justify="center")

    for key, model in registry.items():
        key_set = "[green]✓[/green]" if has_key(model.api_key_env) else "[red]✗[/red]"
        table.add_row(
            key, model.display_name, model.model, str(model.max_rpm),
            model.api_key_env, key_set,
        )
    console.print(table)


@app.command("config")
def config_show(
    config_file: Path | None = typer.Option(
        None, "--config", exists=True, dir_okay=False,
        help="Alternative defaults.toml.",
    ),
) -> None:
    """Show the effective run configuration."""
    config = _load_config(config_file)

    table = Table(title="MAKER Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in config.model_dump(mode="json").items():
        table.add_row(name, "—" if value is None else str(value))
    console.print(table)
