"""CLI entrypoint for running flows and managing cassettes."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from .config import EngineConfig, load_config
from .console_reporter import ConsoleReporter
from .engine import MockEngine
from .errors import MockEngineError
from .loader import Bundle, apply_bundle, load_bundle
from .logging_utils import configure_logging
from .output_config import get_log_format, get_output_format
from .recording import RecordConfig, RecordPlaybackEngine

app = typer.Typer(help="Run mock flows and manage record/playback cassettes.")
cassettes_app = typer.Typer(help="Inspect and delete recorded cassettes.")
app.add_typer(cassettes_app, name="cassettes")

DEFAULT_RECORDINGS_DIR = Path("recordings")


def _engine_config(config_path: Optional[Path], seed: Optional[int]) -> EngineConfig:
    overrides = {"seed": seed} if seed is not None else {}
    if config_path is None:
        return EngineConfig.from_env(overrides)
    return load_config(config_path).model_copy(update=overrides)


async def _run_flows(
    engine: MockEngine,
    bundle: Bundle,
    names: list[str],
    scenario: Optional[str],
    reporter: ConsoleReporter,
) -> bool:
    apply_bundle(engine, bundle)
    if scenario or bundle.scenario:
        await engine.activate_scenario(scenario or bundle.scenario)

    all_passed = True
    for name in names:
        flow = bundle.flow(name)
        reporter.start_flow(name, len(flow.steps))
        result = await engine.execute_flow(name, dict(flow.context))
        for step in result.steps:
            reporter.report_step(step)
        reporter.finish_flow(result)
        all_passed = all_passed and result.success
    return all_passed


@app.command("run-flow")
def run_flow(
    bundle: Path = typer.Option(..., exists=True, readable=True, help="Bundle YAML with mocks and flows."),
    flow: list[str] = typer.Option([], "--flow", help="Flow name(s) to run; defaults to every flow in the bundle."),
    scenario: Optional[str] = typer.Option(None, help="Scenario to activate before running (overrides the bundle)."),
    config: Optional[Path] = typer.Option(None, exists=True, help="Engine config YAML/JSON."),
    seed: Optional[int] = typer.Option(None, help="Seed for generated data and failure injection."),
    format: Optional[str] = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format: auto, rich, plain or json (default: CONSOLE_OUTPUT_FORMAT or auto).",
    ),
    log_level: str = typer.Option("WARNING", help="Log level for engine events."),
) -> None:
    """Execute flows from a bundle and exit non-zero when any flow fails."""

    output_format = get_output_format(format)
    configure_logging(log_level, get_log_format(format))
    reporter = ConsoleReporter(output_format=output_format)

    try:
        loaded = load_bundle(bundle)
        names = flow or [item.name for item in loaded.flows]
        engine = MockEngine(_engine_config(config, seed))
        passed = asyncio.run(_run_flows(engine, loaded, names, scenario, reporter))
    except MockEngineError as exc:
        reporter.print_error(exc.message)
        raise typer.Exit(code=2) from exc

    if not passed:
        raise typer.Exit(code=1)


@cassettes_app.callback()
def cassettes_main(
    log_level: str = typer.Option("WARNING", help="Log level for engine events."),
) -> None:
    configure_logging(log_level, get_log_format(None))


def _recorder(directory: Path) -> RecordPlaybackEngine:
    return RecordPlaybackEngine(RecordConfig(recordings_dir=directory))


@cassettes_app.command("list")
def list_cassettes(
    directory: Path = typer.Option(DEFAULT_RECORDINGS_DIR, "--dir", help="Cassette directory."),
) -> None:
    """List cassette names found in the directory."""

    names = _recorder(directory).list_cassettes()
    if not names:
        typer.secho(f"No cassettes in {directory}", fg=typer.colors.YELLOW)
        return
    for name in names:
        typer.echo(name)


@cassettes_app.command("info")
def cassette_info(
    name: str = typer.Argument(..., help="Cassette name (file stem)."),
    directory: Path = typer.Option(DEFAULT_RECORDINGS_DIR, "--dir", help="Cassette directory."),
) -> None:
    """Print summary metadata for one cassette as JSON."""

    recorder = _recorder(directory)
    if not recorder.cassette_path(name).exists():
        typer.secho(f"Cassette {name} not found in {directory}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    try:
        recorder.load_cassette(name)
    except MockEngineError as exc:
        typer.secho(exc.message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(recorder.cassette_info(name), indent=2))


@cassettes_app.command("delete")
def delete_cassette(
    name: str = typer.Argument(..., help="Cassette name (file stem)."),
    directory: Path = typer.Option(DEFAULT_RECORDINGS_DIR, "--dir", help="Cassette directory."),
) -> None:
    """Delete a cassette file."""

    recorder = _recorder(directory)
    if not recorder.cassette_path(name).exists():
        typer.secho(f"Cassette {name} not found in {directory}", fg=typer.colors.YELLOW)
        return
    recorder.delete_cassette(name)
    typer.secho(f"Deleted cassette {name}", fg=typer.colors.GREEN)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
