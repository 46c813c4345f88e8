"""
pipewright.cli - Command Line Interface
=========================================

    pipewright validate .pipewright.yml
    pipewright run .pipewright.yml --ref main --var IMAGE_NAME=registry.example.com/app:1.0
    pipewright run .pipewright.yml --ref v1.0.0 --tag --executor docker
    pipewright purge --config pipewright.yaml

``run`` exits 0 when the Run succeeded and 1 when it failed. For every failed
job the captured logs are printed, ending at the line that failed.
"""

from __future__ import annotations

import asyncio
import functools
from typing import NoReturn, Optional

import click

from pipewright import __version__
from pipewright.core.config import PipewrightConfig, load_config
from pipewright.core.enums import JobStatus, RunStatus
from pipewright.core.exceptions import ConfigurationError, ValidationError
from pipewright.core.loader import load_pipeline
from pipewright.core.models import TriggerEvent
from pipewright.core.state import RunState
from pipewright.facade import Pipewright
from pipewright.log import configure_logging
from pipewright.orchestration.stage_graph import StageGraph


_STATUS_COLORS = {
    JobStatus.SUCCEEDED: "green",
    JobStatus.FAILED: "red",
    JobStatus.SKIPPED: "yellow",
    JobStatus.BLOCKED: "magenta",
}


def async_command(func):
    """Run an async click callback to completion."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def _parse_variables(ctx: click.Context, param: click.Parameter, values: tuple[str, ...]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", ctx=ctx, param=param)
        variables[key] = value
    return variables


def _setup_logging(ctx: click.Context, default_level: str) -> None:
    """Configure logging once per invocation. --log-level wins over settings."""
    options = ctx.find_root().obj or {}
    if options.get("configured"):
        return
    level = options.get("log_level") or default_level
    try:
        configure_logging(level, json_format=options.get("json_logs", False))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--log-level") from e
    options["configured"] = True


def _load_settings(
    ctx: click.Context,
    config_path: Optional[str],
    executor: Optional[str],
) -> PipewrightConfig:
    try:
        config = load_config(config_path)
    except (ConfigurationError, FileNotFoundError) as e:
        raise click.ClickException(str(e)) from e
    _setup_logging(ctx, config.log_level)
    if executor:
        config = config.model_copy(
            update={"runner": config.runner.model_copy(update={"executor": executor})}
        )
    return config


def _fail_validation(ctx: click.Context, error: ValidationError) -> NoReturn:
    where = f"{error.location}: " if error.location else ""
    click.secho(f"invalid pipeline: {where}{error.message}", fg="red", err=True)
    ctx.exit(1)


def _print_run(state: RunState) -> None:
    color = "green" if state.status == RunStatus.SUCCEEDED else "red"
    click.echo(f"Run {state.run_id} ({state.pipeline_name} @ {state.ref})")

    width = max((len(name) for name in state.job_results), default=0)
    for name, result in state.job_results.items():
        status = click.style(result.status.value, fg=_STATUS_COLORS.get(result.status))
        click.echo(f"  {name.ljust(width)}  [{result.stage}]  {status}")

    for result in state.failed_jobs:
        click.echo("")
        click.secho(f"--- {result.job_name}: {result.error_message}", fg="red")
        for line in result.logs:
            click.echo(f"    {line}")

    click.echo("")
    click.secho(f"Run {state.status.value}", fg=color, bold=True)


# =============================================================================
# Commands
# =============================================================================
@click.group()
@click.version_option(__version__, prog_name="pipewright")
@click.option(
    "--log-level",
    default=None,
    help="Minimum log level  [default: log_level setting, INFO]",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def main(ctx: click.Context, log_level: Optional[str], json_logs: bool) -> None:
    """Minimal self-hosted CI pipeline runner."""
    ctx.obj = {"log_level": log_level, "json_logs": json_logs}
    if log_level is not None:
        _setup_logging(ctx, log_level)


@main.command()
@click.argument("definition", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def validate(ctx: click.Context, definition: str) -> None:
    """Check a pipeline definition and print its stage order."""
    _setup_logging(ctx, PipewrightConfig().log_level)
    try:
        graph = StageGraph(load_pipeline(definition))
    except ValidationError as e:
        _fail_validation(ctx, e)

    click.echo(f"Pipeline '{graph.pipeline.name}' is valid")
    for stage in graph.execution_order():
        jobs = ", ".join(job.name for job in graph.jobs_in(stage))
        click.echo(f"  {stage}: {jobs}")


@main.command()
@click.argument("definition", type=click.Path(exists=True, dir_okay=False))
@click.option("--ref", required=True, help="Branch or tag that triggered the run")
@click.option("--tag", "is_tag", is_flag=True, help="Treat --ref as a tag")
@click.option("--sha", default=None, help="Commit SHA of the event")
@click.option(
    "--var", "variables",
    multiple=True,
    callback=_parse_variables,
    metavar="KEY=VALUE",
    help="Variable injected into this run (repeatable)",
)
@click.option(
    "--executor",
    type=click.Choice(["local", "docker"]),
    default=None,
    help="Override the configured executor",
)
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Settings file")
@click.pass_context
@async_command
async def run(
    ctx: click.Context,
    definition: str,
    ref: str,
    is_tag: bool,
    sha: Optional[str],
    variables: dict[str, str],
    executor: Optional[str],
    config_path: Optional[str],
) -> None:
    """Run a pipeline for a branch or tag."""
    config = _load_settings(ctx, config_path, executor)
    event = TriggerEvent.tag(ref, sha) if is_tag else TriggerEvent.branch(ref, sha)

    try:
        pipeline = load_pipeline(definition)
        async with Pipewright(config) as pw:
            state = await pw.run_pipeline(pipeline, event, variables)
    except ValidationError as e:
        _fail_validation(ctx, e)

    _print_run(state)
    if state.status != RunStatus.SUCCEEDED:
        ctx.exit(1)


@main.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Settings file")
@click.pass_context
@async_command
async def purge(ctx: click.Context, config_path: Optional[str]) -> None:
    """Destroy expired artifacts of the configured artifact store."""
    config = _load_settings(ctx, config_path, None)
    async with Pipewright(config) as pw:
        counts = await pw.purge_expired()
    click.echo(f"Purged {counts['artifacts']} expired artifacts")


if __name__ == "__main__":
    main()
