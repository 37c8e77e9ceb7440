"""CLI entrypoint for agent-worker."""

from pathlib import Path

import rich_click as click

from agent_worker import __version__
from agent_worker.controllers import (
    CheckPathCommand,
    CheckPromptCommand,
    CommandResult,
    RunJobCommand,
    WorkerCliController,
)
from agent_worker.errors import UnknownJobTypeError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-worker")
def agent_worker() -> None:
    """Runs the Claude CLI agent for jobs from the controlling service.

    Configuration comes from `AGENT_WORKER_*` environment variables.
    """


@agent_worker.command("run")
@click.argument("job_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--project-path",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Override the project directory from the job file.",
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the completion payload as JSON to this file.",
)
def run_job(job_file: Path, project_path: Path | None, output_path: Path | None) -> None:
    """Execute one job described by a JSON file."""

    try:
        command = RunJobCommand(
            job_file=job_file,
            project_path=project_path,
            output_path=output_path,
        )
        result = CONTROLLER.run_job(command)
    except (UnknownJobTypeError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _finish(result, "Job failed.")


@agent_worker.command("check-path")
@click.argument("path")
@click.option(
    "--require-existing/--allow-missing",
    default=False,
    show_default=True,
    help="Also require the directory to exist, as code execution jobs do.",
)
def check_path(path: str, require_existing: bool) -> None:
    """Validate a project path without running anything."""

    try:
        result = CONTROLLER.check_path(
            CheckPathCommand(path=path, require_existing=require_existing),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _finish(result, "Path rejected.")


@agent_worker.command("check-prompt")
@click.argument("prompt_file", type=click.File("r", encoding="utf-8"), default="-")
def check_prompt(prompt_file) -> None:
    """Validate a prompt read from a file or stdin without running anything."""

    result = CONTROLLER.check_prompt(CheckPromptCommand(text=prompt_file.read()))
    _finish(result, "Prompt rejected.")


def _finish(result: CommandResult, failure_message: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_worker()
