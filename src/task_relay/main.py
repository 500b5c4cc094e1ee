"""CLI entrypoint for task-relay."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from task_relay import __version__
from task_relay.relay.controllers import (
    CheckCommand,
    CommandResult,
    ImagesCommand,
    OcrBatchCommand,
    OcrCommand,
    RelayCliController,
    ReprocessCommand,
    WaitCommand,
)
from task_relay.relay.models import TaskType

click.rich_click.USE_MARKDOWN = True
RELAY_CONTROLLER = RelayCliController()

C = TypeVar("C")
_TASK_TYPES = [task_type.value for task_type in TaskType]
_base_url_option = click.option(
    "--base-url",
    default=None,
    help="Queue base URL (defaults to TASK_RELAY_BASE_URL).",
)


@click.group()
@click.version_option(version=__version__, prog_name="task-relay")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for relay diagnostics.",
)
def task_relay(log_level: str) -> None:
    """Submit, poll and recover remote generation and OCR tasks."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@task_relay.command("images")
@_base_url_option
@click.option("--prompt", required=True, help="Generation prompt.")
@click.option(
    "--image",
    "image_paths",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Reference image. Can be repeated.",
)
@click.option(
    "--count",
    type=click.IntRange(min=1, max=16),
    default=None,
    help="Number of images; each becomes its own task.",
)
@click.option("--aspect-ratio", default="1:1", show_default=True, help="Output aspect ratio.")
@click.option("--image-size", default="1K", show_default=True, help="Output resolution.")
@click.option(
    "--step",
    type=click.IntRange(min=1, max=2),
    default=1,
    show_default=True,
    help="Design step the images belong to.",
)
@click.option("--conversation-id", default=None, help="Conversation the tasks belong to.")
def images(  # noqa: PLR0913
    base_url: str | None,
    prompt: str,
    image_paths: tuple[Path, ...],
    count: int | None,
    aspect_ratio: str,
    image_size: str,
    step: int,
    conversation_id: str | None,
) -> None:
    """Generate images as independent single-image tasks."""

    _emit_result(
        RELAY_CONTROLLER.images,
        ImagesCommand(
            base_url=base_url,
            prompt=prompt,
            image_paths=image_paths,
            count=count,
            aspect_ratio=aspect_ratio,
            image_size=image_size,
            step=step,
            conversation_id=conversation_id,
        ),
        failure_message="Image generation failed.",
    )


@task_relay.command("ocr")
@_base_url_option
@click.option(
    "--image",
    "image_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Image to recognize.",
)
@click.option("--wording", default="", help="Reference wording expected in the image.")
@click.option("--conversation-id", default=None, help="Conversation the task belongs to.")
def ocr(
    base_url: str | None,
    image_path: Path,
    wording: str,
    conversation_id: str | None,
) -> None:
    """Recognize text in one image."""

    _emit_result(
        RELAY_CONTROLLER.ocr,
        OcrCommand(
            base_url=base_url,
            image_path=image_path,
            wording=wording,
            conversation_id=conversation_id,
        ),
        failure_message="OCR failed.",
    )


@task_relay.command("ocr-batch")
@_base_url_option
@click.option(
    "--manifest",
    "manifest_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON list of {lineIndex, wording, image} entries.",
)
@click.option("--conversation-id", default=None, help="Conversation the tasks belong to.")
def ocr_batch(base_url: str | None, manifest_path: Path, conversation_id: str | None) -> None:
    """Recognize text for many lines; output follows lineIndex order."""

    _emit_result(
        RELAY_CONTROLLER.ocr_batch,
        OcrBatchCommand(
            base_url=base_url,
            manifest_path=manifest_path,
            conversation_id=conversation_id,
        ),
        failure_message="Some OCR lines failed.",
    )


@task_relay.command("check")
@_base_url_option
@click.argument("task_ids", nargs=-1, required=True)
def check(base_url: str | None, task_ids: tuple[str, ...]) -> None:
    """Show the current status of tasks (one round trip)."""

    _emit_result(
        RELAY_CONTROLLER.check,
        CheckCommand(base_url=base_url, task_ids=task_ids),
        failure_message="Status check incomplete.",
    )


@task_relay.command("wait")
@_base_url_option
@click.argument("task_ids", nargs=-1, required=True)
@click.option(
    "--task-type",
    type=click.Choice(_TASK_TYPES),
    default=None,
    help="Task type, selects the reprocess endpoint for stuck tasks.",
)
def wait(base_url: str | None, task_ids: tuple[str, ...], task_type: str | None) -> None:
    """Wait for existing tasks, recovering stuck ones."""

    _emit_result(
        RELAY_CONTROLLER.wait,
        WaitCommand(base_url=base_url, task_ids=task_ids, task_type=task_type),
        failure_message="Not all tasks finished successfully.",
    )


@task_relay.command("reprocess")
@_base_url_option
@click.argument("task_id")
@click.option("--trigger-id", required=True, help="Current trigger id of the task.")
@click.option(
    "--task-type",
    type=click.Choice(_TASK_TYPES),
    default=None,
    help="Task type, selects the reprocess endpoint.",
)
def reprocess(
    base_url: str | None,
    task_id: str,
    trigger_id: str,
    task_type: str | None,
) -> None:
    """Ask the queue to restart a pending task."""

    _emit_result(
        RELAY_CONTROLLER.reprocess,
        ReprocessCommand(
            base_url=base_url,
            task_id=task_id,
            trigger_id=trigger_id,
            task_type=task_type,
        ),
        failure_message="Reprocess was not accepted.",
    )


def _emit_result(
    handler: Callable[[C], CommandResult],
    command: C,
    *,
    failure_message: str,
) -> None:
    try:
        result = handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_relay()
