"""CLI entrypoint for attention-budget."""

import logging
import os
from pathlib import Path

import rich_click as click

from attention_budget import __version__
from attention_budget.controllers import (
    AttentionCliController,
    BudgetSetCommand,
    PostShowCommand,
    PostsListCommand,
    SimulateCommand,
)
from attention_budget.storage.models import PostState

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AttentionCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="attention-budget")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=lambda: os.getenv("ATTENTION_BUDGET_LOG_LEVEL", "WARNING").upper(),
    show_default="WARNING",
    help="Logging verbosity.",
)
def attention_budget(log_level: str) -> None:
    """Attention budget CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@attention_budget.group()
def posts() -> None:
    """Stored post analyses."""


@posts.command("list")
@_DB_PATH_OPTION
@click.option(
    "--state",
    type=click.Choice([state.value for state in PostState]),
    default=None,
    help="Only show posts in this analysis state.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of posts to print.",
)
def posts_list(db_path: Path | None, state: str | None, limit: int) -> None:
    """List stored posts, most recently seen first."""

    _emit_lines(CONTROLLER.list_posts(PostsListCommand(db_path=db_path, state=state, limit=limit)))


@posts.command("show")
@_DB_PATH_OPTION
@click.argument("post_id")
def posts_show(db_path: Path | None, post_id: str) -> None:
    """Show one post with its tasks and classification."""

    _emit_lines(CONTROLLER.show_post(PostShowCommand(db_path=db_path, post_id=post_id)))


@posts.command("clear")
@_DB_PATH_OPTION
@click.confirmation_option(prompt="Delete all stored posts?")
def posts_clear(db_path: Path | None) -> None:
    """Delete all stored posts."""

    _emit_lines(CONTROLLER.clear_posts(db_path))


@attention_budget.command("stats")
@_DB_PATH_OPTION
def stats(db_path: Path | None) -> None:
    """Show storage statistics and today's attention against budgets."""

    _emit_lines(CONTROLLER.stats(db_path))


@attention_budget.group()
def budgets() -> None:
    """Daily time budgets."""


@budgets.command("show")
@_DB_PATH_OPTION
def budgets_show(db_path: Path | None) -> None:
    """Show daily budgets in minutes."""

    _emit_lines(CONTROLLER.show_budgets(db_path))


@budgets.command("set")
@_DB_PATH_OPTION
@click.argument("category")
@click.argument("minutes", type=click.FloatRange(min=0))
@click.option("--subcategory", default=None, help="Set the budget of one subcategory instead.")
def budgets_set(
    db_path: Path | None,
    category: str,
    minutes: float,
    subcategory: str | None,
) -> None:
    """Set a category (or subcategory) budget in minutes per day."""

    _emit_lines(
        CONTROLLER.set_budget(
            BudgetSetCommand(
                db_path=db_path,
                category=category,
                minutes=minutes,
                subcategory=subcategory,
            ),
        ),
    )


@budgets.command("reset")
@_DB_PATH_OPTION
def budgets_reset(db_path: Path | None) -> None:
    """Restore default budgets and taxonomy."""

    _emit_lines(CONTROLLER.reset_budgets(db_path))


@attention_budget.command("simulate")
@_DB_PATH_OPTION
@click.option("--text", required=True, help="Post text.")
@click.option("--author", default="Demo Author", show_default=True, help="Post author name.")
@click.option(
    "--image-caption",
    "image_captions",
    multiple=True,
    help="Caption of an attached image. Can be repeated.",
)
@click.option(
    "--remote/--no-remote",
    default=True,
    show_default=True,
    help="Run the authoritative analysis with a local demo service.",
)
def simulate(
    db_path: Path | None,
    text: str,
    author: str,
    image_captions: tuple[str, ...],
    remote: bool,
) -> None:
    """Run one post through task orchestration and reconciliation."""

    _emit_lines(
        CONTROLLER.simulate(
            SimulateCommand(
                db_path=db_path,
                text=text,
                author=author,
                image_captions=image_captions,
                remote=remote,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    attention_budget()
