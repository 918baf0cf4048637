"""`sprint-tools` command line: sprint and velocity reports on the console."""

import json
import logging

import click
from rich.console import Console

from services import console as render
from services.config import load_config, load_token, validate_repository
from services.errors import ConfigurationError, SprintToolsError
from services.github_client import GitHubClient
from services.label_sync import sync_repositories
from services.reports import ReportService

logger = logging.getLogger(__name__)


class ToolsContext:
    """Per-invocation state handed to subcommands."""

    def __init__(self, config, console):
        self.config = config
        self.console = console

    def service(self):
        client = GitHubClient(load_token(), max_workers=self.config.max_workers)
        return ReportService(client, self.config)


def _fail(e):
    raise click.ClickException(str(e))


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="projects-config.json to use (default: $SPRINT_TOOLS_CONFIG).")
@click.option("--debug", is_flag=True, help="Log every request and classification.")
@click.pass_context
def cli(click_ctx, config_path, debug):
    """Sprint and velocity reports over GitHub issues."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        _fail(e)
    click_ctx.obj = ToolsContext(config, Console())


@cli.command("sprint")
@click.argument("number", type=int, required=False)
@click.pass_obj
def sprint_cmd(ctx, number):
    """Show the window of sprint NUMBER (default: the current sprint)."""
    calendar = ctx.config.sprint_calendar()
    current = calendar.current_sprint()
    render.render_window(ctx.console, calendar.window_of(current if number is None else number), current)


@cli.command("velocity")
@click.argument("targets", nargs=-1, required=True)
@click.option("--current", "current_sprint", type=int,
              help="Sprint to treat as current (default: today's sprint).")
@click.option("--issues", "with_issues", is_flag=True, help="List issue numbers per row.")
@click.option("--json", "as_json", is_flag=True, help="Print the breakdown as JSON.")
@click.pass_obj
def velocity_cmd(ctx, targets, current_sprint, with_issues, as_json):
    """Velocity breakdown for TARGETS.

    A target is a configured project name, a JSON file with a `repos` list,
    or owner/repo[/number].
    """
    try:
        repos = ctx.config.resolve_repositories(targets)
        report = ctx.service().velocity(repos, current_sprint)
    except SprintToolsError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        render.render_velocity(ctx.console, report, with_issues)


@cli.command("report")
@click.argument("project")
@click.option("-f", "--from", "from_sprint", type=int,
              help="Report closed issues since this sprint (default: current).")
@click.option("-m", "--milestone", help="Only issues in this milestone; enables the backlog report.")
@click.option("-c", "--closed", "only_closed", is_flag=True, help="Only report closed issues.")
@click.option("-i", "--issues", "with_issues", is_flag=True, help="Show repo/number per issue.")
@click.pass_obj
def report_cmd(ctx, project, from_sprint, milestone, only_closed, with_issues):
    """Closed, in-progress and backlog report for PROJECT.

    The backlog is only reported when a milestone is given; otherwise it is
    too large to be useful.
    """
    try:
        repos = ctx.config.resolve_repositories([project])
        service = ctx.service()
        closed = service.closed(repos, from_sprint, milestone)
        current = None if only_closed else service.current(repos, milestone)
        backlog = service.backlog(repos, milestone) if milestone and not only_closed else None
    except SprintToolsError as e:
        _fail(e)

    render.render_closed(ctx.console, service, closed, with_issues)
    if current is not None:
        render.render_current(ctx.console, service, current, with_issues)
    if backlog is not None:
        render.render_backlog(ctx.console, service, backlog, with_issues)


@cli.command("sprint-report")
@click.argument("targets", nargs=-1, required=True)
@click.option("-s", "--sprint", type=int, help="Sprint to report on (default: current).")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.pass_obj
def sprint_report_cmd(ctx, targets, sprint, as_json):
    """Open, in-progress and resolved issues per milestone and assignee."""
    try:
        repos = ctx.config.resolve_repositories(targets)
        report = ctx.service().sprint_report(repos, sprint)
    except SprintToolsError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        render.render_sprint_report(ctx.console, report)


@cli.command("issue-hist")
@click.argument("repository")
@click.argument("number", type=int)
@click.pass_obj
def issue_hist_cmd(ctx, repository, number):
    """Show the event history and sprint lifecycle of one issue in REPOSITORY (owner/repo)."""
    try:
        if repository.count("/") != 1:
            raise ConfigurationError(f"Expected owner/repo, got `{repository}`")
        repository = validate_repository(repository)
        history = ctx.service().issue_history(repository, number)
    except SprintToolsError as e:
        _fail(e)

    render.render_issue_history(ctx.console, history)


@cli.command("unassigned-pulls")
@click.argument("targets", nargs=-1, required=True)
@click.pass_obj
def unassigned_pulls_cmd(ctx, targets):
    """List open pull requests nobody is assigned to."""
    try:
        repos = ctx.config.resolve_repositories(targets)
        pulls = ctx.service().unassigned_pulls(repos)
    except SprintToolsError as e:
        _fail(e)

    render.render_unassigned_pulls(ctx.console, pulls)


@cli.command("sync")
@click.argument("sync_config", type=click.Path(exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@click.pass_obj
def sync_cmd(ctx, sync_config, dry_run):
    """Sync labels and milestones listed in SYNC_CONFIG across its repos."""
    try:
        with open(sync_config, "r") as f:
            definitions = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise click.ClickException(f"Failed to read {sync_config}: {e}")

    client = GitHubClient(load_token(), max_workers=ctx.config.max_workers)
    try:
        actions, failures = sync_repositories(client, definitions, dry_run)
    except SprintToolsError as e:
        _fail(e)

    for action in actions:
        ctx.console.print(str(action), markup=False)

    if failures:
        for failure in failures:
            click.echo(f"{failure.repository}: {failure.error}", err=True)
        raise click.ClickException(f"{len(failures)} repositories failed to sync")

    click.echo("Done.")


def main():
    cli(prog_name="sprint-tools")


if __name__ == "__main__":
    main()
