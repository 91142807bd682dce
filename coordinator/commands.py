"""Catalog and session management CLI commands."""

import json
import random

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import CoordinatorError
from .isolation import verify_isolation


@click.group('catalog')
def catalog_commands():
    """Region catalog commands."""
    pass


@catalog_commands.command('load')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def load_catalog(path):
    """Load regions from a JSON file holding a list of region objects.

    Example:
        flask catalog load regions.json
    """
    with open(path, encoding='utf-8') as fh:
        rows = json.load(fh)

    try:
        result = current_app.catalog.load_regions(rows)
    except CoordinatorError as e:
        raise click.ClickException(e.message)

    click.echo(click.style('✓ Catalog loaded', fg='green'))
    click.echo(f"  Inserted: {result['inserted']}")
    click.echo(f"  Updated:  {result['updated']}")
    click.echo(f"  Total:    {result['total']}")


@catalog_commands.command('stats')
@with_appcontext
def catalog_stats():
    """Show region catalog statistics."""
    stats = current_app.catalog.get_statistics()
    click.echo(f"Regions:          {stats['total_regions']}")
    click.echo(f"  active:         {stats['active_regions']}")
    click.echo(f"  inactive:       {stats['inactive_regions']}")
    click.echo(f"  states:         {stats['states']}")
    click.echo(f"  sub-state:      {stats['sub_state_regions']}")
    click.echo(f"  query ready:    {stats['regions_ready_for_query']}")


@click.group('session')
def session_commands():
    """Mapping session commands."""
    pass


@session_commands.command('form-teams')
@click.argument('session_id')
@click.option('--team-size', type=int, default=None, help='Target team size (defaults to DEFAULT_TEAM_SIZE)')
@click.option('--seed', type=int, default=None, help='Seed for a reproducible shuffle')
@with_appcontext
def form_teams(session_id, team_size, seed):
    """Partition a session's participants into teams."""
    if team_size is None:
        team_size = current_app.config['DEFAULT_TEAM_SIZE']
    rng = random.Random(seed) if seed is not None else None

    try:
        result = current_app.formation.form_teams(session_id, team_size, rng=rng)
    except CoordinatorError as e:
        raise click.ClickException(e.message)

    click.echo(click.style(
        f"✓ Formed {result['teams_created']} teams from {result['participants_assigned']} participants",
        fg='green'
    ))
    for team in result['per_team_members']:
        click.echo(f"\n{team['team_name']} ({team['member_count']})")
        for member in team['members']:
            click.echo(f"  {member['role_icon']} {member['display_name']} (@{member['handle']}) - {member['role_name']}")


@session_commands.command('distribute')
@click.argument('session_id')
@with_appcontext
def distribute(session_id):
    """Distribute the active region catalog across the session's teams."""
    try:
        result = current_app.distribution.distribute_territories(session_id)
    except CoordinatorError as e:
        raise click.ClickException(e.message)

    click.echo(click.style(
        f"✓ Distributed {result['regions_distributed']} regions to {result['teams_count']} teams "
        f"(avg {result['avg_regions_per_team']} per team)",
        fg='green'
    ))


@session_commands.command('verify')
@click.argument('session_id')
@with_appcontext
def verify(session_id):
    """Check session isolation and territory distribution."""
    try:
        isolation = verify_isolation(session_id)
        distribution = current_app.distribution.verify_distribution(session_id)
    except CoordinatorError as e:
        raise click.ClickException(e.message)

    def mark(ok):
        return click.style('PASS', fg='green') if ok else click.style('FAIL', fg='red')

    click.echo(f"Isolation:    {mark(isolation['verification_passed'])} "
               f"({isolation['violations_found']} violations, "
               f"{isolation['teams_without_members']} empty teams)")
    click.echo(f"Distribution: {mark(distribution['validation_passed'])} "
               f"({distribution['duplicates']} duplicates, {distribution['orphans']} orphans)")

    if not (isolation['verification_passed'] and distribution['validation_passed']):
        raise click.exceptions.Exit(1)


@session_commands.command('progress')
@click.argument('session_id')
@with_appcontext
def progress(session_id):
    """Print the session leaderboard."""
    try:
        overview = current_app.progress.availability_overview(session_id)
        board = current_app.progress.leaderboard(session_id)
    except CoordinatorError as e:
        raise click.ClickException(e.message)

    click.echo(f"Completed {overview['completed_count']}/{overview['total_territories']} "
               f"({overview['completed_percentage']}%)")
    for row in board:
        click.echo(f"  {row['rank']}. {row['team_name']}: "
                   f"{row['completed_count']}/{row['total_territories']} ({row['completion_percentage']}%)")


def register_commands(app):
    app.cli.add_command(catalog_commands)
    app.cli.add_command(session_commands)
