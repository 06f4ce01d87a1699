"""
Command Line Interface for dockstack.
"""
import functools
import logging
import os

import click
from dotenv import load_dotenv

from ..CLIENT.docker_client import DockerClient
from ..CONVERTERS.to_compose import ComposeConverter
from ..exceptions import DeploymentError, DockerException
from ..MANAGERS.stack import Stack
from ..PARSERS.compose_parser import ComposeParser


def handle_errors(func):
    """Turns library errors into a click error (exit status 1)."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DockerException as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _project_name(file: str) -> str:
    return os.path.basename(os.path.dirname(os.path.abspath(file))) or "default"


def _load_stack(ctx) -> Stack:
    obj = ctx.obj
    if "stack" not in obj:
        client = DockerClient(obj["host"])
        obj["stack"] = Stack.from_file(client, obj["file"], name=obj["project"])
    return obj["stack"]


def _deployed_stack(ctx) -> Stack:
    stack = _load_stack(ctx)
    stack.discover()
    return stack


@click.group()
@click.option('--host', '-H', envvar='DOCKER_HOST', default=None, help='Docker daemon URI')
@click.option('--file', '-f', default='docker-compose.yml', help='Compose file path')
@click.option('--project-name', '-p', default=None, help='Stack name (default: directory of the compose file)')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.pass_context
def cli(ctx, host, file, project_name, verbose):
    """
    dockstack - deploy docker-compose style stacks through the Docker Engine API.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv(os.path.join(os.getcwd(), ".env"), override=False)
    ctx.ensure_object(dict)
    ctx.obj['host'] = host
    ctx.obj['file'] = file
    ctx.obj['project'] = project_name or _project_name(file)


@cli.command()
@click.pass_context
@handle_errors
def up(ctx):
    """Create and start the services of the compose file."""
    stack = _deployed_stack(ctx)
    try:
        report = stack.up()
    except DeploymentError as e:
        if e.report is not None:
            for name in e.report.succeeded:
                click.echo(f"Started {name}")
            for failure in e.report.failed:
                click.echo(f"Failed  {failure.service}: {failure.error}", err=True)
            for name in e.report.skipped:
                click.echo(f"Skipped {name}", err=True)
        raise
    for name in report.succeeded:
        click.echo(f"Started {name}")


@cli.command()
@click.option('--volumes', is_flag=True, help='Also remove named volumes')
@click.pass_context
@handle_errors
def down(ctx, volumes):
    """Stop and remove the stack's containers and networks."""
    stack = _deployed_stack(ctx)
    report = stack.down(remove_volumes=volumes)
    click.echo(f"Removed {len(report.removed_containers)} containers, "
               f"{len(report.removed_networks)} networks, {len(report.removed_volumes)} volumes.")
    for error in report.container_errors + report.resource_errors:
        click.echo(f"Error: {error.resource}: {error.error}", err=True)
    if not report.ok:
        ctx.exit(1)


@cli.command()
@click.pass_context
@handle_errors
def ps(ctx):
    """List containers of the stack."""
    status = _deployed_stack(ctx).status()
    click.echo(f"{'SERVICE':20} {'REPLICA':8} {'STATUS':10} {'HEALTH':10} ID")
    click.echo("-" * 64)
    for name, service in status.services.items():
        for container in service.containers:
            click.echo(f"{name:20} {container.replica:<8} {container.status.value:10} "
                       f"{container.health.value:10} {container.id[:12]}")
    click.echo(f"Stack {status.stack}: {status.status} ({status.total_containers} containers)")


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--tail', default='all', help='Lines from the end of each log')
@click.option('--timestamps', '-t', is_flag=True, help='Show timestamps')
@click.pass_context
@handle_errors
def logs(ctx, services, tail, timestamps):
    """Show logs of the stack's services."""
    stack = _deployed_stack(ctx)
    output = stack.logs(list(services) or None, tail=tail, timestamps=timestamps)
    if output:
        click.echo(output)


@cli.command()
@click.argument('assignments', nargs=-1, required=True)
@click.pass_context
@handle_errors
def scale(ctx, assignments):
    """Set replica counts, e.g. `scale web=3 worker=2`."""
    targets = []
    for assignment in assignments:
        name, sep, count = assignment.partition('=')
        if not sep or not count.isdigit():
            raise click.BadParameter(f"expected SERVICE=N, got {assignment!r}")
        targets.append((name, int(count)))

    stack = _deployed_stack(ctx)
    for name, count in targets:
        indices = stack.scale(name, count)
        click.echo(f"{name}: {len(indices)} replicas running")


@cli.command()
@click.argument('service')
@click.pass_context
@handle_errors
def restart(ctx, service):
    """Restart every replica of a service."""
    refs = _deployed_stack(ctx).restart_service(service)
    click.echo(f"Restarted {len(refs)} replicas of {service}")


@cli.command()
@click.pass_context
@handle_errors
def config(ctx):
    """Print the normalized compose document."""
    registry = ComposeParser().parse(ctx.obj['file'], name=ctx.obj['project'])
    click.echo(ComposeConverter(registry).to_yaml(), nl=False)


@cli.command()
@click.pass_context
@handle_errors
def pull(ctx):
    """Pull the images of all image-based services."""
    for image in _load_stack(ctx).pull():
        click.echo(f"Pulled {image}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
