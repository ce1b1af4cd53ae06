"""
Command Line Interface for stackman.
"""
import functools
import logging
import os

import click
from docker.errors import DockerException

from ..CONVERTERS.project_converter import ProjectConverter
from ..ENGINE.docker_engine import DockerEngine
from ..errors import ConfigurationError, RemoteCallError, StackmanError
from ..MANAGERS.progress import Event, ProgressWriter
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MODELS.project import normalize_project_name
from ..PARSERS.compose_parser import ComposeParser
from ..settings import settings

logger = logging.getLogger(__name__)


def render_event(event: Event) -> None:
    line = f"{event.id} {event.text}"
    if event.status_text:
        line += f" {event.status_text}"
    click.echo(line, err=True)


class EchoSink:
    """
    Text sink writing through click.echo.
    """
    def write(self, text: str) -> None:
        click.echo(text, nl=False)

    def flush(self) -> None:
        pass


def handle_errors(f):
    """
    Prints stackman errors as "Error: ..." and exits with status 1.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except StackmanError as e:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {e}", err=True)
            click.get_current_context().exit(1)
    return wrapper


def load_project(ctx):
    if "project" not in ctx.obj:
        parser = ComposeParser()
        ctx.obj["project"] = parser.load(
            ctx.obj["files"], working_dir=ctx.obj["workdir"], project_name=ctx.obj["project_name"]
        )
    return ctx.obj["project"]


def resolve_project_name(ctx) -> str:
    """
    The project name from -p, the configuration files, the environment, or the directory name.
    """
    if ctx.obj["project_name"]:
        return normalize_project_name(ctx.obj["project_name"])
    try:
        return load_project(ctx).name
    except ConfigurationError:
        logger.debug("No usable configuration, deriving the project name", exc_info=True)
    workdir = os.path.abspath(ctx.obj["workdir"] or os.getcwd())
    return normalize_project_name(settings.project_name or os.path.basename(workdir))


def get_orchestrator(ctx) -> ServiceOrchestrator:
    if "orchestrator" not in ctx.obj:
        engine = ctx.obj.get("engine")
        if engine is None:
            try:
                engine = DockerEngine(retries=settings.engine_retries)
            except DockerException as e:
                raise RemoteCallError(f"cannot connect to the container engine: {e}") from e
        writer = ProgressWriter()
        writer.add_listener(render_event)
        ctx.obj["orchestrator"] = ServiceOrchestrator(engine, writer=writer, loader=ComposeParser())
    return ctx.obj["orchestrator"]


@click.group()
@click.option('--file', '-f', 'files', multiple=True, help='Configuration file path, repeatable; "-" reads stdin')
@click.option('--project-name', '-p', default=None, help='Project name')
@click.option('--workdir', default=None, help='Working directory, defaults to the directory of the first file')
@click.option('--log-level', default=None, help='Diagnostic log level, overrides STACKMAN_LOG_LEVEL')
@click.pass_context
def cli(ctx, files, project_name, workdir, log_level):
    """
    stackman - multi-container application manager.

    Runs projects of services, networks and volumes on a container engine.
    """
    ctx.ensure_object(dict)
    ctx.obj['files'] = list(files)
    ctx.obj['project_name'] = project_name
    ctx.obj['workdir'] = workdir
    if log_level:
        logging.getLogger().setLevel(log_level.upper())


@cli.command()
@click.pass_context
@handle_errors
def up(ctx):
    """Create and start the project's services."""
    project = load_project(ctx)
    get_orchestrator(ctx).up(project)
    click.echo(f"Project {project.name} is up.")


@cli.command()
@click.option('--timeout', '-t', type=int, default=None, help='Seconds to wait for containers to stop')
@click.option('--volumes', '-v', is_flag=True, help='Also remove named volumes')
@click.pass_context
@handle_errors
def down(ctx, timeout, volumes):
    """Stop and remove the project's containers and networks."""
    name = resolve_project_name(ctx)
    get_orchestrator(ctx).down(name, timeout=timeout, volumes=volumes)
    click.echo(f"Project {name} removed.")


@cli.command()
@click.pass_context
@handle_errors
def ps(ctx):
    """List service status"""
    services = get_orchestrator(ctx).ps(resolve_project_name(ctx))
    click.echo(f"{'SERVICE':20} {'DESIRED':8} {'RUNNING':8}")
    click.echo("-" * 38)
    for service in services:
        click.echo(f"{service.name:20} {service.desired:<8} {service.replicas:<8}")


@cli.command(name='ls')
@click.pass_context
@handle_errors
def list_stacks(ctx):
    """List projects"""
    stacks = get_orchestrator(ctx).list_stacks()
    click.echo(f"{'NAME':20} {'STATUS':30}")
    click.echo("-" * 51)
    for stack in stacks:
        click.echo(f"{stack.name:20} {stack.status:30}")


@cli.command()
@click.option('--follow/--no-follow', default=True, help='Keep streaming new output')
@click.pass_context
@handle_errors
def logs(ctx, follow):
    """Show the output of the project's containers"""
    get_orchestrator(ctx).logs(resolve_project_name(ctx), EchoSink(), follow=follow)


@cli.command()
@click.option('--format', 'fmt', default='yaml', help='Output format: yaml or json')
@click.option('--out', '-o', default=None, help='Output file, defaults to stdout')
@click.pass_context
@handle_errors
def convert(ctx, fmt, out):
    """Print the resolved configuration"""
    data = ProjectConverter(load_project(ctx)).convert(fmt)
    if out:
        with open(out, 'wb') as f:
            f.write(data)
    else:
        click.echo(data.decode('utf-8'), nl=False)


@cli.command()
@click.pass_context
@handle_errors
def build(ctx):
    """Build service images"""
    get_orchestrator(ctx).build(load_project(ctx))


@cli.command()
@click.pass_context
@handle_errors
def pull(ctx):
    """Pull service images"""
    get_orchestrator(ctx).pull(load_project(ctx))


@cli.command()
@click.pass_context
@handle_errors
def push(ctx):
    """Push service images"""
    get_orchestrator(ctx).push(load_project(ctx))


def main():
    """
    Main entry point for the CLI.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli(obj={})


if __name__ == '__main__':
    main()
