"""
Command-line interface for llamactl.

Every command builds its collaborators from the on-disk configuration
through :class:`AppContext`, so tests can point XDG_CONFIG_HOME and
XDG_CACHE_HOME at a temporary directory and drive the commands with
click's CliRunner.
"""
import functools
import json
import logging
import traceback
from datetime import datetime
from functools import cached_property
from typing import Optional

import click
from pydantic import ValidationError

from llamactl.frameworks_drivers.command_builder import CommandBuilder, flag_value
from llamactl.frameworks_drivers.config import AppPaths, LauncherConfig
from llamactl.frameworks_drivers.history_store import HistoryStore
from llamactl.frameworks_drivers.model_repository import ModelRepository
from llamactl.frameworks_drivers.model_resolver import ModelResolver
from llamactl.frameworks_drivers.process_lifecycle_manager import ProcessLifecycleManager
from llamactl.frameworks_drivers.run_capture_engine import RunCaptureEngine
from llamactl.frameworks_drivers.run_info_store import RunInfoStore
from llamactl.shared.errors import ConfigError, LlamactlError, ModelNotFoundError
from llamactl.shared.health_checker import HealthChecker
from llamactl.shared.logger import Logger
from llamactl.use_cases.get_model_info import GetModelInfo

logger = Logger.get(__name__)

PASSTHROUGH = {"ignore_unknown_options": True}
# Everything after the model name goes to llama-server verbatim
VERBATIM_PASSTHROUGH = {"ignore_unknown_options": True, "allow_interspersed_args": False}


class AppContext:
    """Lazily constructed collaborators shared by the commands of one invocation."""

    def __init__(self, paths: Optional[AppPaths] = None, verbose: bool = False):
        self.paths = paths or AppPaths.from_env()
        self.verbose = verbose

    @cached_property
    def config(self) -> LauncherConfig:
        try:
            return LauncherConfig.load_or_create(self.paths.config_file)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid configuration file {self.paths.config_file}: {e}") from e

    @cached_property
    def repository(self) -> ModelRepository:
        return ModelRepository(self.config.expanded_models_dir)

    @cached_property
    def resolver(self) -> ModelResolver:
        return ModelResolver(self.repository)

    @cached_property
    def manager(self) -> ProcessLifecycleManager:
        return ProcessLifecycleManager(self.paths)

    @cached_property
    def history(self) -> HistoryStore:
        return HistoryStore(self.paths.history_file)

    @cached_property
    def run_info_store(self) -> RunInfoStore:
        return RunInfoStore(self.paths.model_info_dir)

    @cached_property
    def commands(self) -> CommandBuilder:
        return CommandBuilder(self.config, self.repository)

    def engine(self) -> RunCaptureEngine:
        return RunCaptureEngine(self.config, self.manager, self.history, self.run_info_store, self.repository)


def _describe(error: LlamactlError) -> str:
    message = str(error)
    if isinstance(error, ModelNotFoundError) and error.available:
        message += "\n\nAvailable models:\n" + "\n".join(f"  {name}" for name in error.available)
    return message


def handle_cli_errors(command_name: str):
    """Decorator turning llamactl errors into click exceptions with exit status 1.

    Unexpected exceptions are reported too; with --verbose the traceback is printed.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except click.ClickException:
                raise
            except LlamactlError as e:
                raise click.ClickException(_describe(e)) from e
            except ValueError as e:
                raise click.ClickException(str(e)) from e
            except Exception as e:
                ctx = click.get_current_context()
                if ctx.obj is not None and ctx.obj.verbose:
                    traceback.print_exc()
                raise click.ClickException(f"Unexpected error in {command_name}: {e}") from e

        return wrapper

    return decorator


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """llamactl - run and track local llama-server instances."""
    if verbose:
        Logger.set_level(logging.DEBUG)
    if not isinstance(ctx.obj, AppContext):
        ctx.obj = AppContext(verbose=verbose)


@cli.command(context_settings=VERBATIM_PASSTHROUGH)
@click.argument("query")
@click.argument("extra_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
@handle_cli_errors("run")
def run(app: AppContext, query: str, extra_args: tuple) -> None:
    """Run a model in the foreground, capturing its load metadata.

    Arguments after the model name are passed to llama-server.
    """
    model_name = app.resolver.resolve(query)
    logger.debug(f"Resolved {query!r} to {model_name}")
    exit_code = app.engine().run(model_name, list(extra_args))
    if exit_code not in (0, 130):
        click.echo(f"llama-server exited with code {exit_code}", err=True)
    if exit_code != 0:
        raise SystemExit(exit_code)


@cli.command(context_settings=PASSTHROUGH)
@click.argument("query")
@click.option("--port", type=click.IntRange(1, 65535), default=None,
              help="Port to listen on (default: default_port from the config).")
@click.option("--wait/--no-wait", default=False, help="Wait until the server answers /health.")
@click.option("--timeout", type=float, default=120.0, show_default=True,
              help="Seconds to wait for the server to become healthy.")
@click.argument("extra_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
@handle_cli_errors("start")
def start(app: AppContext, query: str, port: Optional[int], wait: bool, timeout: float,
          extra_args: tuple) -> None:
    """Start a model in the background."""
    model_name = app.resolver.resolve(query)
    logger.debug(f"Resolved {query!r} to {model_name}")
    port = port or app.config.default_port
    command = app.commands.build_detached(model_name, port, list(extra_args))

    pid, log_path = app.manager.launch_detached(model_name, command, port)
    click.echo(f"Started {model_name} on port {port} (PID {pid})")
    click.echo(f"Log: {log_path}")

    if not wait:
        return

    host = flag_value(command, "--host") or "127.0.0.1"
    if host in ("0.0.0.0", "::"):
        host = "127.0.0.1"
    click.echo(f"Waiting for http://{host}:{port}/health ...")
    if not HealthChecker.wait_until_healthy(host, port, timeout=timeout):
        raise click.ClickException(f"{model_name} did not become healthy within {timeout:.0f}s; see {log_path}")
    click.echo(f"{model_name} is ready")


@cli.command()
@click.argument("target")
@click.pass_obj
@handle_cli_errors("stop")
def stop(app: AppContext, target: str) -> None:
    """Stop a running server by name fragment, or every server with 'all'."""
    if target == "all":
        result = app.manager.stop_all()
        if not result.stopped and not result.failures:
            click.echo("No servers running")
            return
        click.echo(f"Stopped {result.success_count} server(s)")
        for model, error in result.failures.items():
            click.echo(f"  {model}: {error}", err=True)
        if result.failures:
            raise SystemExit(1)
        return

    entry = app.manager.find_running(target)
    if entry is None:
        click.echo(f"No running server found matching: {target}")
        running = app.manager.get_state().running()
        if running:
            click.echo("")
            click.echo("Currently running:")
            for server in running:
                click.echo(f"  {server.model}")
        raise SystemExit(1)

    pid = app.manager.stop_one(entry)
    click.echo(f"Stopped {entry.model} (PID {pid})")


@cli.command()
@click.option("--json", "json_mode", is_flag=True, help="Print the raw state document as JSON.")
@click.pass_obj
@handle_cli_errors("status")
def status(app: AppContext, json_mode: bool) -> None:
    """Show running and recently stopped servers."""
    click.echo(app.manager.status(json_mode))


@cli.command()
@click.argument("query", required=False)
@click.option("--kv", "show_kv", is_flag=True, help="List every structured metadata entry.")
@click.option("--raw", "show_raw", is_flag=True, help="Print the captured lines only.")
@click.pass_obj
@handle_cli_errors("info")
def info(app: AppContext, query: Optional[str], show_kv: bool, show_raw: bool) -> None:
    """Show metadata captured from a model's last run."""
    cached = app.run_info_store.list_models()

    if query is None:
        if not cached:
            click.echo("No cached model info found.")
            click.echo("Run a model once to capture its metadata.")
            return
        click.echo("Models with captured info:")
        for name in cached:
            click.echo(f"  {name}")
        return

    try:
        model_name = app.resolver.resolve(query)
    except ModelNotFoundError:
        # The model file may be gone while its captured info remains
        if query not in cached:
            raise
        model_name = query

    view = "kv" if show_kv else "raw" if show_raw else "summary"
    click.echo(GetModelInfo(app.run_info_store).execute(model_name, view))


@cli.command(name="list")
@click.pass_obj
@handle_cli_errors("list")
def list_models(app: AppContext) -> None:
    """List local models, most recently modified first."""
    models = app.repository.list_models()
    if not models:
        click.echo(f"No models found in {app.repository.models_dir}")
        return

    running = {entry.model for entry in app.manager.get_state().running()}
    for model in models:
        size = f"{model.size / 1024 ** 3:.1f} GB"
        modified = datetime.fromtimestamp(model.mtime).strftime("%Y-%m-%d %H:%M")
        marker = "  [running]" if model.name in running else ""
        click.echo(f"{model.name:<50} {size:>9}  {modified}{marker}")


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
