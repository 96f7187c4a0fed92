"""Command-line interface for termstrap.

The CLI wires configuration, host detection, proxy selection and structured
logging together, then hands control to :class:`termstrap.bootstrap.Bootstrapper`.
Fatal errors are caught at the command boundary and turned into exit status 1.
"""
from __future__ import annotations

import json
import shutil
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .artifacts import ARTIFACTS, ArtifactSettings, build_producer, get_artifact
from .backups import BackupDirectory
from .bootstrap import Bootstrapper, BootstrapReport
from .config import AppConfig, ConfigError, load_config
from .errors import FatalStepError, TermstrapError
from .exit_codes import ExitCode
from .host import HostInfo, detect_host
from .logging import OperationScope, StructuredLogger, configure_console_logging
from .network import NetworkSettings, check_connectivity, detect_git_proxy
from .providers.packages import PackageManagerError, select_package_manager
from .reporting import Reporter
from .retry import RetryExecutor
from .templates import TemplateEngine
from .writer import ConfigWriter

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to termstrap's YAML config file.",
)

FAILURE_SUGGESTION = (
    "Suggestion: check your network connection or permissions, then re-run termstrap."
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Terminal environment bootstrapper.

        Installs zsh, starship and friends, deploys Nerd Fonts and zsh plugins,
        and generates ~/.zshrc, ~/.config/starship.toml and the WezTerm config.
        Existing files are backed up before they are replaced.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    reporter: Reporter
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=int(ExitCode.FATAL)) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        reporter=Reporter(console=console),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the termstrap version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Echo debug logging to the terminal.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    configure_console_logging(verbose=verbose)
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"termstrap {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=int(ExitCode.OK))

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=int(ExitCode.OK))


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.FATAL),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _step_failed(op: OperationScope, reporter: Reporter, exc: TermstrapError) -> NoReturn:
    step = exc.step if isinstance(exc, FatalStepError) else "run"
    reporter.error(f"Step failed: {step}")
    reporter.error(str(exc))
    _command_error(op, FAILURE_SUGGESTION, errors=[f"{step}: {exc}"])


def _detect_host_or_exit(op: OperationScope, config: AppConfig) -> HostInfo:
    try:
        return detect_host(home=config.home)
    except TermstrapError as exc:
        _command_error(op, str(exc))


def _resolve_network(
    runtime: RuntimeContext,
    *,
    proxy: str | None,
    no_proxy: bool,
    assume_yes: bool,
    dry_run: bool,
) -> NetworkSettings:
    """Decide which proxy, if any, downloads and git operations go through."""
    reporter = runtime.reporter
    config = runtime.config
    if no_proxy:
        reporter.info("Not using a proxy, connecting directly.")
        return NetworkSettings()

    url = proxy or config.proxy.url
    if url is None and not assume_yes:
        reporter.rule()
        reporter.info("Network environment configuration")
        default = config.proxy.default
        git_proxy = detect_git_proxy()
        if git_proxy:
            reporter.info(f"Detected git proxy config: {git_proxy}")
            reporter.warn(
                "The git proxy is not applied to font downloads unless enabled here.",
                record=False,
            )
            default = git_proxy
        else:
            console.print("If GitHub access is slow, configuring an HTTP proxy is recommended.")
        if typer.confirm("Enable a proxy to accelerate downloads?", default=False):
            url = typer.prompt("Proxy address", default=default).strip() or default

    if not url:
        reporter.info("Not using a proxy, connecting directly (may be slow).")
        return NetworkSettings()

    settings = NetworkSettings(proxy=url)
    reporter.success(f"Proxy enabled for this run: {url}")
    if dry_run:
        return settings

    reporter.info("Testing connectivity...")
    if check_connectivity(config.proxy.check_url, settings):
        reporter.success("Connectivity test succeeded.")
        return settings

    reporter.warn("Connectivity test failed, check the proxy address.")
    if assume_yes or typer.confirm("Continue anyway?", default=False):
        return settings
    raise FatalStepError("proxy", f"Connectivity test through {url} failed.")


def _print_summary(report: BootstrapReport, logger: StructuredLogger) -> None:
    console.rule()
    if report.dry_run:
        console.print("[yellow]Dry run[/yellow]: no commands were executed and no files written.")
    else:
        console.print("[green]\\[SUCCESS][/green] Deployment completed successfully!")
    backup_note = str(report.backup_dir) if report.backups else f"{report.backup_dir} (nothing to back up)"
    console.print(f"Backups: {backup_note}")
    for result in report.artifacts:
        console.print(f"  - {result.destination}")
    if report.warnings:
        console.print(f"[yellow]{len(report.warnings)} warning(s):[/yellow]")
        for warning in report.warnings:
            console.print(f"  - {warning}")
    console.print(f"Operations log: {logger.path}")
    console.print(
        "Restart your terminal to apply the changes. Other terminal apps (Terminal.app, "
        "iTerm2, VS Code) need their font set to the Nerd Font manually."
    )
    console.rule()


@app.command()
def run(
    ctx: typer.Context,
    assume_yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Answer prompts with their defaults (no proxy unless configured).",
    ),
    proxy: str | None = typer.Option(
        None,
        "--proxy",
        help="HTTP proxy URL for downloads and git operations.",
    ),
    no_proxy: bool = typer.Option(
        False,
        "--no-proxy",
        help="Connect directly without asking about a proxy.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would happen without running commands or writing files.",
    ),
    skip_fonts: bool = typer.Option(False, "--skip-fonts", help="Do not download fonts."),
    skip_plugins: bool = typer.Option(
        False,
        "--skip-plugins",
        help="Do not clone or update zsh plugins.",
    ),
    no_shell_switch: bool = typer.Option(
        False,
        "--no-shell-switch",
        help="Leave the login shell unchanged.",
    ),
) -> None:
    """Bootstrap the terminal environment."""
    if proxy and no_proxy:
        raise typer.BadParameter("--proxy and --no-proxy are mutually exclusive.")

    runtime = _get_runtime(ctx)
    reporter = runtime.reporter
    skip: set[str] = set()
    if skip_fonts:
        skip.add("fonts")
    if skip_plugins:
        skip.add("plugins")
    if no_shell_switch:
        skip.add("shell")

    with runtime.logger.operation(
        "run",
        args={
            "dry_run": dry_run,
            "assume_yes": assume_yes,
            "proxy": bool(proxy),
            "no_proxy": no_proxy,
            "skip": sorted(skip | runtime.config.skip),
        },
        target={"kind": "home", "path": runtime.config.home},
    ) as op:
        host = _detect_host_or_exit(op, runtime.config)
        reporter.rule()
        reporter.info(f"termstrap {__version__}: terminal environment deployment")
        reporter.info(f"Environment: {host.label}")
        try:
            network = _resolve_network(
                runtime,
                proxy=proxy,
                no_proxy=no_proxy,
                assume_yes=assume_yes,
                dry_run=dry_run,
            )
            bootstrapper = Bootstrapper(
                runtime.config,
                host,
                reporter=reporter,
                logger=runtime.logger,
                network=network,
                engine=runtime.templates,
                dry_run=dry_run,
                skip=frozenset(skip),
            )
            reporter.info(f"Backup directory: {bootstrapper.backups.path}")
            report = bootstrapper.run()
        except TermstrapError as exc:
            _step_failed(op, reporter, exc)

        _print_summary(report, runtime.logger)
        summary = "Dry run complete." if dry_run else "Bootstrap complete."
        if report.warnings:
            op.warning(
                summary,
                warnings=report.warnings,
                changed=len(report.artifacts),
                backups=report.backups,
                context=report.to_dict(),
            )
        else:
            op.success(
                summary,
                changed=len(report.artifacts),
                backups=report.backups,
                context=report.to_dict(),
            )


@app.command()
def detect(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit host facts as JSON instead of a table.",
    ),
) -> None:
    """Show the detected host and the package manager termstrap would use."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "detect",
        args={"json": json_output},
        target={"kind": "host"},
    ) as op:
        host = _detect_host_or_exit(op, runtime.config)
        data = host.to_dict()
        try:
            manager = select_package_manager(host, RetryExecutor(dry_run=True))
            data["package_manager"] = manager.name
        except PackageManagerError:
            data["package_manager"] = None

        if json_output:
            console.print_json(data=data)
            op.success("Rendered host facts as JSON.", changed=0, context=data)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, "-" if value in (None, [], "") else str(value))
        console.print(table)
        op.success("Rendered host facts table.", changed=0, context=data)


@app.command()
def render(
    ctx: typer.Context,
    artifact: str = typer.Argument(..., help=f"One of: {', '.join(ARTIFACTS)}."),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write atomically to this path instead of printing.",
    ),
) -> None:
    """Render a single generated config file."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "render",
        args={"artifact": artifact, "output": output},
        target={"kind": "artifact", "name": artifact},
    ) as op:
        try:
            get_artifact(artifact)
        except TermstrapError as exc:
            _command_error(op, str(exc))

        host: HostInfo | None
        try:
            host = detect_host(home=runtime.config.home)
        except TermstrapError:
            host = None
        settings = ArtifactSettings.from_config(
            runtime.config, host, login_shell=shutil.which("zsh")
        )
        producer = build_producer(artifact, settings, runtime.templates)

        try:
            if output is None:
                typer.echo(producer(), nl=False)
                op.success(f"Rendered {artifact}.", changed=0)
                return
            backups = BackupDirectory(runtime.config.backup_root)
            result = ConfigWriter(backups).write(output, producer)
        except TermstrapError as exc:
            _command_error(op, str(exc))

        runtime.reporter.success(f"Config written: {result.destination}")
        if result.backup is not None:
            runtime.reporter.info(f"Previous version saved to {result.backup}")
        op.success(
            f"Wrote {artifact}.",
            changed=1,
            backups=[result.backup] if result.backup else [],
            context={"destination": result.destination, "bytes": result.bytes_written},
        )


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, (dict, list)):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
