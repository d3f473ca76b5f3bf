"""Main CLI entry point using Typer.

This module defines the root CLI application and global options.
"""

from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console

from f2b import __version__
from f2b.core.audit import configure_audit_logger
from f2b.core.context import ExecutionContext, create_context
from f2b.core.output import console as app_console
from f2b.core.config import DEFAULT_CONFIG_PATH, get_example_config
from f2b.core.exceptions import F2BError


# Create the main Typer app
app = typer.Typer(
    name="f2b",
    help="fail2ban provisioning tool - layered ban policy with verification.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows the files that would be written.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"f2b version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """fail2ban provisioning tool.

    Detects the firewall, asks for a ban policy, writes layered fail2ban
    configuration and verifies that a simulated attacker gets banned.

    [bold]Examples:[/bold]
        sudo f2b setup
        f2b setup --dry-run
        f2b config show
    """
    pass


def get_context(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )


def handle_error(error: F2BError) -> None:
    """Handle an F2BError by printing formatted error and exiting."""
    app_console.error(error.message)

    if error.details:
        for detail in error.details:
            app_console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


# ============================================================================
# Setup command
# ============================================================================

@app.command("setup")
def setup_cmd(
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Install and configure fail2ban interactively.

    Detects ufw or firewalld, installs fail2ban, asks for the ban policy,
    writes jail.local and jail.d overrides, restarts the daemon and
    optionally probes the SSH jail with a simulated attack.

    [bold]Examples:[/bold]

        # Full interactive setup
        sudo f2b setup

        # Preview the generated configuration
        f2b setup --dry-run
    """
    from f2b.commands.provision import run_setup

    ctx = get_context(
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )

    try:
        configure_audit_logger(
            log_path=ctx.config.audit_log,
            enabled=ctx.config.audit_enabled and not dry_run,
        )
        ctx.console.print("[bold]fail2ban installation and configuration[/bold]")
        run_setup(ctx)
    except F2BError as e:
        handle_error(e)


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration with environment overrides applied.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        ctx.console.summary("Effective paths", {
            "fail2ban directory": app_config.fail2ban_dir,
            "Lock file": app_config.lock_path,
            "Audit log": app_config.audit_log,
        })

    except F2BError as e:
        handle_error(e)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the file is valid YAML, that all values pass validation
    and that every override names a known fail2ban field.
    """
    from f2b.policy.generator import PolicyGenerator
    from f2b.policy.models import OperatorAnswers, FirewallState
    from f2b.policy.resolver import OverrideResolver

    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config
        overrides = app_config.overrides

        generator = PolicyGenerator(app_config.fail2ban_dir)
        answers = OperatorAnswers(hostname="localhost")
        defaults, jails = generator.generate(FirewallState.NONE, answers)
        layers = generator.override_layers(
            answers, local=overrides.local, jails=overrides.jails,
        )
        OverrideResolver().resolve(defaults, jails, layers)

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

    except F2BError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file.

    Outputs a complete example configuration with comments.
    """
    ctx = get_context(no_color=no_color)
    example = get_example_config()
    ctx.console.print(example, markup=False, highlight=False)


# Entry point
if __name__ == "__main__":
    app()
