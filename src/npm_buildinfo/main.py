import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from .build_info import BuildConfiguration
from .cli_config import (
    ComprehensiveConfig,
    apply_config_section,
    apply_project_resolver,
    create_sample_config,
    get_config,
    load_config,
    load_config_file,
    reset_config,
    validate_config_values,
)
from .error_handling import InstallProcessError, NpmBuildInfoError, setup_error_handling
from .install_command import CommandConfig, NpmInstallOrCiCommand
from .registry_clients import ServerDetails
from .reporting import BuildInfoReporter
from .structured_logging import configure_logging

__version__ = "1.0.0"

console = Console()

NPM_COMMAND_SETTINGS = {"ignore_unknown_options": True, "allow_extra_args": True}


def npm_command_options(func):
    """Options shared by the install and ci commands."""
    options = [
        click.option("--build-name", help="Build name to record the dependencies under"),
        click.option("--build-number", help="Build number to record the dependencies under"),
        click.option("--module", help="Build-info module id (default: from package.json)"),
        click.option("--threads", type=int, help="Number of concurrent checksum lookups"),
        click.option("--repo", help="Artifactory npm repository to resolve from"),
        click.option("--url", help="Artifactory URL"),
        click.option(
            "--config",
            "config_path",
            type=click.Path(exists=True, dir_okay=False),
            help="Path to a YAML or JSON config file",
        ),
        click.option("--verbose", "-v", is_flag=True, help="Enable debug logging"),
        click.argument("npm_args", nargs=-1, type=click.UNPROCESSED),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_command_config(
    command: str,
    npm_args: Tuple[str, ...],
    build_name: Optional[str],
    build_number: Optional[str],
    module: Optional[str],
    threads: Optional[int],
    repo: Optional[str],
    url: Optional[str],
    config_path: Optional[str],
) -> CommandConfig:
    """Combine the config file, environment and flags into a CommandConfig."""
    working_dir = Path.cwd()
    reset_config()
    settings = load_config(Path(config_path) if config_path else None, working_dir)

    url = url or settings.artifactory.url
    repo = repo or settings.artifactory.repo
    if not url:
        raise click.ClickException(
            "Artifactory URL is not configured (use --url or NPM_BUILDINFO_URL)"
        )
    if not repo:
        raise click.ClickException(
            "Resolution repository is not configured (use --repo or NPM_BUILDINFO_REPO)"
        )
    if (build_name is None) != (build_number is None):
        raise click.ClickException("--build-name and --build-number must be used together")

    settings.artifactory.url = url
    settings.artifactory.repo = repo
    server = ServerDetails.from_config(settings.artifactory)
    return CommandConfig(
        command=command,
        server=server,
        repo=repo,
        working_dir=working_dir,
        npm_args=npm_args,
        threads=settings.install.threads if threads is None else threads,
        build=BuildConfiguration(build_name or "", build_number or "", module or ""),
        builds_dir=Path(settings.install.builds_dir).expanduser(),
    )


def run_npm_command(command: str, verbose: bool, **kwargs) -> None:
    config = build_command_config(command, **kwargs)

    log_level = "DEBUG" if verbose else get_config().logging.log_level
    configure_logging(log_level)
    setup_error_handling(log_level=getattr(logging, log_level.upper(), logging.WARNING))

    reporter = BuildInfoReporter()
    try:
        asyncio.run(NpmInstallOrCiCommand(config, reporter=reporter).run())
    except KeyboardInterrupt:
        reporter.console.print(f"\n⚠️  npm {command} interrupted by user", style="yellow")
        sys.exit(130)
    except InstallProcessError as e:
        reporter.print_error(f"Error: {e}")
        sys.exit(e.return_code or 1)
    except NpmBuildInfoError as e:
        reporter.print_error(f"Error: {e}")
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    📦 npm-buildinfo: npm install/ci through Artifactory

    Resolves npm packages from an Artifactory npm repository and records
    the installed dependencies, with checksums, as build-info.
    """
    if version:
        console.print(f"npm-buildinfo version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command(context_settings=NPM_COMMAND_SETTINGS)
@npm_command_options
def install(verbose, **kwargs):
    """Run 'npm install' and collect build-info."""
    run_npm_command("install", verbose, **kwargs)


@cli.command(context_settings=NPM_COMMAND_SETTINGS)
@npm_command_options
def ci(verbose, **kwargs):
    """Run 'npm ci' and collect build-info."""
    run_npm_command("ci", verbose, **kwargs)


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".npm-buildinfo.yaml",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
def config_show():
    """Show current configuration settings, secrets masked."""
    current = get_config().to_dict(redact=True)

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))
    titles = {
        "artifactory": "🌐 Artifactory",
        "install": "📦 Install",
        "network": "🔌 Network",
        "logging": "📝 Logging",
    }
    for section, title in titles.items():
        console.print(f"\n[bold cyan]{title}:[/bold cyan]")
        for key, value in current[section].items():
            console.print(f"  {key}: {value}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))
    if config_data is None:
        console.print(f"❌ Could not load config from {config_file}", style="red")
        sys.exit(1)

    candidate = ComprehensiveConfig()
    for section in ("artifactory", "install", "network", "logging"):
        if isinstance(config_data.get(section), dict):
            apply_config_section(getattr(candidate, section), config_data[section], section)
    apply_project_resolver(candidate, config_data)

    errors = validate_config_values(candidate)
    if errors:
        console.print(f"❌ Configuration file {config_file} is invalid:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
