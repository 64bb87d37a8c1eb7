"""dqscan config command - Configuration management."""

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from dqscan.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage dqscan configuration.")
console = Console()


@app.command("show")
def show_config(
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show the database URL unmasked (use with caution).",
    ),
) -> None:
    """Show current configuration.

    Example:
        dqscan config show
        dqscan config show --format json
    """
    from dqscan.config import _config_to_dict, export_config_json, get_config

    config = get_config()

    if format == "json":
        console.print(Syntax(export_config_json(config, mask_secrets=not unmask), "json", theme="monokai"))
        return

    data = _config_to_dict(config, mask_secrets=not unmask)
    console.print("[bold]dqscan Configuration[/bold]")
    console.print()

    general = Table(show_header=False, box=None)
    general.add_column("Key", style="cyan")
    general.add_column("Value")
    for key in ("config_dir", "data_dir", "database_url"):
        general.add_row(key, str(data[key]))
    console.print(general)

    for section in ("scheduler", "retry", "scans", "logging"):
        table = Table(title=section.capitalize(), title_justify="left", show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in data[section].items():
            table.add_row(key, "" if value is None else str(value))
        console.print(table)


@app.command("path")
def config_path() -> None:
    """Show configuration file path.

    Example:
        dqscan config path
    """
    from dqscan.config import DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_FILE

    config_dir = Path(os.environ.get("DQSCAN_CONFIG_DIR", DEFAULT_CONFIG_DIR))
    config_file_path = config_dir / DEFAULT_CONFIG_FILE
    console.print(f"[bold]Config directory:[/bold] {config_dir}")
    console.print(f"[bold]Config file:[/bold] {config_file_path}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")


@app.command("init")
def init_config(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file."),
) -> None:
    """Write the current configuration to the config file.

    Example:
        dqscan config init
    """
    from dqscan.config import DEFAULT_CONFIG_FILE, ensure_directories, get_config, save_config

    config = get_config()
    path = config.config_dir / DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        console.print(f"[yellow]Config file already exists: {path}[/yellow]")
        console.print("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)

    ensure_directories(config)
    save_config(config, path)
    console.print(f"[green]✓[/green] Wrote configuration to {path}")


@app.command("validate")
def validate_config(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Validate this file instead of the active configuration.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Validate configuration.

    Example:
        dqscan config validate
    """
    from dqscan.config import get_config, load_config, validate_config as do_validate

    config = load_config(config_file) if config_file else get_config()

    console.print("[bold]Validating configuration...[/bold]")
    errors = do_validate(config)

    all_passed = True
    for error in errors:
        if error.severity == "error":
            status = "[red]✗[/red]"
            all_passed = False
        else:
            status = "[yellow]![/yellow]"
        console.print(f"  {status} {escape(str(error))}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
