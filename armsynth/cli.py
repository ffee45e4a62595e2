"""Command line interface.

    armsynth synth my_app:build_app --out-dir out
    armsynth init-config
"""

import importlib
import importlib.util
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import ConfigError, create_default_config, load_config
from .construct import Node
from .emitters import get_emitter
from .exceptions import ArmSynthError, SynthesisValidationError
from .logging_config import configure_logging
from .synthesizer import SynthesisResult, Synthesizer
from .validation.issues import ValidationReport

logger = logging.getLogger(__name__)
console = Console()


def load_app(app_spec: str) -> Node:
    """Build the construct tree named by ``module:function`` or ``file.py:function``.

    The function is called without arguments and must return the root node;
    a module attribute that already is a node is used as is.
    """
    module_name, _, attribute = app_spec.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(
            f"Expected 'module:function', got '{app_spec}'", param_hint="APP_SPEC"
        )

    if module_name.endswith(".py") or os.sep in module_name:
        path = Path(module_name).resolve()
        spec = importlib.util.spec_from_file_location(path.stem, path)
        if spec is None or spec.loader is None:
            raise click.BadParameter(f"Cannot load {path}", param_hint="APP_SPEC")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    else:
        cwd = os.getcwd()
        if cwd not in sys.path:
            sys.path.insert(0, cwd)
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise click.BadParameter(
                f"Cannot import '{module_name}': {e}", param_hint="APP_SPEC"
            ) from e

    target = getattr(module, attribute, None)
    if target is None:
        raise click.BadParameter(
            f"'{module_name}' has no attribute '{attribute}'", param_hint="APP_SPEC"
        )
    root = target if isinstance(target, Node) else _call(target)
    if not isinstance(root, Node):
        raise click.BadParameter(
            f"'{app_spec}' returned {type(root).__name__}, not a construct tree root",
            param_hint="APP_SPEC",
        )
    return root


def _call(factory: Callable[[], Any]) -> Any:
    if not callable(factory):
        return factory
    return factory()


def _print_units(result: SynthesisResult) -> None:
    if not result.units:
        console.print("[yellow]No resources declared; nothing was synthesized[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Unit")
    table.add_column("Scope")
    table.add_column("Resources", justify="right")
    table.add_column("Size (bytes)", justify="right")
    table.add_column("Depends on")
    for unit in result.units:
        table.add_row(
            unit.name,
            unit.scope_key.label,
            str(unit.resource_count),
            str(unit.size_bytes),
            ", ".join(unit.depends_on) or "-",
        )
    console.print(table)


def _print_issues(report: Optional[ValidationReport]) -> None:
    if report is None or not report.issues:
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Severity")
    table.add_column("Resource")
    table.add_column("Code")
    table.add_column("Message")
    for issue in report.issues:
        color = "red" if issue.is_error else "yellow"
        table.add_row(
            f"[{color}]{issue.severity.value}[/{color}]",
            issue.source_logical_id or "-",
            issue.code,
            issue.message,
        )
    console.print(table)


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Logging level (DEBUG, INFO, WARNING, ERROR); overrides the config file",
)
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]) -> None:
    """ARM Synth - synthesize construct trees into ARM templates."""
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@cli.command("synth")
@click.argument("app_spec")
@click.option(
    "--out-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (default: armsynth.out)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ~/.config/armsynth/config.yaml)",
)
@click.option("--max-unit-size", type=int, default=None, help="Unit size ceiling in bytes")
@click.option("--max-resources", type=int, default=None, help="Resources per unit ceiling")
@click.option("--separator", default=None, help="Separator for generated names")
@click.option("--strict", is_flag=True, default=False, help="Treat warnings as errors")
@click.option(
    "--no-root-template",
    is_flag=True,
    default=False,
    help="Do not write azuredeploy.json",
)
@click.pass_context
def synth(
    ctx: click.Context,
    app_spec: str,
    out_dir: Optional[Path],
    config_path: Optional[Path],
    max_unit_size: Optional[int],
    max_resources: Optional[int],
    separator: Optional[str],
    strict: bool,
    no_root_template: bool,
) -> None:
    """Synthesize the construct tree returned by APP_SPEC ('module:function').

    Writes one template per unit, manifest.json and azuredeploy.json.

    \b
    Examples:
        armsynth synth infra.app:build --out-dir out
        armsynth synth ./app.py:build --max-resources 100 --strict
    """
    cli_args: Dict[str, Any] = {
        "synthesis": {
            "max_unit_size_bytes": max_unit_size,
            "max_resources_per_unit": max_resources,
            "name_separator": separator,
            "strict": True if strict else None,
        },
        "output": {
            "out_dir": out_dir,
            "emit_root_template": False if no_root_template else None,
        },
        "logging": {"level": ctx.obj.get("log_level") if ctx.obj else None},
    }
    try:
        config = load_config(config_path, cli_args)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e.message}")
        ctx.exit(2)

    configure_logging(config.logging.level, config.logging.json_logs)

    try:
        emitter = get_emitter(config.output.format)(
            {"emit_root_template": config.output.emit_root_template}
        )
        root = load_app(app_spec)
        result = Synthesizer(config.synthesis, emitter=emitter).synthesize(
            root, config.output.out_dir
        )
    except SynthesisValidationError as e:
        console.print(f"[red]Synthesis failed:[/red] {e.message}")
        _print_issues(e.report)
        ctx.exit(1)
    except (ArmSynthError, KeyError) as e:
        console.print(f"[red]Error:[/red] {e}")
        ctx.exit(1)

    _print_units(result)
    _print_issues(result.report)
    console.print(
        f"\n[bold green]Synthesized {len(result.units)} unit(s)[/bold green] "
        f"into {config.output.out_dir}"
    )


@cli.command("init-config")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Where to write the file (default: ~/.config/armsynth/config.yaml)",
)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file")
def init_config(config_path: Optional[Path], force: bool) -> None:
    """Write a commented default configuration file."""
    try:
        path = create_default_config(config_path, force=force)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise click.Abort() from e
    console.print(f"[green]Wrote default configuration to[/green] {path}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
