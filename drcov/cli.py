"""drcov-read: display the contents of a drcov file"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .codec import read
from .errors import DrCovError
from .model import CoverageData


app = typer.Typer(
    help="read and analyze drcov coverage files",
    no_args_is_help=True,
    context_settings=dict(help_option_names=["-h", "--help"]),
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def _configure_logging(verbose: bool):
    """route library logging through rich, on stderr"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _generate_report(
    coverage: CoverageData, filename: str, module_filter: Optional[str] = None, detailed: bool = False
) -> Dict[str, Any]:
    """collect everything the reader displays into one structure"""
    stats = coverage.get_coverage_stats()
    report = {
        "filename": filename,
        "version": coverage.header.version,
        "flavor": coverage.header.flavor,
        "module_table_version": coverage.module_version.value,
        "summary": {
            "total_modules": len(coverage.modules),
            "total_blocks": len(coverage.basic_blocks),
            "total_coverage_bytes": coverage.covered_bytes(),
        },
        "modules": [
            {
                "id": module.id,
                "blocks": stats[module.id],
                "covered_bytes": coverage.covered_bytes(module.id),
                "base": f"0x{module.base:x}",
                "end": f"0x{module.end:x}",
                "size": module.size,
                "path": module.path,
            }
            for module in coverage.modules
        ],
    }

    if module_filter is not None:
        needle = module_filter.lower()
        report["filter"] = module_filter
        report["matched_modules"] = [
            m for m in report["modules"] if needle in m["path"].lower()
        ]

    if detailed:
        report["blocks"] = [
            {
                "module_id": bb.module_id,
                "offset": f"0x{bb.start:x}",
                "size": bb.size,
                "address": f"0x{bb.absolute_address(coverage.modules[bb.module_id]):x}",
                "module": coverage.modules[bb.module_id].path,
            }
            for bb in coverage.basic_blocks
        ]

    return report


def _print_report_rich(report: Dict[str, Any]):
    """display a drcov report using rich tables"""
    console = Console()

    title = f"[bold cyan]DrCov File Analysis[/bold cyan]\n[dim]{report['filename']}[/dim]"
    console.print(Panel(title, expand=False))

    header_table = Table(title="[bold]Header[/bold]", show_header=False, box=None)
    header_table.add_column("Field", style="bold")
    header_table.add_column("Value", style="cyan")
    header_table.add_row("Version", str(report["version"]))
    header_table.add_row("Flavor", report["flavor"])
    header_table.add_row("Module Table Version", str(report["module_table_version"]))
    console.print(header_table)
    console.print()

    summary = report["summary"]
    summary_table = Table(title="[bold]Summary[/bold]", show_header=False, box=None)
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Value", style="cyan")
    summary_table.add_row("Total Modules", f"{summary['total_modules']:,}")
    summary_table.add_row("Total Basic Blocks", f"{summary['total_blocks']:,}")
    summary_table.add_row("Total Coverage", f"{summary['total_coverage_bytes']:,} bytes")
    console.print(summary_table)
    console.print()

    modules_table = Table(title="[bold]Module Coverage[/bold]")
    modules_table.add_column("ID", justify="right", style="cyan")
    modules_table.add_column("Blocks", justify="right", style="yellow")
    modules_table.add_column("Size", justify="right", style="green")
    modules_table.add_column("Base Address", style="magenta", no_wrap=True)
    modules_table.add_column("Name", overflow="fold")
    for module in report["modules"]:
        modules_table.add_row(
            str(module["id"]),
            str(module["blocks"]),
            f"{module['covered_bytes']} bytes",
            module["base"],
            module["path"],
        )
    console.print(modules_table)
    console.print()

    if "blocks" in report:
        blocks_table = Table(title="[bold]Detailed Basic Blocks[/bold]")
        blocks_table.add_column("Module", justify="right", style="cyan")
        blocks_table.add_column("Offset", style="magenta", no_wrap=True)
        blocks_table.add_column("Size", justify="right", style="yellow")
        blocks_table.add_column("Absolute Address", style="green", no_wrap=True)
        blocks_table.add_column("Module Name", overflow="fold")
        for block in report["blocks"]:
            blocks_table.add_row(
                str(block["module_id"]),
                block["offset"],
                str(block["size"]),
                block["address"],
                block["module"],
            )
        console.print(blocks_table)
        console.print()

    if "filter" in report:
        console.print(f"[bold]Module-Specific Analysis: '{report['filter']}'[/bold]")
        if not report["matched_modules"]:
            console.print(f"No modules found matching filter: '{report['filter']}'")
        for module in report["matched_modules"]:
            detail_table = Table(show_header=False, box=None)
            detail_table.add_column("Field", style="bold")
            detail_table.add_column("Value", overflow="fold")
            detail_table.add_row("Module ID", str(module["id"]))
            detail_table.add_row("Name", module["path"])
            detail_table.add_row("Base", module["base"])
            detail_table.add_row("End", module["end"])
            detail_table.add_row("Size", f"{module['size']} bytes")
            detail_table.add_row("Covered Blocks", str(module["blocks"]))
            detail_table.add_row("Covered Bytes", str(module["covered_bytes"]))
            console.print(detail_table)
            console.print()


@app.command()
def main(
    file: Path = typer.Argument(..., help="path to the .drcov file"),
    detailed: bool = typer.Option(
        False, "--detailed", "-d", help="list every executed basic block"
    ),
    module: Optional[str] = typer.Option(
        None, "--module", "-m", help="show details for modules whose path contains this"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="output information as JSON"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="enable debug logging"),
):
    """display header, module table and coverage of a drcov file"""
    _configure_logging(verbose)

    try:
        coverage = read(file)
    except (DrCovError, OSError) as e:
        typer.echo(f"error: failed to parse drcov file '{file}': {e}", err=True)
        raise typer.Exit(1)

    report = _generate_report(coverage, file.name, module, detailed)
    if json_output:
        typer.echo(json.dumps(report, indent=2))
    else:
        _print_report_rich(report)


if __name__ == "__main__":
    app()
