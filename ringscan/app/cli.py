"""
Command-line entrypoint.

    ringscan scan <path> [--ring codified,informal,external|all]
                         [--output <path>] [--mode eager|agent]

Exit status:
    0  the scan completed (whatever the tiers returned, including zero
       consulted tiers)
    2  configuration error detected before orchestration (bad path,
       invalid settings, unknown ring name)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

import anyio
import typer
from pydantic import ValidationError

from ringscan.app.config import ScanSettings, get_settings
from ringscan.app.coordinator.scanner import ScanCoordinator, validate_scan_path
from ringscan.app.errors import ConfigurationError
from ringscan.app.reports.interchange import dumps
from ringscan.app.schemas.report import ComplianceReport, ScanMode
from ringscan.app.schemas.tiers import Tier, parse_rings
from ringscan.app.tiers.credentials import authenticate

app = typer.Typer(add_completion=False)

logger = logging.getLogger("ringscan")

CONFIG_EXIT_CODE = 2


@app.callback()
def cli(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr."),
) -> None:
    """Three-tier compliance scanning with cross-tier reconciliation."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _fail(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=CONFIG_EXIT_CODE)


async def _run_scan(
    settings: ScanSettings,
    path: Path,
    rings: List[Tier],
    mode: Optional[ScanMode],
) -> ComplianceReport:
    credentials = await authenticate(settings.token_scopes())
    coordinator = ScanCoordinator.from_settings(settings, credentials=credentials)
    return await coordinator.run_scan(path, rings=rings, mode=mode)


@app.command()
def scan(
    path: Path = typer.Argument(..., help="Directory to scan."),
    ring: str = typer.Option(
        "all",
        "--ring",
        help="Comma-separated tiers to consult: codified, informal, external or all.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the interchange JSON here instead of stdout.",
    ),
    mode: Optional[ScanMode] = typer.Option(
        None,
        "--mode",
        case_sensitive=False,
        help="eager: query every tier up front; agent: the agent drives tier queries.",
    ),
) -> None:
    """Scan a codebase against the three knowledge tiers."""
    try:
        rings = parse_rings(ring)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--ring") from exc

    try:
        settings = get_settings()
    except ValidationError as exc:
        _fail(f"invalid settings:\n{exc}")

    try:
        validate_scan_path(path)
        report = anyio.run(_run_scan, settings, path, rings, mode)
    except ConfigurationError as exc:
        _fail(str(exc))

    text = dumps(report)
    if output is not None:
        output.write_text(text + "\n", encoding="utf-8")
        typer.echo(f"Wrote report: {output}", err=True)
    else:
        typer.echo(text)

    consulted = report.summary.tiers_consulted
    typer.echo(
        f"{report.summary.total_findings} finding(s), "
        f"{len(report.reconciliation)} reconciliation record(s), "
        f"{consulted}/{len(report.ring_availability)} tier(s) consulted",
        err=True,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
