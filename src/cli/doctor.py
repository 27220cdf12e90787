"""Doctor command for environment diagnostics."""

from __future__ import annotations

import httpx
import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import build_client
from core.config import AppSettings, load_setup_information
from core.errors import IbpProvisionError

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


def _check_http(url: str, settings: AppSettings) -> tuple[bool, str]:
    try:
        with build_client(settings, timeout=settings.poll_request_timeout_seconds) as client:
            response = client.get(url)
        return True, f"HTTP {response.status_code}"
    except httpx.HTTPError as exc:
        return False, str(exc) or exc.__class__.__name__


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="ibp-provision Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row(
        "Poll policy",
        "OK",
        f"{settings.poll_request_timeout_seconds}s per request, {settings.poll_deadline_seconds}s overall",
    )
    if settings.insecure_skip_tls_verify:
        table.add_row("TLS verification", "WARN", "Disabled - test environments only")
    else:
        table.add_row("TLS verification", "OK", "Enabled")

    failed = False
    try:
        setup = load_setup_information(settings)
    except IbpProvisionError as exc:
        table.add_row("Setup info", "FAIL", str(exc))
        _console.print(table)
        _console.print(
            "\n[yellow]Note:[/yellow] set IAM_API_KEY, IAM_IDENTITY_URL and IBP_SERVICE_INSTANCE_URL, "
            f"or provide {settings.setup_file}."
        )
        raise typer.Exit(code=1) from exc

    table.add_row("Setup info", "OK", setup.service_url)
    for label, url in (("Console reachable", setup.service_url), ("IAM reachable", setup.identity_url)):
        ok, detail = _check_http(url, settings)
        failed = failed or not ok
        table.add_row(label, "OK" if ok else "FAIL", detail)

    _console.print(table)
    if failed:
        raise typer.Exit(code=1)
