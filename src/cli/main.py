"""Command line entry point (Typer)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console

from adapters.console_api import ConsoleClient
from adapters.cert_store import delete_locally_created_files
from adapters.http_client import resolve_verify
from cli import doctor
from cli.ui_components import (
    build_components_table,
    build_outcome_panel,
    configure_logging,
    parse_components,
)
from core.config import AppSettings, load_setup_information
from core.errors import IbpProvisionError
from core.services.availability import CA_HEALTH_PATH, PollPolicy, await_availability
from core.services.provisioning import delete_all_components, run_two_org_flow

app = typer.Typer(no_args_is_help=True, help="Provision and check blockchain console components.")
components_app = typer.Typer(no_args_is_help=True, help="Console component operations.")
app.add_typer(components_app, name="components")
app.add_typer(doctor.app, name="doctor")

_console = Console()
logger = logging.getLogger("ibp_provision")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR."),
) -> None:
    settings = AppSettings()
    configure_logging(log_level or settings.log_level)


@contextmanager
def _console_client(settings: AppSettings) -> Iterator[ConsoleClient]:
    try:
        setup = load_setup_information(settings)
    except IbpProvisionError as exc:
        _console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    with ConsoleClient.from_setup(setup, settings=settings) as client:
        yield client


def _fail(exc: Exception) -> typer.Exit:
    _console.print(f"[red]**ERROR**[/red] {exc}")
    return typer.Exit(code=1)


@app.command()
def wait(
    url: str = typer.Argument(..., help="Base URL of the service (e.g. a CA api_url)."),
    path: str = typer.Option(CA_HEALTH_PATH, "--path", help="Health path appended to URL ('' for none)."),
    request_timeout: Optional[float] = typer.Option(None, "--request-timeout", help="Seconds per request."),
    deadline: Optional[float] = typer.Option(None, "--deadline", help="Overall budget in seconds."),
    retry_delay: Optional[float] = typer.Option(None, "--retry-delay", help="Pause after a timeout."),
    ca_cert: Optional[Path] = typer.Option(None, "--ca-cert", exists=True, dir_okay=False, help="PEM to trust."),
    insecure: bool = typer.Option(False, "--insecure", help="Skip TLS verification (test environments only)."),
) -> None:
    """Poll URL until it answers 2xx or the deadline passes."""

    settings = AppSettings()
    policy = PollPolicy.from_settings(settings)
    endpoint = url.rstrip("/") + path if path else url
    try:
        verify = resolve_verify(insecure=insecure or policy.insecure, ca_cert_path=ca_cert)
        outcome = await_availability(
            endpoint,
            request_timeout if request_timeout is not None else policy.per_request_timeout,
            deadline if deadline is not None else policy.overall_deadline,
            verify=verify,
            retry_delay=retry_delay if retry_delay is not None else policy.retry_delay,
            retry_transport_errors=policy.retry_transport_errors,
            logger=logger,
        )
    except IbpProvisionError as exc:
        raise _fail(exc) from exc

    _console.print(build_outcome_panel(endpoint, outcome))
    if not outcome.succeeded:
        raise typer.Exit(code=1)


@components_app.command("list")
def list_components() -> None:
    """List every component known to the console."""

    settings = AppSettings()
    with _console_client(settings) as client:
        try:
            response = client.list_components()
        except IbpProvisionError as exc:
            raise _fail(exc) from exc
    _console.print(build_components_table(parse_components(response.body)))


@components_app.command("get")
def get_component(component_id: str = typer.Argument(..., help="Component id.")) -> None:
    settings = AppSettings()
    with _console_client(settings) as client:
        try:
            response = client.get_component(component_id)
        except IbpProvisionError as exc:
            raise _fail(exc) from exc
    _console.print_json(data=response.body)


@components_app.command("remove-by-tag")
def remove_by_tag(tag: str = typer.Argument(..., help="Tag such as 'msp' or 'fabric-ca'.")) -> None:
    """Remove imported components carrying TAG."""

    settings = AppSettings()
    with _console_client(settings) as client:
        try:
            response = client.remove_components_by_tag(tag)
        except IbpProvisionError as exc:
            raise _fail(exc) from exc
    _console.print(f"[green]Removed components tagged {tag!r}[/green] (HTTP {response.status_code})")


@components_app.command("purge")
def purge(yes: bool = typer.Option(False, "--yes", help="Confirm deleting every component.")) -> None:
    """Delete all components in the console's cluster."""

    if not yes:
        typer.confirm("Delete ALL components?", abort=True)
    settings = AppSettings()
    with _console_client(settings) as client:
        try:
            delete_all_components(client, logger=logger)
        except IbpProvisionError as exc:
            raise _fail(exc) from exc


@app.command()
def provision(
    cert_path: Optional[Path] = typer.Option(None, "--cert-path", help="Where to write the CA TLS cert."),
    keep: bool = typer.Option(False, "--keep", help="Leave the created components in place."),
    settle_seconds: float = typer.Option(15.0, "--settle-seconds", min=0, help="Pause after the initial purge."),
) -> None:
    """Create a peer org (CA, MSP, peer) and an ordering org (CA, MSP, orderer)."""

    settings = AppSettings()
    target = cert_path or settings.cert_path
    with _console_client(settings) as client:
        try:
            results = run_two_org_flow(
                client,
                cert_path=target,
                policy=PollPolicy.from_settings(settings),
                settle_seconds=settle_seconds,
                cleanup=not keep,
                logger=logger,
            )
        except IbpProvisionError as exc:
            raise _fail(exc) from exc
        finally:
            if not keep:
                delete_locally_created_files(target, settings.msp_directory, logger=logger)

    for artifacts in results:
        _console.print(
            f"[green]{artifacts.ca.id}[/green] -> MSP {artifacts.msp_component_id or '?'}, "
            f"node {artifacts.node_id or '?'}"
        )


def run() -> None:
    app()
