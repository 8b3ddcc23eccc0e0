"""CLI entrypoint for the field archive."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="fieldarc", help="Field archive command-line interface")
watcher_app = typer.Typer(name="watcher", help="Control the remote drive watcher")
docs_app = typer.Typer(name="docs", help="Upload and re-extract documents")
app.add_typer(watcher_app, name="watcher")
app.add_typer(docs_app, name="docs")

DEFAULT_HOST = "http://127.0.0.1:8000"
# a manual sync waits out the inter-file delay for every new file
SYNC_TIMEOUT = 3600


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("FIELDARC_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, timeout: float = 120, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=timeout, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(resp: requests.Response) -> None:
    typer.echo(json.dumps(resp.json(), indent=2))


@watcher_app.command("status")
def watcher_status(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show watcher state, last sync and files processed."""
    _echo(_request("GET", "/watcher/status", host=host))


@watcher_app.command("start")
def watcher_start(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Start polling the remote drive."""
    _echo(_request("POST", "/watcher/start", host=host, timeout=SYNC_TIMEOUT))


@watcher_app.command("stop")
def watcher_stop(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Stop polling after the poll in flight, if any."""
    _echo(_request("POST", "/watcher/stop", host=host))


@watcher_app.command("sync")
def watcher_sync(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Discard the delta cursor and run a full resync now."""
    _echo(_request("POST", "/watcher/sync", host=host, timeout=SYNC_TIMEOUT))


@watcher_app.command("test")
def watcher_test(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Check the connection to the remote drive."""
    _echo(_request("POST", "/watcher/test", host=host))


@docs_app.command("upload")
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Upload a file and print the stored document."""
    with path.expanduser().open("rb") as handle:
        resp = _request("POST", "/documents/upload", host=host, files={"file": (path.name, handle)})
    _echo(resp)


@docs_app.command("show")
def show(
    document_id: str = typer.Argument(..., help="Document identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Print one stored document."""
    _echo(_request("GET", f"/documents/{document_id}", host=host))


@docs_app.command("expenses")
def expenses(
    document_id: str = typer.Argument(..., help="Document identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List pending expenses created from a receipt."""
    _echo(_request("GET", f"/documents/{document_id}/expenses", host=host))


@app.command("stats")
def stats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show archive totals."""
    _echo(_request("GET", "/stats", host=host))


@docs_app.command("reprocess")
def reprocess(
    document_id: str = typer.Argument(..., help="Document identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Re-run text extraction for a stored document."""
    _echo(_request("POST", f"/documents/{document_id}/reprocess", host=host))


if __name__ == "__main__":
    app()
