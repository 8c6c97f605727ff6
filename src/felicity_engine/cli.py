"""Typer CLI for Felicity-Engine."""

import typer
from rich.console import Console

app = typer.Typer(name="felicity", help="Felicity-Engine: event registration admission and fulfillment")
console = Console()


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host (defaults to FELICITY_HOST)"),
    port: int = typer.Option(None, help="Bind port (defaults to FELICITY_PORT)"),
):
    """Run the API under uvicorn."""
    import uvicorn
    from felicity_engine.app import create_app
    from felicity_engine.common.config import get_settings

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting Felicity-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command("ticket-id")
def ticket_id(
    prefix: str = typer.Option(None, help="Ticket prefix (defaults to FELICITY_TICKET_PREFIX)"),
):
    """Generate a ticket id (offline, no DB required)."""
    from felicity_engine.common.config import get_settings
    from felicity_engine.tickets.generator import generate_ticket_id

    console.print(f"[bold]{generate_ticket_id(prefix or get_settings().ticket_prefix)}[/bold]")


@app.command("decode-qr")
def decode_qr(
    payload: str = typer.Argument(..., help="QR payload read from a ticket"),
):
    """Verify a ticket QR payload offline (HMAC check only)."""
    from felicity_engine.common.config import get_settings
    from felicity_engine.tickets.generator import InvalidPayload, decode_qr_payload

    try:
        claims = decode_qr_payload(payload, get_settings().hmac_keyring)
    except InvalidPayload as e:
        console.print(f"[bold red]INVALID[/bold red] — {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]VALID[/bold green] — ticket {claims['tid']}")
    console.print(f"  Registration: {claims.get('rid')}")
    console.print(f"  Event: {claims.get('eid')}")
    console.print(f"  Participant: {claims.get('pid')}")
    console.print(f"  Issued: {claims.get('iat')}")


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Felicity-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except (httpx.HTTPError, ValueError, KeyError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
