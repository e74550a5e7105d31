import json

import click

from medstock import gs1

from .applier import ReconciliationSummary
from .sessions import get_session, load_discrepancies


def register_cli(app):
    @app.cli.command("decode-barcode")
    @click.argument("raw")
    @click.option("--strict", is_flag=True, help="Fail on malformed GS1 fields.")
    def decode_barcode(raw: str, strict: bool) -> None:
        """Decode a GS1 barcode and print its identity fields."""
        try:
            decoded = gs1.decode(raw, strict=strict)
        except gs1.MalformedBarcodeError as exc:
            raise click.ClickException(str(exc)) from exc
        if not gs1.is_gs1_barcode(raw):
            click.echo("Not a GS1 barcode.")
            return
        click.echo(json.dumps(decoded.to_dict(), indent=2, sort_keys=True))
        click.echo(gs1.format_gs1_display(decoded))

    @app.cli.command("stock-count-summary")
    @click.argument("session_id", type=int)
    def stock_count_summary(session_id: int) -> None:
        """Print the discrepancy counts or the applied summary of a stock count."""
        session = get_session(session_id)
        if session is None:
            raise click.ClickException(f"Stock count {session_id} not found.")

        click.echo(
            f"Stock count {session.id} ({session.count_type}): {session.status}"
        )
        if session.plan_fingerprint:
            summary = ReconciliationSummary.from_session(session)
            click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
            return

        discrepancies = load_discrepancies(session)
        click.echo(f"Matched: {len(discrepancies.matched)}")
        click.echo(f"Found: {len(discrepancies.found)}")
        click.echo(f"Missing: {len(discrepancies.missing)}")
