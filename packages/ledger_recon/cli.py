# ruff: noqa: I001
"""CLI for the ``ledger_recon`` package.

A Typer console interface over :mod:`ledger_recon.api`. ``DATABASE_URL`` and
the ``LEDGER_RECON_*`` settings are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Commands print the JSON body of
the corresponding API call, or a rich table with ``--table``, and exit
non-zero when the call fails.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .logging_setup import configure_logging


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Reconcile ledger transactions and project account balances. "
        "Loads DATABASE_URL from a local .env before running."
    ),
)

_console = Console()


# Module-level option objects keep calls out of parameter defaults (ruff B008).
USER_ID_OPTION: OptionInfo = typer.Option(..., "--user-id", help="Owner of the ledger.")
TABLE_OPTION: OptionInfo = typer.Option("--table", help="Render a table instead of JSON.")
ACCOUNT_TYPE_OPTION: OptionInfo = typer.Option("--account-type", help="BankAccount or CreditCard.")


def _store(ctx: typer.Context):
    """Build a SQL-backed store and settings from the root options."""

    from db.client import create_db_engine, make_session_factory

    from .persistence import SqlTransactionStore
    from .settings import ReconcileSettings

    settings = ReconcileSettings.from_env()
    engine = create_db_engine(database_url=(ctx.obj or {}).get("database_url"))
    store = SqlTransactionStore(
        make_session_factory(engine), statement_timeout_ms=settings.statement_timeout_ms
    )
    return store, settings


def _finish(status: int, body: dict[str, Any]) -> None:
    if status >= 400:
        print(f"Error: {body.get('error', 'request failed')}", file=sys.stderr)
        raise typer.Exit(1)


def _emit(status: int, body: dict[str, Any]) -> None:
    _finish(status, body)
    typer.echo(json.dumps(body, indent=2, default=str))


def _read_json(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: File not found: {path}", file=sys.stderr)
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        print(f"Error: Failed to parse JSON in {path}: {e}", file=sys.stderr)
        raise typer.Exit(1) from None


def _render_rows(title: str, columns: list[str], rows: list[list[Any]]) -> None:
    table = Table(title=title)
    for col in columns:
        table.add_column(col, justify="left" if col in {"Month", "Account", "Metric"} else "right")
    for row in rows:
        table.add_row(*("-" if v is None else str(v) for v in row))
    _console.print(table)


def _render_unavailable(body: dict[str, Any]) -> None:
    for item in body.get("unavailable", []):
        _console.print(
            f"[yellow]unavailable[/yellow] {item['accountType']}/{item['bankName']}: "
            f"{item['status']} {item.get('error', '')}"
        )
    for w in body.get("warnings", []):
        _console.print(f"[yellow]warning[/yellow] {w}")


# ---- Ingestion ---------------------------------------------------------------


@app.command("ingest-statement")
def ingest_statement_cmd(
    ctx: typer.Context,
    statement_path: Annotated[
        Path, typer.Option(..., "--file", help="Uploaded statement file (csv/pdf/xls/xlsx).")
    ],
    extracted_path: Annotated[
        Path,
        typer.Option(
            ...,
            "--extracted",
            help='Extraction output JSON: {"transactions": [...], "checkpoints": [...]}.',
        ),
    ],
    user_id: Annotated[str, USER_ID_OPTION],
) -> None:
    """Ingest a statement file with its extracted transactions and checkpoints."""

    from .api import process_statement

    try:
        content = statement_path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {statement_path}", file=sys.stderr)
        raise typer.Exit(1) from None
    extracted = _read_json(extracted_path)
    store, settings = _store(ctx)
    _emit(
        *process_statement(
            store,
            user_id=user_id,
            file_name=statement_path.name,
            content=content,
            extracted=extracted,
            settings=settings,
        )
    )


@app.command("ingest-email")
def ingest_email_cmd(
    ctx: typer.Context,
    rows_path: Annotated[
        Path, typer.Option(..., "--rows", help="JSON array of parsed email transactions.")
    ],
    user_id: Annotated[str, USER_ID_OPTION],
) -> None:
    """Ingest transactions parsed from Gmail transaction alerts."""

    from .api import save_email_transactions

    rows = _read_json(rows_path)
    if not isinstance(rows, list):
        print("Error: expected a JSON array of transactions", file=sys.stderr)
        raise typer.Exit(1)
    store, settings = _store(ctx)
    _emit(*save_email_transactions(store, user_id=user_id, transactions=rows, settings=settings))


# ---- Reads -------------------------------------------------------------------


@app.command("project-balances")
def project_balances_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_ID_OPTION],
    account_type: str | None = typer.Option(None, help="Limit to BankAccount or CreditCard."),
    bank_name: str | None = typer.Option(None, help="Limit to one bank or card."),
    table: Annotated[bool, TABLE_OPTION] = False,
) -> None:
    """Project current balances from the latest checkpoint of each account."""

    from .api import get_balances

    store, settings = _store(ctx)
    status, body = get_balances(
        store,
        user_id=user_id,
        settings=settings,
        account_type=account_type,
        bank_name=bank_name,
    )
    if not table:
        _emit(status, body)
        return
    _finish(status, body)
    _render_rows(
        f"Balances ({body['summary']})",
        ["Account", "Status", "Checkpoint", "Replayed", "Balance"],
        [
            [
                f"{b['accountType']}/{b['bankName']}",
                b["status"],
                b.get("checkpointBalance"),
                b.get("replayedExpenses"),
                b["balance"],
            ]
            for b in body["balances"]
        ],
    )


@app.command("monthly-summary")
def monthly_summary_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_ID_OPTION],
    account_type: Annotated[str, ACCOUNT_TYPE_OPTION] = "BankAccount",
    bank: str = typer.Option("Total", help="Bank name, or Total for all banks."),
    table: Annotated[bool, TABLE_OPTION] = False,
) -> None:
    """Balance per statement month, most recent first."""

    from .api import get_monthly_summary

    store, settings = _store(ctx)
    status, body = get_monthly_summary(
        store, user_id=user_id, settings=settings, account_type=account_type, bank=bank
    )
    if not table:
        _emit(status, body)
        return
    _finish(status, body)
    _render_rows(
        f"Monthly summary ({bank})",
        ["Month", "Balance", "Projected"],
        [
            [m["month"], m["accountBalance"], "yes" if m["projected"] else ""]
            for m in body["months"]
        ],
    )
    _render_unavailable(body)


@app.command("balance-progression")
def balance_progression_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_ID_OPTION],
    account_type: Annotated[str, ACCOUNT_TYPE_OPTION] = "BankAccount",
    table: Annotated[bool, TABLE_OPTION] = False,
) -> None:
    """Per-bank balances per month, oldest first."""

    from .api import get_balance_progression

    store, settings = _store(ctx)
    status, body = get_balance_progression(
        store, user_id=user_id, settings=settings, account_type=account_type
    )
    if not table:
        _emit(status, body)
        return
    _finish(status, body)
    columns = ["Month", *body["banks"], "Total"]
    _render_rows(
        "Balance progression",
        columns,
        [[row.get(c if c != "Month" else "month") for c in columns] for row in body["rows"]],
    )
    _render_unavailable(body)


@app.command("key-metrics")
def key_metrics_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_ID_OPTION],
    table: Annotated[bool, TABLE_OPTION] = False,
) -> None:
    """Current bank balance, month expenses, card dues and reward points."""

    from .api import get_key_metrics

    store, settings = _store(ctx)
    status, body = get_key_metrics(store, user_id=user_id, settings=settings)
    if not table:
        _emit(status, body)
        return
    _finish(status, body)
    labels = {
        "currentBankBalance": "Bank balance",
        "currentMonthExpenses": "Expenses since statement",
        "creditCardDues": "Credit card dues",
        "rewardPoints": "Reward points",
    }
    _render_rows(
        "Key metrics",
        ["Metric", "Value", "Month"],
        [[label, body[key]["value"], body[key]["month"]] for key, label in labels.items()],
    )
    _render_unavailable(body)


# ---- Maintenance -------------------------------------------------------------


@app.command("clear-duplicates")
def clear_duplicates_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_ID_OPTION],
    dry_run: bool = typer.Option(False, help="List duplicate ids without deleting."),
) -> None:
    """Delete same-source duplicate transactions, keeping the earliest row."""

    from .api import clear_duplicates

    store, _ = _store(ctx)
    _emit(*clear_duplicates(store, user_id=user_id, dry_run=dry_run))


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    log_level: str | None = typer.Option(
        None, help="Override LEDGER_RECON_LOG_LEVEL (e.g. DEBUG, INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(level=log_level)
    ctx.obj = {"database_url": database_url}

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
