"""clubops command line interface."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import billing, emailer, storage, users
from .config import Settings, get_settings
from .db import connect, fetch_columns, get_admin_client
from .errors import ClubOpsError, ManualRemediationRequired, NotFound
from .functions import invoke_function
from .migrations import MigrationResult, apply_all, build_executors, migration_status, render_manual_sql
from .registry import MIGRATIONS, get_migration
from .secrets_scan import redact_file, scan_tree

console = Console()
logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    "applied": "bold green",
    "already_applied": "green",
    "pending": "yellow",
    "drift": "bold red",
}


def _json_object(value: str) -> dict:
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError("must be a JSON object")
    return data


def _require_email(email: str) -> None:
    if not users.is_valid_email(email):
        raise ValueError(f"Invalid email address: {email!r}")


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def display_result(result: MigrationResult) -> None:
    style = _STATUS_STYLES.get(result.status, "white")
    line = f"[{style}]{result.status:<16}[/{style}] {result.migration_id}  [dim]({result.executor})[/dim]"
    if result.detail:
        line += f"  {escape(result.detail)}"
    console.print(line)
    if result.status == "pending":
        for stmt in result.statements:
            console.print(f"    [dim]{escape(stmt)};[/dim]", highlight=False)


def display_manual(error: ManualRemediationRequired) -> None:
    console.print(f"[red]Error ({error.category}):[/red] {escape(str(error))}")
    for attempt in error.attempts:
        console.print(f"  [dim]- {escape(attempt)}[/dim]")
    console.print()
    console.print(
        Panel(
            Text(error.sql),
            title="Run this SQL in the Supabase SQL Editor",
            border_style="yellow",
        )
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_config(args: argparse.Namespace, settings: Settings) -> int:
    table = Table(title="Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.describe().items():
        style = "red" if value == "missing" else "white"
        table.add_row(key, f"[{style}]{value}[/{style}]")
    console.print(table)
    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    with connect(settings) as conn:
        rows = migration_status(conn, MIGRATIONS)

    table = Table(title=f"Migrations on {settings.database_host}", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Description", max_width=50)
    table.add_column("State", justify="center")
    table.add_column("Applied at", style="dim")
    table.add_column("Via", style="dim")
    for row in rows:
        style = _STATUS_STYLES.get(row["state"], "white")
        applied_at = row["applied_at"].strftime("%Y-%m-%d %H:%M") if row["applied_at"] else ""
        table.add_row(
            row["id"],
            row["description"],
            f"[{style}]{row['state']}[/{style}]",
            applied_at,
            row["applied_via"] or "",
        )
    console.print(table)
    return 0


def cmd_migrate(args: argparse.Namespace, settings: Settings) -> int:
    executors = build_executors(settings)
    if executors:
        logger.info("Execution paths: %s", ", ".join(e.name for e in executors))

    counts = {"applied": 0, "already_applied": 0, "pending": 0}
    for result in apply_all(executors, MIGRATIONS, only=args.ids, dry_run=args.dry_run):
        display_result(result)
        counts[result.status] += 1

    console.print()
    summary = f"{counts['applied']} applied, {counts['already_applied']} already applied"
    if args.dry_run:
        summary += f", {counts['pending']} pending (dry run)"
    console.print(f"[bold]{summary}[/bold]")
    return 0


def cmd_sql(args: argparse.Namespace, settings: Settings) -> int:
    migration = get_migration(args.id)
    if migration is None:
        raise NotFound(f"Unknown migration id: {args.id}")
    console.print(render_manual_sql(migration), markup=False, highlight=False, soft_wrap=True)
    return 0


def cmd_columns(args: argparse.Namespace, settings: Settings) -> int:
    with connect(settings) as conn:
        columns = fetch_columns(conn, args.table)
    if not columns:
        raise NotFound(f"Table public.{args.table} does not exist or has no columns")

    table = Table(title=f"public.{args.table}", show_header=True, header_style="bold magenta")
    table.add_column("Column", style="cyan")
    table.add_column("Type", style="green")
    for name, data_type in columns.items():
        table.add_row(name, data_type)
    console.print(table)
    return 0


def cmd_users(args: argparse.Namespace, settings: Settings) -> int:
    _require_email(args.email)
    client = get_admin_client(settings)

    if args.users_command == "show":
        status = users.user_status(client, args.email)
        table = Table(title=args.email, show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in status.items():
            table.add_row(key, "" if value is None else str(value))
        console.print(table)
    elif args.users_command == "reset-password":
        password = users.reset_password(client, args.email, args.password)
        console.print(f"[green]Password reset for {args.email}[/green]")
        if not args.password:
            console.print(f"Temporary password: [bold]{password}[/bold]  [dim](ask the user to change it)[/dim]")
    elif args.users_command == "set-role":
        changed = users.set_role(client, args.email, args.role)
        if changed:
            console.print(f"[green]{args.email} is now {args.role}[/green]")
        else:
            console.print(f"[dim]{args.email} already has role {args.role}[/dim]")
    elif args.users_command == "create":
        status, password = users.ensure_user(
            client, args.email, args.first, args.last, role=args.role, password=args.password
        )
        if status == "created":
            console.print(f"[green]Created {args.email} ({args.role})[/green]")
            if not args.password:
                console.print(f"Temporary password: [bold]{password}[/bold]")
        else:
            console.print(f"[dim]{args.email} already exists; profile updated[/dim]")
    elif args.users_command == "delete":
        if not args.yes:
            console.print(f"[yellow]Refusing to delete {args.email} without --yes[/yellow]")
            return 1
        users.delete_user(client, args.email)
        console.print(f"[green]Deleted {args.email}[/green]")
    return 0


def cmd_storage(args: argparse.Namespace, settings: Settings) -> int:
    client = get_admin_client(settings)
    outcome = storage.ensure_bucket(
        client,
        args.name,
        public=args.public,
        allowed_mime_types=args.mime,
        file_size_limit=args.max_bytes,
    )
    style = "dim" if outcome == "unchanged" else "green"
    console.print(f"[{style}]Bucket {args.name}: {outcome}[/{style}]")
    return 0


def cmd_stripe(args: argparse.Namespace, settings: Settings) -> int:
    billing.configure(settings)

    if args.stripe_command == "webhook":
        result = billing.ensure_webhook_endpoint(args.url, args.event or billing.WEBHOOK_EVENTS)
        console.print(f"Webhook {result['id']}: [green]{result['status']}[/green]")
        if result["secret"]:
            console.print(f"Signing secret: [bold]{result['secret']}[/bold]  [dim](store as STRIPE_WEBHOOK_SECRET)[/dim]")
    elif args.stripe_command == "sync-customer":
        _require_email(args.email)
        with connect(settings) as conn:
            outcome = billing.sync_customer(conn, args.email)
        if outcome == "no_user":
            console.print(f"[yellow]No user row for {args.email}; nothing linked[/yellow]")
            return 1
        console.print(f"{args.email}: [green]{outcome}[/green]")
    elif args.stripe_command == "promo":
        result = billing.ensure_promotion_code(args.code, args.percent_off)
        console.print(f"Promotion code {args.code}: [green]{result['status']}[/green] ({result['id']})")
    return 0


def cmd_functions(args: argparse.Namespace, settings: Settings) -> int:
    result = invoke_function(settings, args.name, args.data)
    if isinstance(result, (dict, list)):
        console.print_json(data=result)
    else:
        console.print(result, markup=False)
    return 0


def cmd_email(args: argparse.Namespace, settings: Settings) -> int:
    _require_email(args.to)
    if args.email_command == "test":
        response = emailer.send_test_email(settings, args.to)
    else:
        response = emailer.send_reminder_email(
            settings,
            args.to,
            first_name="Test",
            case_study={"legal_area": "Zivilrecht", "sub_area": "BGB AT", "focus_area": "Willenserklärung"},
            feedback={
                "mistakes_learned": "Beispiel: Anspruchsgrundlage zu spät geprüft.",
                "improvements_planned": "Beispiel: Gutachtenstil konsequent einhalten.",
            },
        )
    console.print(f"[green]Sent to {args.to}[/green] [dim]({response.get('id', '?')})[/dim]")
    return 0


def cmd_scan_secrets(args: argparse.Namespace, settings: Settings) -> int:
    findings = scan_tree(args.path)
    if not findings:
        console.print("[green]No hard-coded secrets found.[/green]")
        return 0

    table = Table(title=f"Hard-coded secrets in {args.path}", show_header=True, header_style="bold magenta")
    table.add_column("File", style="cyan", overflow="fold")
    table.add_column("Line", justify="right")
    table.add_column("Kind", style="yellow")
    table.add_column("Severity")
    table.add_column("Value", style="dim")
    for f in findings:
        severity = "[bold red]high[/bold red]" if f.severity == "high" else "low"
        table.add_row(f.path, str(f.line), f.kind, severity, f.preview)
    console.print(table)

    if args.fix:
        redacted = sum(redact_file(path) for path in sorted({f.path for f in findings}))
        console.print(f"[green]Redacted {redacted} secret(s).[/green] Rotate the exposed keys.")
        return 0

    return 1 if any(f.severity == "high" for f in findings) else 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clubops",
        description="Administration toolkit for the club Supabase backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  clubops status
  clubops migrate --dry-run
  clubops migrate 0009_student_feedback
  clubops users reset-password student@example.com
  clubops stripe webhook https://example.com/api/stripe/webhook
  clubops scan-secrets ./scripts --fix
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("config", help="Show what is configured (secrets redacted)")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("status", help="Ledger state of every migration")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("migrate", help="Apply pending migrations")
    p.add_argument("ids", nargs="*", help="Only these migration ids (default: all)")
    p.add_argument("--dry-run", action="store_true", help="Report what would run, change nothing")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("sql", help="Print the manual SQL for one migration")
    p.add_argument("id")
    p.set_defaults(func=cmd_sql)

    p = sub.add_parser("columns", help="List the columns of a public table")
    p.add_argument("table")
    p.set_defaults(func=cmd_columns)

    p = sub.add_parser("users", help="Auth user and profile administration")
    users_sub = p.add_subparsers(dest="users_command", required=True)
    u = users_sub.add_parser("show")
    u.add_argument("email")
    u = users_sub.add_parser("reset-password")
    u.add_argument("email")
    u.add_argument("--password", help="Use this password instead of a generated one")
    u = users_sub.add_parser("set-role")
    u.add_argument("email")
    u.add_argument("role", choices=users.ROLES)
    u = users_sub.add_parser("create")
    u.add_argument("email")
    u.add_argument("--first", required=True, help="First name")
    u.add_argument("--last", required=True, help="Last name")
    u.add_argument("--role", choices=users.ROLES, default="student")
    u.add_argument("--password", help="Use this password instead of a generated one")
    u = users_sub.add_parser("delete")
    u.add_argument("email")
    u.add_argument("--yes", action="store_true", help="Confirm deletion")
    p.set_defaults(func=cmd_users)

    p = sub.add_parser("storage", help="Storage bucket setup")
    storage_sub = p.add_subparsers(dest="storage_command", required=True)
    s = storage_sub.add_parser("ensure-bucket")
    s.add_argument("name")
    s.add_argument("--public", action="store_true")
    s.add_argument("--mime", action="append", help="Allowed MIME type (repeatable)")
    s.add_argument("--max-bytes", type=int, help="File size limit in bytes")
    p.set_defaults(func=cmd_storage)

    p = sub.add_parser("stripe", help="Stripe setup helpers")
    stripe_sub = p.add_subparsers(dest="stripe_command", required=True)
    s = stripe_sub.add_parser("webhook")
    s.add_argument("url")
    s.add_argument("--event", action="append", help="Enabled event (repeatable, default: payment events)")
    s = stripe_sub.add_parser("sync-customer")
    s.add_argument("email")
    s = stripe_sub.add_parser("promo")
    s.add_argument("code")
    s.add_argument("--percent-off", type=float, default=100)
    p.set_defaults(func=cmd_stripe)

    p = sub.add_parser("functions", help="Edge Functions")
    functions_sub = p.add_subparsers(dest="functions_command", required=True)
    f = functions_sub.add_parser("invoke")
    f.add_argument("name")
    f.add_argument("--data", type=_json_object, default={}, help="JSON object payload")
    p.set_defaults(func=cmd_functions)

    p = sub.add_parser("email", help="Email smoke tests")
    email_sub = p.add_subparsers(dest="email_command", required=True)
    e = email_sub.add_parser("test")
    e.add_argument("to")
    e = email_sub.add_parser("test-reminder")
    e.add_argument("to")
    p.set_defaults(func=cmd_email)

    p = sub.add_parser("scan-secrets", help="Find hard-coded credentials")
    p.add_argument("path", type=Path)
    p.add_argument("--fix", action="store_true", help="Replace found secrets with placeholders")
    p.set_defaults(func=cmd_scan_secrets)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the clubops CLI."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
    )

    try:
        settings = get_settings()
        if not args.verbose:
            logging.getLogger().setLevel(settings.log_level)
        return args.func(args, settings)
    except ManualRemediationRequired as e:
        display_manual(e)
        return 1
    except ClubOpsError as e:
        console.print(f"[red]Error ({e.category}):[/red] {escape(str(e))}")
        return 1
    except ValueError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user.[/yellow]")
        return 130


def cli():
    """CLI entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
