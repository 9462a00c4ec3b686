"""CLI for the cloud backup client (Typer + Rich)."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from cloud_backup.config import CloudBackupSettings, get_settings
from cloud_backup.config.logging import init_logging
from cloud_backup.config.store import ConfigStore
from cloud_backup.credentials import CredentialBroker
from cloud_backup.errors import CloudBackupError, CredentialExchangeError
from cloud_backup.models import user_prefix
from cloud_backup.preview import BackupPreview, summarize
from cloud_backup.rclone import write_remote
from cloud_backup.schedule import Daily, Monthly, Schedule, Weekly, next_run
from cloud_backup.storage.s3 import S3ObjectStore

app = typer.Typer(
    name="cloud-backup",
    help="Cloud backup client: credentials, schedules and sync previews.",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Manage the local app configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")
console = Console()

TOKEN_ENVVAR = "CLOUD_BACKUP_ID_TOKEN"

TokenOption = Annotated[
    str,
    typer.Option("--token", "-t", envvar=TOKEN_ENVVAR, help="Identity (ID) token from the user pool"),
]


class FrequencyChoice(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


def _load_settings() -> CloudBackupSettings:
    """Load settings, calling dotenv first for local runs."""
    load_dotenv()
    return get_settings()


def _open_store(settings: CloudBackupSettings) -> ConfigStore:
    store = ConfigStore.from_settings(settings)
    store.load()
    return store


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/] {escape(message)}")
    return typer.Exit(1)


def _format_size(size_bytes: int) -> str:
    """Human-readable file size."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    else:
        return f"{size_bytes / (1024 * 1024):.2f} MB"


def _format_remaining(expiration: datetime) -> str:
    minutes = int((expiration - datetime.now(UTC)).total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h {minutes % 60}m"


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    try:
        settings = _load_settings()
    except CloudBackupError as e:
        raise _fail(str(e))
    init_logging("DEBUG" if verbose else settings.logging.level)


# ── config ──────────────────────────────────────────────────────────────


@config_app.command("init")
def config_init(
    user_pool_id: Annotated[str, typer.Option(help="Cognito user pool id, e.g. us-east-1_AbC123")],
    identity_pool_id: Annotated[str, typer.Option(help="Cognito identity pool id")],
    region: Annotated[Optional[str], typer.Option(help="AWS region (derived from the user pool id if omitted)")] = None,
    app_client_id: Annotated[str, typer.Option(help="Cognito app client id")] = "",
    bucket: Annotated[str, typer.Option(help="Backup bucket name")] = "",
) -> None:
    """Write the identity configuration (first-run setup)."""
    settings = _load_settings()
    store = ConfigStore.from_settings(settings)
    try:
        config = store.init(
            {
                "cognito_user_pool_id": user_pool_id,
                "cognito_identity_pool_id": identity_pool_id,
                "cognito_region": region,
                "cognito_app_client_id": app_client_id,
                "bucket_name": bucket,
            }
        )
    except CloudBackupError as e:
        raise _fail(str(e))

    console.print(f"[green]Saved[/] configuration to {store.path} (region {config.cognito_region})")


@config_app.command("show")
def config_show() -> None:
    """Show the identity configuration."""
    settings = _load_settings()
    try:
        config = _open_store(settings).app_config()
    except CloudBackupError as e:
        raise _fail(str(e))

    table = Table(title="App Configuration", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in config.model_dump().items():
        table.add_row(key, value or "[dim]-[/]")
    table.add_row("login_provider", config.login_provider)
    console.print(table)


@config_app.command("clear")
def config_clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Delete the local configuration."""
    settings = _load_settings()
    store = ConfigStore.from_settings(settings)
    if not yes and not Confirm.ask(f"[yellow]Delete {store.path}?[/]"):
        console.print("Aborted.")
        raise typer.Exit(0)
    store.clear()
    console.print(f"[green]Cleared[/] {store.path}")


# ── credentials ─────────────────────────────────────────────────────────


@app.command()
def credentials(
    token: TokenOption,
    rclone: Annotated[bool, typer.Option("--rclone", help="Write the credentials into the rclone config")] = False,
    rclone_config: Annotated[Optional[Path], typer.Option(help="rclone config path (implies --rclone)")] = None,
) -> None:
    """Exchange an identity token for temporary storage credentials."""
    settings = _load_settings()
    try:
        store = _open_store(settings)
        broker = CredentialBroker.from_settings(store, settings)
        creds = asyncio.run(broker.get_credentials(token))
        region = store.app_config().cognito_region
    except CredentialExchangeError as e:
        hint = " (token rejected, sign in again)" if not e.retryable else ""
        raise _fail(f"{e}{hint}")
    except CloudBackupError as e:
        raise _fail(str(e))

    lines = [
        f"Access key:  [bold]{creds.access_key_id}[/]",
        f"Identity:    {creds.identity_id or '-'}",
        f"Expires:     {creds.expiration.strftime('%Y-%m-%d %H:%M UTC')} (in {_format_remaining(creds.expiration)})",
    ]

    if rclone or rclone_config:
        remote_name = settings.storage.remote_name
        try:
            path = write_remote(rclone_config or settings.rclone_config_path, creds, region, remote_name=remote_name)
        except OSError as e:
            raise _fail(f"Cannot write rclone config: {e}")
        lines.append(f"rclone:      remote {escape(f'[{remote_name}]')} written to {path}")

    console.print(Panel("\n".join(lines), title="[green]Credentials Issued[/]"))


# ── ls ──────────────────────────────────────────────────────────────────


@app.command("ls")
def list_files(
    token: TokenOption,
    prefix: Annotated[str, typer.Argument(help="Path inside the bucket")] = "",
    bucket: Annotated[Optional[str], typer.Option(help="Bucket (defaults to the configured bucket)")] = None,
    user_id: Annotated[Optional[str], typer.Option(help="List under this user's own prefix")] = None,
    admin: Annotated[bool, typer.Option("--admin", help="User is an admin (admins/ prefix)")] = False,
) -> None:
    """List files in the backup bucket."""
    settings = _load_settings()
    try:
        store = _open_store(settings)
        config = store.app_config()
    except CloudBackupError as e:
        raise _fail(str(e))

    bucket = bucket or config.bucket_name
    if not bucket:
        raise _fail("No bucket given and none configured")
    if user_id:
        prefix = f"{user_prefix(user_id, admin)}/{prefix.strip('/')}".rstrip("/")

    broker = CredentialBroker.from_settings(store, settings)
    object_store = S3ObjectStore(broker, lambda: token, bucket, config.cognito_region)
    try:
        files = asyncio.run(object_store.list_files(prefix))
    except CloudBackupError as e:
        raise _fail(str(e))

    if not files:
        console.print("[yellow]No files found.[/]")
        return

    table = Table(title=f"s3://{bucket}/{prefix}")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified", style="dim")
    for f in files:
        table.add_row(
            f"{f.name}/" if f.is_dir else f.name,
            "" if f.is_dir else _format_size(f.size),
            f.mod_time.strftime("%Y-%m-%d %H:%M UTC") if f.mod_time else "",
        )
    console.print(table)


# ── next-run ────────────────────────────────────────────────────────────


@app.command("next-run")
def show_next_run(
    frequency: Annotated[FrequencyChoice, typer.Option(help="How often the backup runs")] = FrequencyChoice.daily,
    at: Annotated[str, typer.Option("--time", help="Time of day, HH:MM (24h)")] = "02:00",
    day: Annotated[Optional[int], typer.Option(help="Weekday 0-6 (Sunday=0) or day of month 1-31")] = None,
    from_: Annotated[Optional[str], typer.Option("--from", help="ISO timestamp to compute from (default: now)")] = None,
    count: Annotated[int, typer.Option(min=1, max=50, help="Number of upcoming runs")] = 1,
) -> None:
    """Show the next run time(s) of a schedule."""
    try:
        match frequency:
            case FrequencyChoice.daily:
                freq = Daily()
            case FrequencyChoice.weekly:
                freq = Weekly(day if day is not None else 0)
            case FrequencyChoice.monthly:
                freq = Monthly(day if day is not None else 1)
        schedule = Schedule(enabled=True, frequency=freq, time=at)
        cursor = datetime.fromisoformat(from_) if from_ else datetime.now()
    except ValueError as e:
        raise _fail(str(e))

    for _ in range(count):
        cursor = next_run(schedule, cursor)
        console.print(cursor.strftime("%Y-%m-%d %H:%M (%A)"))


# ── preview ─────────────────────────────────────────────────────────────


@app.command()
def preview(
    file: Annotated[Path, typer.Argument(help="Preview JSON produced by the sync engine")],
    details: Annotated[bool, typer.Option("--details", "-d", help="List every planned action")] = False,
) -> None:
    """Summarize a sync preview before confirming a destructive run."""
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
        plan = BackupPreview.from_dict(data)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise _fail(f"Cannot read preview {file}: {e}")
    except CloudBackupError as e:
        raise _fail(str(e))

    summary = summarize(plan)

    if details and not plan.is_empty:
        table = Table(title="Planned Actions")
        table.add_column("Action")
        table.add_column("Path")
        table.add_column("Size", justify="right")
        styles = {"Copy": "green", "Update": "yellow", "Delete": "red"}
        for change in plan.actions():
            style = styles[change.action.value]
            table.add_row(f"[{style}]{change.action.value}[/]", change.path, _format_size(change.size))
        console.print(table)

    lines = [
        f"[green]Copy[/]    {summary.to_copy}",
        f"[yellow]Update[/]  {summary.to_update}",
        f"[red]Delete[/]  {summary.to_delete}",
        f"Total   {plan.total_files} file(s), {_format_size(plan.total_size)}",
    ]
    title = "[red]Sync Preview (destructive)[/]" if summary.is_destructive else "[green]Sync Preview[/]"
    console.print(Panel("\n".join(lines), title=title))
