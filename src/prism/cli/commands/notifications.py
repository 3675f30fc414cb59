"""Notification history commands."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Annotated

import typer

from prism.cli.console import console, create_table, dim, error, success

if TYPE_CHECKING:
    from prism.notifications import NotificationService

app = typer.Typer(
    name="notifications",
    help="Inspect and send notifications.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="notifications")


def _run(coro) -> None:
    """Run an async notification operation, reporting Prism errors."""
    from prism.config import ConfigError
    from prism.errors import PrismError

    try:
        asyncio.run(coro)
    except (ConfigError, PrismError) as e:
        error(str(e))
        raise typer.Exit(1) from None


async def _with_service(operation) -> None:
    """Open the store, run `operation(service)`, then close the store.

    The broker is not contacted: every command here works on the database
    alone.
    """
    from prism.config import load_config
    from prism.db import Database
    from prism.notifications import NotificationService
    from prism.scheduling import Scheduler

    config = load_config()
    if config.database.url:
        db = Database(database_url=config.database.url)
    else:
        db = Database(database_path=config.database.path)
    await db.connect()
    try:
        await db.create_tables()
        service = NotificationService(
            db,
            Scheduler(config.broker),
            default_channel=config.notifications.default_channel,
        )
        await operation(service)
    finally:
        await db.disconnect()


@app.command("list")
def list_cmd(
    user_id: Annotated[str, typer.Argument(help="User to list notifications for")],
    page: Annotated[int, typer.Option("--page", "-p", help="Page number")] = 1,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Page size")] = 20,
) -> None:
    """List a user's notifications, newest first."""

    async def operation(service: NotificationService) -> None:
        result = await service.list_for_user(user_id, page=page, limit=limit)
        if not result.items:
            dim("No notifications")
            return

        table = create_table(
            f"Notifications for {user_id}",
            [
                ("ID", {"style": "dim", "max_width": 12}),
                ("Created", "cyan"),
                ("Channel", "magenta"),
                ("Title", "green"),
                ("Read", ""),
            ],
        )
        for item in result.items:
            table.add_row(
                item.id[:12],
                item.created_at.strftime("%Y-%m-%d %H:%M"),
                item.channel,
                item.title,
                "yes" if item.read else "",
            )
        console.print(table)
        dim(f"Page {result.page} of {result.pages} ({result.total} total)")

    _run(_with_service(operation))


@app.command("read")
def read_cmd(
    notification_id: Annotated[str, typer.Argument(help="Notification ID")],
) -> None:
    """Mark a notification as read."""

    async def operation(service: NotificationService) -> None:
        await service.mark_read(notification_id)
        success(f"Marked {notification_id} as read")

    _run(_with_service(operation))


@app.command("send")
def send_cmd(
    user_id: Annotated[str, typer.Argument(help="Recipient user ID")],
    title: Annotated[str, typer.Argument(help="Notification title")],
    body: Annotated[str, typer.Argument(help="Notification body")],
    channel: Annotated[
        str | None, typer.Option("--channel", help="Delivery channel")
    ] = None,
) -> None:
    """Send a notification immediately."""

    async def operation(service: NotificationService) -> None:
        payload = {"user_id": user_id, "title": title, "body": body}
        if channel:
            payload["channel"] = channel
        notification = await service.send(payload)
        success(f"Sent notification {notification.id}")

    _run(_with_service(operation))
