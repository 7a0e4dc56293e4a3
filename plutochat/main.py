#!/usr/bin/env python3
"""Pluto Chat - interactive room session"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

import click

from plutochat.api.models import Session
from plutochat.api.pluto_client import PlutoClient
from plutochat.config import Config
from plutochat.sync.room_view import RoomView, ViewOptions

logger = logging.getLogger(__name__)

HELP_TEXT = "Commands: /upload <path>, /members, /status, /quit"


class ConsoleRenderer:
    """Prints new messages and error banners as the view changes"""

    def __init__(self, echo: Callable[..., None] = click.secho):
        self.echo = echo
        self.printed = 0
        self.last_error: Optional[str] = None
        self.last_connected: Optional[bool] = None

    def __call__(self, view: RoomView) -> None:
        lines = view.render()
        for line in lines[self.printed:]:
            self.echo(line)
        self.printed = len(lines)

        if view.error and view.error != self.last_error:
            self.echo(f"⚠️  {view.error}", fg='red')
        self.last_error = view.error

        if view.status.value == "ready" and view.connected != self.last_connected:
            self.last_connected = view.connected
            if view.connected:
                self.echo(f"● connected to {view.title}", fg='green')


async def run_chat(config: Config, session: Session, room_id: str,
                   read_line: Callable[[], str] = input,
                   client: Optional[PlutoClient] = None) -> int:
    """Run one room view until /quit or EOF; returns a process exit code"""
    client = client or PlutoClient(
        config.api.base_url,
        session,
        timeout=config.api.timeout,
        verify_ssl=config.api.verify_ssl
    )
    renderer = ConsoleRenderer()
    view = RoomView.from_config(config, room_id, session, client,
                                options=ViewOptions(title=room_id),
                                on_update=renderer)

    if not await view.activate():
        await view.deactivate()
        client.close()
        return 1

    click.secho(f"\n💬 {view.title} - {len(view.members)} members. {HELP_TEXT}\n", fg='cyan')
    try:
        while True:
            try:
                line = await asyncio.to_thread(read_line)
            except EOFError:
                break

            command = line.strip()
            if command == "/quit":
                break
            if command == "/members":
                click.echo(", ".join(view.members) or "(none)")
                continue
            if command == "/status":
                click.echo(f"{view.channel.state.value}, {len(view.messages)} messages")
                continue
            if command.startswith("/upload "):
                await view.upload(Path(command[len("/upload "):].strip()).expanduser())
                continue
            if not command:
                continue
            await view.send_text(line)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
    finally:
        await view.deactivate()
        client.close()
    return 0
