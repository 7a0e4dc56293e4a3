"""CLI commands for the Pluto chat client."""
import click
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from plutochat.config import Config
from plutochat.logger import setup_logger
from plutochat.api.exceptions import PlutoException
from plutochat.api.pluto_client import PlutoClient
from plutochat.main import run_chat
from plutochat.sync.room_view import RoomView, ViewOptions, format_message
from plutochat.sync.uploader import AttachmentUploader

logger = logging.getLogger(__name__)

env_option = click.option('--env', type=click.Path(), help='Path to .env file')


def _load(env: Optional[str]) -> Config:
    config = Config(Path(env) if env else None)
    setup_logger(config)
    return config


def _client(config: Config, with_session: bool = True) -> PlutoClient:
    return PlutoClient(
        config.api.base_url,
        config.session() if with_session else None,
        timeout=config.api.timeout,
        verify_ssl=config.api.verify_ssl
    )


def _fail(e: Exception) -> None:
    click.secho(f"❌ Error: {e}", fg='red')
    raise click.Abort()


@click.group()
def cli():
    """Pluto chat client"""
    pass


@cli.command()
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True)
@env_option
def login(username: str, password: str, env: Optional[str]):
    """Log in and print the session token"""
    try:
        config = _load(env)
        session = _client(config, with_session=False).login(username, password)

        click.secho(f"\n✓ Logged in as {session.username}", fg='green', bold=True)
        click.secho("\nTo use this session, add to .env:", fg='yellow')
        click.echo(f"PLUTO_USERNAME={session.username}")
        if session.token:
            click.echo(f"PLUTO_TOKEN={session.token}")

    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command()
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@env_option
def register(username: str, email: str, password: str, env: Optional[str]):
    """Create an account"""
    try:
        config = _load(env)
        _client(config, with_session=False).register(username, email, password)
        click.secho(f"✓ Account {username} created, you can log in now", fg='green')
    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command()
@env_option
def rooms(env: Optional[str]):
    """List rooms you have joined"""
    try:
        config = _load(env)
        client = _client(config)
        user_rooms = client.list_user_rooms(client.session.username)

        click.secho("\n📋 Your rooms:\n", fg='green', bold=True)
        for i, room in enumerate(user_rooms, 1):
            click.echo(f"  {i}. {room.room_id}")
            click.secho(f"     Members: {len(room.members)}", fg='cyan')
            click.echo(f"     Messages: {len(room.messages)}")
            click.echo()

        click.secho(f"Total: {len(user_rooms)} rooms", fg='green')

    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command(name='create-room')
@click.argument('room_id')
@env_option
def create_room(room_id: str, env: Optional[str]):
    """Create a new room"""
    try:
        config = _load(env)
        client = _client(config)
        room = client.create_room(room_id.strip(), client.session.username)
        click.secho(f"✓ Room {room.room_id} created", fg='green')
    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command(name='join-room')
@click.argument('room_id')
@env_option
def join_room(room_id: str, env: Optional[str]):
    """Join an existing room"""
    try:
        config = _load(env)
        client = _client(config)
        room = client.join_room(room_id.strip(), client.session.username)
        click.secho(f"✓ Joined {room.room_id} ({len(room.members)} members)", fg='green')
    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command()
@click.argument('room_id')
@click.option('--limit', type=int, default=50, show_default=True, help='Show the last N messages')
@click.option('--no-timestamps', is_flag=True, help='Hide timestamps')
@env_option
def history(room_id: str, limit: int, no_timestamps: bool, env: Optional[str]):
    """Print a room's message history"""
    try:
        config = _load(env)
        client = _client(config)
        room = client.fetch_room(room_id)
        options = ViewOptions(show_timestamps=not no_timestamps)

        click.secho(f"\n💬 {room.room_id} ({len(room.members)} members)\n", fg='green', bold=True)
        for message in room.messages[-limit:] if limit > 0 else room.messages:
            click.echo(f"  {format_message(message, client.session.username, options)}")

    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command()
@click.argument('room_id')
@click.argument('text')
@click.option('--wait', type=float, default=10.0, show_default=True, help='Seconds to wait for the connection')
@env_option
def send(room_id: str, text: str, wait: float, env: Optional[str]):
    """Send one message to a room"""
    try:
        config = _load(env)
        client = _client(config)
        sent = asyncio.run(_send_once(config, client, room_id, text, wait))
        if not sent:
            raise click.Abort()
        click.secho("✓ Sent", fg='green')
    except (PlutoException, ValueError) as e:
        _fail(e)


async def _send_once(config: Config, client: PlutoClient, room_id: str,
                     text: str, wait: float) -> bool:
    view = RoomView.from_config(config, room_id, client.session, client)
    try:
        if not await view.activate():
            click.secho(f"❌ {view.error}", fg='red')
            return False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while not view.connected and loop.time() < deadline:
            await asyncio.sleep(0.1)

        if not await view.send_text(text):
            click.secho(f"❌ {view.error}", fg='red')
            return False
        return True
    finally:
        await view.deactivate()


@cli.command()
@click.argument('room_id')
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@env_option
def upload(room_id: str, path: Path, env: Optional[str]):
    """Upload an image to a room"""
    try:
        config = _load(env)
        client = _client(config)
        uploader = AttachmentUploader(
            client, room_id, client.session,
            max_file_size_mb=config.upload.max_file_size_mb,
            allowed_mimetypes=config.upload.allowed_mimetypes,
            timeout=config.upload.timeout,
        )
        result = asyncio.run(uploader.upload(path))
        click.secho(f"✓ Uploaded {path.name}", fg='green')
        if result.get("imageUrl"):
            click.secho(f"  {result['imageUrl']}", fg='cyan')
    except (PlutoException, ValueError) as e:
        _fail(e)


@cli.command()
@click.argument('room_id')
@env_option
def chat(room_id: str, env: Optional[str]):
    """Open an interactive room session"""
    try:
        config = _load(env)
        exit_code = asyncio.run(run_chat(config, config.session(), room_id))
    except (PlutoException, ValueError) as e:
        _fail(e)
    except KeyboardInterrupt:
        logger.warning("\n⏹️  Interrupted")
        sys.exit(130)
    if exit_code:
        sys.exit(exit_code)


if __name__ == '__main__':
    cli()
