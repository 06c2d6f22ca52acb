#!/usr/bin/env python3
"""
channelcopy CLI

Command-line interface for pulling files over a channel.

Usage:
    channelcopy serve                    # Run the remote agent
    channelcopy fetch REMOTE_PATH        # Retrieve a file from the agent
    channelcopy push LOCAL_PATH          # Send a file (not implemented)
    channelcopy version                  # Show protocol versions
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler
from rich.markup import escape

from .config import load_config
from .channel import ChannelServer, OperationRegistry, StreamChannel
from .errors import ChannelCopyError
from .protocol import get_protocol_version, VERSION_OPERATION
from .transfer import (
    FileRetriever, TransferProgress, install_protocol_module, send_local_file,
    MIN_PACKET_SIZE, MAX_PACKET_SIZE
)

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """channelcopy - retrieve files over an existing remote channel."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Address to listen on')
@click.option('--port', type=int, default=None, help='Port to listen on')
@click.option('--root', type=click.Path(exists=True, file_okay=False),
              help='Directory relative remote paths are resolved against')
@click.pass_context
def serve(ctx, host, port, root):
    """Run the remote agent with the protocol module installed."""
    config = ctx.obj['config']

    registry = OperationRegistry()
    engine = install_protocol_module(registry)
    server = ChannelServer(
        registry,
        host=host or config.host,
        port=port if port is not None else config.port,
        working_directory=Path(root) if root else None,
    )

    async def run():
        await server.start()
        console.print(Panel.fit(
            f"[bold green]Channel Agent Started[/bold green]\n\n"
            f"Address: [yellow]{server.host}:{server.bound_port}[/yellow]\n"
            f"Protocol: [cyan]v{get_protocol_version()}[/cyan]\n"
            f"Operations: [blue]{', '.join(registry.names())}[/blue]",
            title="Agent Info"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            await server.serve_forever()
        finally:
            await server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")

    stats = engine.get_stats()
    console.print(f"[green]Agent stopped[/green] [dim]({stats['files_sent']} files, "
                  f"{format_size(stats['bytes_sent'])} sent)[/dim]")


@cli.command()
@click.argument('remote_path')
@click.option('--dest', '-d', default=None, help='Local destination directory')
@click.option('--packet-size', type=click.IntRange(MIN_PACKET_SIZE, MAX_PACKET_SIZE),
              default=None, help='Packet size in bytes')
@click.option('--host', default=None, help='Agent address')
@click.option('--port', type=int, default=None, help='Agent port')
@click.option('--pass-thru', is_flag=True, help='Print the retrieved file path')
@click.pass_context
def fetch(ctx, remote_path, dest, packet_size, host, port, pass_thru):
    """Retrieve REMOTE_PATH from the agent."""
    config = ctx.obj['config']
    local_directory = Path(dest) if dest else config.local_directory

    async def run():
        try:
            channel = await StreamChannel.connect(
                host or config.host,
                port if port is not None else config.port,
                timeout=config.connect_timeout,
                max_pending_events=config.max_pending_events,
            )
        except ChannelCopyError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            return None

        async with channel:
            retriever = FileRetriever(channel, completion_timeout=config.completion_timeout)

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task(f"Retrieving {remote_path}...", total=100)

                def update_progress(p: TransferProgress):
                    progress.update(task, completed=p.percent, description=p.status)

                session = await retriever.retrieve(
                    remote_path,
                    local_directory=local_directory,
                    packet_size=packet_size or config.packet_size,
                    progress_callback=update_progress,
                )
            return session

    session = asyncio.run(run())

    if session is None or not session.succeeded:
        console.print("\n[red]✗ Retrieval failed[/red]")
        ctx.exit(1)

    console.print(f"\n[green]✓ Retrieved {format_size(session.bytes_received)} "
                  f"to: {session.local_path}[/green]")
    if pass_thru:
        click.echo(str(session.local_path))


@cli.command()
@click.argument('local_path', type=click.Path())
@click.option('--dest', '-d', default=None, help='Remote destination directory')
@click.pass_context
def push(ctx, local_path, dest):
    """Send LOCAL_PATH to the remote host (not implemented)."""
    asyncio.run(send_local_file(None, local_path, dest))
    ctx.exit(1)


@cli.command()
@click.option('--host', default=None, help='Also query this agent')
@click.option('--port', type=int, default=None, help='Agent port')
@click.pass_context
def version(ctx, host, port):
    """Show the local and, optionally, the remote protocol version."""
    config = ctx.obj['config']
    console.print(f"Local protocol version: [cyan]{get_protocol_version()}[/cyan]")

    if not host:
        return

    async def run():
        async with await StreamChannel.connect(
            host, port if port is not None else config.port,
            timeout=config.connect_timeout,
        ) as channel:
            return await channel.invoke(VERSION_OPERATION)

    try:
        remote_version = asyncio.run(run())
    except ChannelCopyError as e:
        console.print(f"[red]✗ Could not query {host}: {escape(str(e))}[/red]")
        ctx.exit(1)
    console.print(f"Remote protocol version: [cyan]{remote_version}[/cyan]")


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
