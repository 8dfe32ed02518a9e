#!/usr/bin/env python3
"""
Bridge CLI

Command-line interface for direct peer-to-peer file transfer.

Usage:
    bridge receive                    # Wait for one file on port 12345
    bridge send 192.168.1.20 FILE     # Send a file to a listening peer
    bridge serve                      # Run the REST control API
    bridge config                     # Show the effective configuration
"""

import asyncio
import ipaddress
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.progress import (
    Progress, SpinnerColumn, TextColumn, BarColumn,
    DownloadColumn, TransferSpeedColumn
)
from rich.panel import Panel
from rich.logging import RichHandler

from . import __version__
from .config import Config, load_config
from .transfer import (
    FileSender, FileReceiver, TransferResult, FailureKind, BindError
)

console = Console()


# Human-readable text for each failure kind
FAILURE_MESSAGES = {
    FailureKind.FILE_NOT_FOUND: "File not found",
    FailureKind.CONNECTION_ERROR: "Connection failed. Check the IP and that the receiver is listening",
    FailureKind.BIND_ERROR: "Could not listen on the port. Is another receiver running?",
    FailureKind.MALFORMED_HEADER: "The sender spoke an unexpected protocol",
    FailureKind.TRUNCATED_STREAM: "The connection closed before the whole file arrived",
    FailureKind.IO_FAILURE: "Transfer interrupted",
    FailureKind.CANCELLED: "Transfer cancelled",
}


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def describe_failure(result: TransferResult) -> str:
    """Message shown to the user for a failed result."""
    summary = FAILURE_MESSAGES.get(result.kind, "Transfer failed")
    if result.message:
        return f"{summary}: {result.message}"
    return summary


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


class ProgressBar:
    """
    A rich progress bar that can be handed to the engine as a ProgressSink.

    The engine reports fractions; the bar shows bytes once the size is known.
    """

    def __init__(self, description: str, total_bytes: int = None):
        self.description = description
        self.total_bytes = total_bytes
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=console,
        )
        self.task = None

    def __enter__(self) -> 'ProgressBar':
        self.progress.start()
        self.task = self.progress.add_task(self.description, total=self.total_bytes)
        return self

    def __exit__(self, *exc_info):
        self.progress.stop()

    def set_file(self, name: str, size: int):
        self.total_bytes = size
        self.progress.update(self.task, total=size, description=f"Receiving {name}")

    def __call__(self, fraction: float):
        if self.total_bytes:
            self.progress.update(self.task, completed=fraction * self.total_bytes)
        else:
            self.progress.update(self.task, total=1.0, completed=fraction)


@click.group()
@click.version_option(__version__, prog_name='bridge')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """Bridge - send a file straight to another machine over TCP."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--config')
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('address')
@click.argument('file_path', type=click.Path(dir_okay=False, path_type=Path))
@click.option('--port', '-p', type=click.IntRange(1, 65535), default=None,
              help='Receiver TCP port')
@click.pass_context
def send(ctx, address, file_path, port):
    """Send FILE_PATH to the receiver at ADDRESS."""
    config: Config = ctx.obj['config']
    port = port or config.port

    try:
        ipaddress.ip_address(address)
    except ValueError:
        raise click.BadParameter(f"{address!r} is not an IPv4/IPv6 address",
                                 param_hint='ADDRESS')

    sender = FileSender(
        chunk_size=config.chunk_size,
        connect_timeout=config.connect_timeout,
        write_timeout=config.transfer_timeout,
    )
    size = file_path.stat().st_size if file_path.is_file() else None

    async def run():
        with ProgressBar(f"Sending {file_path.name}", size) as bar:
            result = await sender.send(address, port, file_path, bar)
            await sender.reporter.flush()
            return result

    try:
        result = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Transfer cancelled[/yellow]")
        sys.exit(130)

    if not result.ok:
        console.print(f"[red]✗ {describe_failure(result)}[/red]")
        sys.exit(1)

    console.print(Panel.fit(
        f"[bold green]File sent[/bold green]\n\n"
        f"Name: [cyan]{result.file_name}[/cyan]\n"
        f"Size: [yellow]{format_size(result.bytes_transferred)}[/yellow]\n"
        f"To: [blue]{address}:{port}[/blue]",
        title="Transfer Complete"
    ))


@cli.command()
@click.option('--port', '-p', type=click.IntRange(0, 65535), default=None,
              help='TCP port to listen on')
@click.option('--dest', '-d', 'dest_dir', type=click.Path(file_okay=False, path_type=Path),
              default=None, help='Directory to save into')
@click.option('--keep-listening', is_flag=True, help='Receive files until interrupted')
@click.option('--overwrite', is_flag=True, default=None, help='Replace existing files')
@click.pass_context
def receive(ctx, port, dest_dir, keep_listening, overwrite):
    """Wait for a sender and save its file."""
    config: Config = ctx.obj['config']

    receiver = FileReceiver(
        dest_dir or config.dest_dir,
        host=config.host,
        port=config.port if port is None else port,
        chunk_size=config.chunk_size,
        header_timeout=config.header_timeout,
        read_timeout=config.transfer_timeout,
        overwrite=config.overwrite if overwrite is None else overwrite,
        keep_partial=config.keep_partial,
    )

    async def receive_one() -> TransferResult:
        with ProgressBar("Waiting for sender...") as bar:
            def report(fraction: float):
                session = receiver.session
                if bar.total_bytes is None and session and session.header:
                    bar.set_file(session.header.file_name, session.header.file_size)
                bar(fraction)

            result = await receiver.receive(report)
            await receiver.reporter.flush()
            return result

    async def run() -> TransferResult:
        try:
            await receiver.start()
        except BindError as e:
            return TransferResult.failed(e)

        try:
            while True:
                console.print(
                    f"[dim]Listening on {receiver.host}:{receiver.port}, "
                    f"saving to {receiver.dest_dir} (Ctrl+C to stop)[/dim]"
                )
                result = await receive_one()

                if result.ok:
                    console.print(
                        f"[green]✓ Received {result.file_name} "
                        f"({format_size(result.bytes_transferred)}) -> {result.file_path}[/green]"
                    )
                else:
                    console.print(f"[red]✗ {describe_failure(result)}[/red]")

                if not keep_listening or result.kind is FailureKind.CANCELLED:
                    return result
        finally:
            await receiver.stop()

    try:
        result = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped listening[/yellow]")
        sys.exit(130)

    if result.kind is FailureKind.BIND_ERROR:
        console.print(f"[red]✗ {describe_failure(result)}[/red]")
    if not result.ok and not keep_listening:
        sys.exit(1)


@cli.command()
@click.option('--api-host', default=None, help='REST API host')
@click.option('--api-port', type=click.IntRange(1, 65535), default=None, help='REST API port')
@click.pass_context
def serve(ctx, api_host, api_port):
    """Run the REST API used by graphical front ends."""
    from .api import run_api_server
    from .manager import TransferManager

    config: Config = ctx.obj['config']
    host = api_host or config.api_host
    port = api_port or config.api_port

    console.print(Panel.fit(
        f"[bold green]Bridge API[/bold green]\n\n"
        f"API: [cyan]http://{host}:{port}[/cyan]\n"
        f"Docs: [cyan]http://{host}:{port}/docs[/cyan]\n"
        f"Default receive port: [yellow]{config.port}[/yellow]\n"
        f"Save to: [blue]{config.dest_dir}[/blue]",
        title="Server Info"
    ))

    try:
        asyncio.run(run_api_server(TransferManager(config), host=host, port=port))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command('config')
@click.option('--save', 'save_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='Write the effective configuration to a file')
@click.pass_context
def show_config(ctx, save_path):
    """Show the effective configuration."""
    config: Config = ctx.obj['config']

    for key, value in config.to_dict().items():
        console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")

    if save_path:
        config.save(save_path)
        console.print(f"\n[green]✓ Saved to {save_path}[/green]")


if __name__ == '__main__':
    cli()
