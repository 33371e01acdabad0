#!/usr/bin/env python3
"""
peerfinder CLI

Command-line interface for DNS and LAN peer discovery.

Usage:
    peerfinder dns --domain wavey.io --prefix live --tags uk-lon,us-nyc
    peerfinder vlan
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import Config, load_config, parse_socket_addr, parse_tags
from .discovery import NodeRecord, NodeRegistry, dns_discover, lan_discover

# Logs and tables go to stderr; stdout carries only discovered addresses
console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


def _validate_dns_server(ctx, param, value):
    if value is None:
        return None
    try:
        return parse_socket_addr(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _validate_tags(ctx, param, value):
    if value is None:
        return None
    tags = parse_tags(value)
    if not tags:
        raise click.BadParameter("at least one tag is required")
    return tags


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """peerfinder - discover peer nodes via DNS enumeration and LAN broadcast."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration: {e}")
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--domain', default=None, help='Zone holding the peer records')
@click.option('--prefix', default=None, help='Record name prefix (e.g. live)')
@click.option('--tags', default=None, callback=_validate_tags,
              help='Comma separated tags (e.g. uk-lon,us-nyc)')
@click.option('--dns-server', default=None, callback=_validate_dns_server,
              help='Resolver as HOST:PORT (default 8.8.8.8:53)')
@click.option('--interface', 'interfaces', multiple=True,
              help='Interface whose address is never a peer (repeatable)')
@click.option('--table', 'show_table', is_flag=True, help='Also print a table of records')
@click.pass_context
def dns(ctx, domain, prefix, tags, dns_server, interfaces, show_table):
    """Run one DNS sweep and print the discovered addresses."""
    config: Config = ctx.obj['config']

    domain = domain or config.domain
    prefix = prefix or config.prefix
    tags = tags or config.tags
    interfaces = list(interfaces) or config.interfaces

    if not domain or not prefix or not tags:
        raise click.UsageError("--domain, --prefix and --tags are required")

    if dns_server is None:
        try:
            dns_server = config.dns_address
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--dns-server')

    async def run() -> List[NodeRecord]:
        registry = NodeRegistry(max_age=config.max_age)
        handle = await dns_discover(
            dns_server, domain, prefix, tags,
            interfaces=interfaces,
            registry=registry,
            interval=config.dns_check_interval,
            timeout=config.dns_timeout,
        )
        try:
            await handle.ready.wait()
            return handle.registry.snapshot()
        finally:
            await handle.aclose()

    try:
        records = asyncio.run(run())
    except OSError as e:
        console.print(f"[red]DNS discovery failed to start: {e}[/red]")
        sys.exit(1)

    records.sort(key=lambda r: r.ip)
    click.echo(' '.join(str(r.ip) for r in records))

    if show_table:
        table = Table(title="Discovered Nodes (DNS)")
        table.add_column("IP", style="yellow")
        table.add_column("Tag", style="cyan")
        table.add_column("Seq", justify="right")

        for r in records:
            table.add_row(str(r.ip), r.tag or "-", str(r.seq) if r.seq is not None else "-")

        console.print(table)


@cli.command()
@click.option('--port', default=None, type=int, help='Broadcast UDP port (default 12345)')
@click.option('--interval', default=None, type=float, help='Seconds between broadcasts')
@click.pass_context
def vlan(ctx, port, interval):
    """Discover peers on the LAN and print each new one until interrupted."""
    config: Config = ctx.obj['config']

    port = config.broadcast_port if port is None else port
    interval = config.broadcast_interval if interval is None else interval
    max_age = config.max_silent_intervals * interval

    async def run():
        registry = NodeRegistry(max_age=max_age)
        stream = registry.subscribe()
        handle = await lan_discover(registry=registry, port=port, interval=interval)

        console.print("[dim]Press Ctrl+C to stop[/dim]")
        try:
            async for ip in stream:
                click.echo(str(ip))
        finally:
            stream.close()
            await handle.aclose()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    except OSError as e:
        console.print(f"[red]LAN discovery failed to start: {e}[/red]")
        sys.exit(1)


if __name__ == '__main__':
    cli()
