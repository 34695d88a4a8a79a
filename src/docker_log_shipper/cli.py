"""Main CLI entry point"""

import asyncio
from typing import List, Optional

import click

from .config import Settings, load_settings
from .core.exceptions import ConfigurationError
from .core.logging_config import setup_logging
from .services.error_policy import RelayErrorMode
from .services.supervisor import Supervisor
from .utils import parse_address, parse_hosts

CONTEXT_SETTINGS = {'help_option_names': ['-h', '--help']}


def read_hosts_from_stdin() -> List[str]:
    """Hosts piped on stdin, one per line or comma separated; empty on a terminal"""
    stdin = click.get_text_stream('stdin')
    if stdin.isatty():
        return []
    return parse_hosts(stdin.read())


def relay_options(func):
    """Options shared by every command that ships to Logstash"""
    func = click.option('--no-top', is_flag=True,
                        help='Do not sample container processes')(func)
    func = click.option('--logstash', '-l', default=None, metavar='HOST:PORT',
                        help='Logstash tcp input (default: localhost, port from settings)')(func)
    func = click.option('--hosts', '-H', default=None, metavar='HOSTS',
                        help='Docker hosts, comma or whitespace separated')(func)
    return func


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option('--config', '-c', type=click.Path(dir_okay=False), default=None,
              help='YAML settings file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                                               case_sensitive=False),
              default=None, help='Override the configured log level')
@click.pass_context
def cli(ctx, config, log_level):
    """Ship Docker container logs and process samples to Logstash"""
    try:
        settings = load_settings(config, log_level=log_level)
    except ConfigurationError as e:
        raise click.ClickException(e.message)

    setup_logging(settings.log_level)
    ctx.obj = {'settings': settings}


@cli.command(context_settings=CONTEXT_SETTINGS)
@relay_options
@click.pass_context
def tail(ctx, hosts, logstash, no_top):
    """Tail the containers running now; hosts may also be piped on stdin"""
    host_list = parse_hosts(hosts) if hosts else read_hosts_from_stdin()
    if not host_list:
        raise click.UsageError('No Docker hosts given; use --hosts or pipe them on stdin', ctx)

    _run(ctx, host_list, logstash, no_top, discover=False)


@cli.command(context_settings=CONTEXT_SETTINGS)
@relay_options
@click.option('--relay-errors', type=click.Choice([m.value for m in RelayErrorMode]),
              default=None, help='Abort the process or keep other pipelines going on relay errors')
@click.pass_context
def watch(ctx, hosts, logstash, no_top, relay_errors):
    """Keep discovering containers and tail each one as it appears"""
    host_list = parse_hosts(hosts) if hosts else []
    if not host_list:
        click.echo(ctx.get_help())
        ctx.exit(0)

    _run(ctx, host_list, logstash, no_top, discover=True, relay_errors=relay_errors)


def _run(
    ctx: click.Context,
    hosts: List[str],
    logstash: Optional[str],
    no_top: bool,
    discover: bool,
    relay_errors: Optional[str] = None
) -> None:
    settings: Settings = ctx.obj['settings']

    updates = {}
    if no_top:
        updates['top_enabled'] = False
    if relay_errors:
        updates['relay_error_policy'] = RelayErrorMode(relay_errors)
    if updates:
        settings = settings.model_copy(update=updates)

    try:
        for host in hosts:
            parse_address(host, settings.docker_port)
    except ConfigurationError as e:
        raise click.BadParameter(e.message, ctx, param_hint='--hosts')

    try:
        collector = parse_address(logstash or settings.logstash_host, settings.logstash_port)
    except ConfigurationError as e:
        raise click.BadParameter(e.message, ctx, param_hint='--logstash')

    supervisor = Supervisor(settings, hosts, collector, discover=discover)
    exit_code = asyncio.run(supervisor.run())
    ctx.exit(exit_code)


def main():
    cli(prog_name='docker-log-shipper')


if __name__ == '__main__':
    main()
