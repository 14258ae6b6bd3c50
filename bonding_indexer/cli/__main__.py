# bonding_indexer/cli/__main__.py

"""
Bonding curve indexer CLI

Usage: python -m bonding_indexer.cli [command] [options]
"""

import atexit
import os

import click
from dotenv import load_dotenv

from .context import CLIContext
from .commands.sync import sync, reconcile
from .commands.query import query
from .commands.quarantine import quarantine


cli_context = CLIContext()


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              envvar='INDEXER_CONFIG', help='Path to the YAML or JSON config file')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='.env file to load first')
@click.option('--no-persist', is_flag=True, help='Keep the ledger in memory only')
@click.pass_context
def cli(ctx, verbose, config_path, env_file, no_persist):
    """Bonding curve trade indexer

    Syncs trade events into the ledger, reconciles chain reorganizations
    and answers market queries.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    if verbose:
        os.environ["INDEXER_LOG_LEVEL"] = "DEBUG"

    ctx.ensure_object(dict)
    cli_context.config_path = config_path
    cli_context.persist = not no_persist
    ctx.obj['cli_context'] = cli_context


cli.add_command(sync)
cli.add_command(reconcile)
cli.add_command(query)
cli.add_command(quarantine)


def cleanup():
    cli_context.shutdown()


atexit.register(cleanup)


if __name__ == '__main__':
    cli()
