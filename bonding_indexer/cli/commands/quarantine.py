# bonding_indexer/cli/commands/quarantine.py

import sys

import click

from ...core.errors import IndexerError
from ...ledger.read_model import ReadModel


@click.command()
@click.argument('token')
@click.option('--errors', 'show_errors', is_flag=True, help='Also list undecodable logs')
@click.pass_context
def quarantine(ctx, token, show_errors):
    """List trades held back for breaking a ledger invariant"""
    cli_context = ctx.obj['cli_context']

    try:
        state = cli_context.get(ReadModel).snapshot(token)
        result = {
            'token': state.token,
            'quarantined': state.ledger.quarantined(state.token),
        }
        if show_errors:
            result['errors'] = state.ledger.errors(state.token)
        click.echo(cli_context.render(result))

    except IndexerError as e:
        click.echo(f"Quarantine lookup failed: {e}", err=True)
        sys.exit(1)
