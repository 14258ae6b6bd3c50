# bonding_indexer/cli/commands/sync.py

import sys

import click

from ...core.errors import IndexerError, ReorgError
from ...pipeline.ingestion_pipeline import IngestionPipeline
from ...reconcile.reorg_reconciler import ReorgReconciler


@click.command()
@click.option('--token', 'tokens', multiple=True, help='Token to sync (default: every configured pool)')
@click.option('--to-block', type=int, help='Stop at this block instead of the chain head')
@click.option('--follow', is_flag=True, help='Keep reconciling and syncing until interrupted')
@click.option('--interval', type=float, default=12.0, show_default=True, help='Seconds between rounds with --follow')
@click.pass_context
def sync(ctx, tokens, to_block, follow, interval):
    """Ingest trade events up to the chain head

    Examples:
        # Sync every configured pool once
        sync

        # Sync one token up to block 1,000,000
        sync --token 0xabc... --to-block 1000000

        # Run continuously
        sync --follow --interval 6
    """
    cli_context = ctx.obj['cli_context']

    try:
        pipeline = cli_context.get(IngestionPipeline)
        if follow:
            cli_context.run(pipeline.run_forever(poll_interval=interval))
            return

        if tokens:
            async def run_selected():
                return {t: await pipeline.sync_token(t, to_block) for t in tokens}
            results = cli_context.run(run_selected())
        else:
            results = cli_context.run(pipeline.sync_all(to_block))

        click.echo(cli_context.render(results))
        if any(result.error for result in results.values()):
            sys.exit(2)

    except ReorgError as e:
        click.echo(f"Fatal reorganization: {e}", err=True)
        sys.exit(3)
    except IndexerError as e:
        click.echo(f"Sync failed: {e}", err=True)
        sys.exit(1)


@click.command()
@click.option('--token', 'tokens', multiple=True, help='Token to reconcile (default: every configured pool)')
@click.pass_context
def reconcile(ctx, tokens):
    """Check tracked blocks against the canonical chain and repair reorgs"""
    cli_context = ctx.obj['cli_context']

    try:
        reconciler = cli_context.get(ReorgReconciler)
        results = cli_context.run(reconciler.reconcile_all(list(tokens) or None))
        click.echo(cli_context.render(results))

    except ReorgError as e:
        click.echo(f"Fatal reorganization at block {e.diverged_at} (depth {e.depth}): {e}", err=True)
        sys.exit(3)
    except IndexerError as e:
        click.echo(f"Reconcile failed: {e}", err=True)
        sys.exit(1)
