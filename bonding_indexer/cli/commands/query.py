# bonding_indexer/cli/commands/query.py

import sys
from functools import wraps

import click

from ...core.errors import IndexerError
from ...query.query_engine import QueryEngine
from ...types import TradeSource
from ...utils.fixed_point import to_fixed


SOURCES = click.Choice([s.value for s in TradeSource])


@click.group()
def query():
    """Market metrics from the local ledger"""
    pass


def _engine(ctx) -> QueryEngine:
    return ctx.obj['cli_context'].get(QueryEngine)


def _output(ctx, result) -> None:
    click.echo(ctx.obj['cli_context'].render(result))


def handles_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IndexerError as e:
            click.echo(f"Query failed: {e}", err=True)
            sys.exit(1)
    return wrapper


@query.command('volume')
@click.argument('token')
@click.option('--from-block', type=int, default=0, show_default=True)
@click.option('--to-block', type=int, help='Scan only up to this block')
@click.option('--source', type=SOURCES, default=TradeSource.BONDING_CURVE.value, show_default=True)
@click.pass_context
@handles_errors
def volume(ctx, token, from_block, to_block, source):
    """Buy/sell volume, counts and unique traders"""
    engine = _engine(ctx)
    if to_block is None:
        _output(ctx, engine.get_total_volume(token, from_block, source))
    else:
        _output(ctx, engine.get_volume_for_period(token, from_block, to_block, source=source))


@query.command('volume-24h')
@click.argument('token')
@click.pass_context
@handles_errors
def volume_24h(ctx, token):
    """Volume over the last 24 hours"""
    _output(ctx, _engine(ctx).get_24h_volume(token))


@query.command('history')
@click.argument('token')
@click.option('--interval', type=int, help='Bucket size in seconds (default: primary interval)')
@click.option('--periods', type=int, default=24, show_default=True)
@click.option('--source', type=SOURCES, default=TradeSource.BONDING_CURVE.value, show_default=True)
@click.pass_context
@handles_errors
def history(ctx, token, interval, periods, source):
    """Volume per interval, oldest first, zero-filled"""
    _output(ctx, _engine(ctx).get_volume_history(token, interval, periods, source=source))


@query.command('recent')
@click.argument('token')
@click.option('--limit', type=int, help='Number of trades')
@click.pass_context
@handles_errors
def recent(ctx, token, limit):
    """Most recent trades, newest first"""
    _output(ctx, _engine(ctx).get_recent_trades(token, limit))


@query.command('top-traders')
@click.argument('token')
@click.option('--limit', type=int, help='Number of traders')
@click.option('--from-block', type=int, default=0, show_default=True)
@click.pass_context
@handles_errors
def top_traders(ctx, token, limit, from_block):
    """Leaderboard by total volume"""
    traders = _engine(ctx).get_top_traders(token, limit, from_block)
    _output(ctx, [
        {
            'address': t.address,
            'total_volume': t.total_volume,
            'buy_volume': t.buy_volume,
            'sell_volume': t.sell_volume,
            'net_tokens': t.net_tokens,
            'buy_count': t.buy_count,
            'sell_count': t.sell_count,
        }
        for t in traders
    ])


@query.command('holders')
@click.argument('token')
@click.pass_context
@handles_errors
def holders(ctx, token):
    """Estimated holder count from market trades"""
    _output(ctx, {'token': token.lower(), 'estimated_holders': _engine(ctx).get_estimated_holder_count(token)})


@query.command('price-change')
@click.argument('token')
@click.pass_context
@handles_errors
def price_change(ctx, token):
    """24h price change in basis points, or an explicit no-data result"""
    _output(ctx, _engine(ctx).get_24h_price_change(token))


@query.command('fee-info')
@click.argument('token')
@click.option('--block', type=int, help='Evaluate the fee schedule at this block')
@click.pass_context
@handles_errors
def fee_info(ctx, token, block):
    """Active fee tier and time to the next one"""
    _output(ctx, _engine(ctx).get_fee_info(token, block))


@query.command('creator-fees')
@click.argument('token')
@click.pass_context
@handles_errors
def creator_fees(ctx, token):
    """Unclaimed creator fees and claim eligibility"""
    _output(ctx, _engine(ctx).get_creator_fee_info(token))


@query.command('price-impact')
@click.argument('token')
@click.argument('side', type=click.Choice(['buy', 'sell']))
@click.argument('amount')
@click.option('--block', type=int, help='Use the fee tier active at this block')
@click.pass_context
@handles_errors
def price_impact(ctx, token, side, amount, block):
    """Quote a trade of AMOUNT whole units (base in for buys, tokens in for sells)"""
    _output(ctx, _engine(ctx).get_price_impact(token, side, to_fixed(amount), block))


@query.command('pool')
@click.argument('token')
@click.pass_context
@handles_errors
def pool(ctx, token):
    """Derived reserves, spot price and graduation status"""
    _output(ctx, _engine(ctx).get_pool_state(token))
