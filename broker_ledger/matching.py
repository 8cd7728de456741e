"""FIFO matching of stock sells against previously bought lots.

Each sell is satisfied from the oldest still open buy lots of the same symbol
(ordered by conclusion date, then execution date).  Every consumed part of a
lot becomes a `StockSellSource` carrying the lot price and its share of the
lot commission.

After matching, the unsold parts of all lots must add up exactly to the open
positions declared by the broker.  Any difference means either a parsing bug
or a corporate action (split, merger, ...) that isn't modeled here, so it's
reported as an error rather than patched.
"""

from typing import TYPE_CHECKING, Deque, Dict, List, Sequence, Union
import collections

from beancount.core.number import ZERO, Decimal

from . import cash
from .errors import ConsistencyError, MatchError
from .trades import StockBuy, StockSell, StockSellSource

if TYPE_CHECKING:
    from .statement import BrokerStatement  # For type annotations only.


def order_trades(trades: Sequence[Union[StockBuy, StockSell]], name: str) -> None:
    """Sorts `trades` in place and checks that execution dates don't go back."""
    trades.sort(key=lambda trade: (trade.conclusion_date, trade.execution_date))  # type: ignore

    prev_execution_date = None
    for trade in trades:
        if prev_execution_date is not None and trade.execution_date < prev_execution_date:
            raise ConsistencyError('Got an unexpected execution order for %s trades: %s' % (
                name, trade.symbol))
        prev_execution_date = trade.execution_date


def match_trades(statement: 'BrokerStatement') -> None:
    stock_buys_num = len(statement.stock_buys)
    stock_buys = []  # type: List[StockBuy]
    unsold_stock_buys = collections.OrderedDict()  # type: Dict[str, Deque[StockBuy]]

    for stock_buy in statement.stock_buys:
        if stock_buy.is_sold():
            stock_buys.append(stock_buy)
            continue
        unsold_stock_buys.setdefault(stock_buy.symbol, collections.deque()).append(stock_buy)

    for stock_sell in statement.stock_sells:
        if stock_sell.is_processed():
            continue

        symbol_buys = unsold_stock_buys.get(stock_sell.symbol)
        remaining_quantity = stock_sell.quantity
        sources = []  # type: List[StockSellSource]

        while remaining_quantity > ZERO:
            if not symbol_buys:
                raise MatchError(
                    'Error while processing %s position closing: There are no open positions for it'
                    % stock_sell.symbol)

            stock_buy = symbol_buys[0]
            sell_quantity = min(remaining_quantity, stock_buy.get_unsold())
            assert sell_quantity > ZERO

            sources.append(StockSellSource(
                quantity=sell_quantity,
                price=stock_buy.price,
                commission=cash.div(cash.mul(stock_buy.commission, sell_quantity),
                                    stock_buy.quantity),
                conclusion_date=stock_buy.conclusion_date,
                execution_date=stock_buy.execution_date,
            ))

            remaining_quantity -= sell_quantity
            stock_buy.sell(sell_quantity)

            if stock_buy.is_sold():
                stock_buys.append(symbol_buys.popleft())

        stock_sell.process(sources)

    for symbol_buys in unsold_stock_buys.values():
        stock_buys.extend(symbol_buys)

    assert len(stock_buys) == stock_buys_num
    statement.stock_buys = stock_buys
    order_trades(statement.stock_buys, 'buy')

    validate_open_positions(statement)


def get_open_positions(stock_buys: Sequence[StockBuy]) -> Dict[str, Decimal]:
    open_positions = {}  # type: Dict[str, Decimal]

    for stock_buy in stock_buys:
        if stock_buy.is_sold():
            continue
        open_positions[stock_buy.symbol] = (
            open_positions.get(stock_buy.symbol, ZERO) + stock_buy.get_unsold())

    return open_positions


def validate_open_positions(statement: 'BrokerStatement') -> None:
    open_positions = get_open_positions(statement.stock_buys)
    if open_positions == statement.open_positions:
        return

    differences = []
    for symbol in sorted(set(open_positions) | set(statement.open_positions)):
        calculated = open_positions.get(symbol, ZERO)
        declared = statement.open_positions.get(symbol, ZERO)
        if calculated != declared:
            differences.append('* %s: %s vs %s' % (symbol, calculated, declared))

    raise ConsistencyError(
        "The calculated open positions don't match declared ones in the statement:\n%s"
        % '\n'.join(differences))
