"""Joins partial broker statements into a single validated statement.

A broker usually exports an account's history as a number of statements each
covering its own period (a month, a year, ...).  `BrokerStatement.new_from`
stitches them together:

1. The statements are sorted by period start.  The first one must start with
   zero assets, otherwise the history is truncated and nothing computed from
   it (cost basis, open positions) could be trusted.

2. Each next statement must start exactly where the previous one ended.

3. Event lists are concatenated, while the point-in-time snapshots (cash
   assets, open positions) are replaced by the later statement's ones.

4. Withholding taxes are accumulated across all statements and attached to
   their dividends (see `taxes.TaxAccumulator`).

5. All events are checked to lie within the joint period and the trades are
   matched (see `matching`).

The resulting statement is not modified afterwards; helpers that need a
changed statement (`emulate_sell_order`) return a new one.
"""

from typing import Dict, Iterable, List, Optional, Sequence
import copy
import datetime
import logging
import os

from beancount.core.amount import Amount
from beancount.core.number import D, ZERO, Decimal

from . import cash
from . import matching
from .brokers import BrokerInfo
from .cash import CashAssets, MultiCurrencyCashAccount
from .dividends import Dividend, IdleCashInterest
from .errors import ContinuityError, ConsistencyError, ParseError, StatementError
from .partial import PartialBrokerStatement, Period, format_period
from .taxes import TaxAccumulator
from .trades import StockBuy, StockSell

logger = logging.getLogger('broker-ledger')


class BrokerStatement:
    def __init__(self, broker: BrokerInfo, period: Period) -> None:
        self.broker = broker
        self.period = period

        self.cash_flows = []  # type: List[CashAssets]
        self.cash_assets = MultiCurrencyCashAccount()
        self.idle_cash_interest = []  # type: List[IdleCashInterest]

        self.stock_buys = []  # type: List[StockBuy]
        self.stock_sells = []  # type: List[StockSell]
        self.dividends = []  # type: List[Dividend]

        self.open_positions = {}  # type: Dict[str, Decimal]
        self.instrument_names = {}  # type: Dict[str, str]

    def __repr__(self) -> str:
        return 'BrokerStatement(%s)' % ', '.join(
            '%s=%r' % item for item in sorted(vars(self).items()))

    def __eq__(self, other) -> bool:
        if not isinstance(other, BrokerStatement):
            return NotImplemented
        return vars(self) == vars(other)

    @classmethod
    def new_from(cls, statements: Iterable[PartialBrokerStatement]) -> 'BrokerStatement':
        # The partial statements stay untouched: merging the same list twice
        # gives equal statements.
        statements = sorted(statements, key=lambda statement: statement.get_period()[0])
        if not statements:
            raise ParseError('There are no broker statements to merge')

        joint_statement = cls.new_empty_from(statements[0])
        taxes = TaxAccumulator()

        for statement in statements:
            statement = copy.deepcopy(statement)
            taxes.add(statement)

            try:
                joint_statement.merge(statement)
            except StatementError as e:
                raise type(e)('Failed to merge broker statements: %s' % e) from e

        joint_statement.dividends.extend(taxes.resolve())

        joint_statement.validate()
        joint_statement.process_trades()

        return joint_statement

    @classmethod
    def new_empty_from(cls, statement: PartialBrokerStatement) -> 'BrokerStatement':
        start = statement.get_period()[0]

        if statement.get_starting_assets():
            raise ContinuityError(
                'Invalid broker statement period: It has a non-zero starting assets')

        return cls(statement.broker, (start, start))

    def merge(self, statement: PartialBrokerStatement) -> None:
        period = statement.get_period()

        if period[0] != self.period[1]:
            raise ContinuityError('Non-continuous periods: %s, %s' % (
                format_period(self.period), format_period(period)))

        self.period = (self.period[0], period[1])

        self.cash_flows.extend(statement.cash_flows)
        self.cash_assets = statement.cash_assets
        self.idle_cash_interest.extend(statement.idle_cash_interest)

        self.stock_buys.extend(statement.stock_buys)
        self.stock_sells.extend(statement.stock_sells)
        self.dividends.extend(statement.dividends)

        self.open_positions = statement.open_positions
        self.instrument_names.update(statement.instrument_names)

    def validate(self) -> None:
        self.cash_flows.sort(key=lambda cash_flow: cash_flow.date)
        self.idle_cash_interest.sort(key=lambda interest: interest.date)
        self.dividends.sort(key=lambda dividend: dividend.date)

        matching.order_trades(self.stock_buys, 'buy')
        matching.order_trades(self.stock_sells, 'sell')

        min_date = self.period[0]
        max_date = self.period[1] - datetime.timedelta(days=1)

        def validate_dates(name: str, dates: Sequence[datetime.date]) -> None:
            if not dates:
                return

            for date in (dates[0], dates[-1]):
                if date < min_date or date > max_date:
                    raise ConsistencyError('Got a %s outside of statement period: %s' % (
                        name, date.strftime('%d.%m.%Y')))

        validate_dates('cash flow', [cash_flow.date for cash_flow in self.cash_flows])
        validate_dates('idle cash interest', [interest.date for interest in self.idle_cash_interest])
        validate_dates('stock buy', [trade.conclusion_date for trade in self.stock_buys])
        validate_dates('stock sell', [trade.conclusion_date for trade in self.stock_sells])
        validate_dates('dividend', [dividend.date for dividend in self.dividends])

    def process_trades(self) -> None:
        matching.match_trades(self)

    def check_date(self, today: Optional[datetime.date] = None) -> None:
        """Warns if the statement is likely to be outdated."""
        if today is None:
            today = datetime.date.today()

        date = self.period[1] - datetime.timedelta(days=1)
        months = D((today - date).days) / 30

        if months >= 1:
            logger.warning('The broker statement is %s months old and may be outdated.',
                           cash.round_to(months, 1))

    def get_instrument_name(self, symbol: str) -> str:
        name = self.instrument_names.get(symbol)
        if name is None:
            raise StatementError(
                'Unable to find %r instrument name in the broker statement' % symbol)
        return '%s (%s)' % (name, symbol)

    def batch_quotes(self, quotes) -> None:
        """Asks the quote service to fetch prices for all known instruments."""
        for symbol in sorted(self.instrument_names):
            quotes.batch(symbol)

    def emulate_sell_order(self, symbol: str, quantity: Decimal, price: Amount,
                           today: Optional[datetime.date] = None) -> 'BrokerStatement':
        """Returns a copy of the statement with the position closed at `price`."""
        if today is None:
            today = datetime.date.today()

        if quantity <= ZERO or quantity > self.open_positions.get(symbol, ZERO):
            raise ConsistencyError('Unable to sell %s %s: there is no such open position' % (
                quantity, symbol))

        statement = copy.deepcopy(self)

        conclusion_date = today
        execution_date = today
        if statement.stock_sells and statement.stock_sells[-1].execution_date > today:
            execution_date = statement.stock_sells[-1].execution_date

        volume = cash.round_cash(cash.mul(price, quantity))
        commission = self.broker.get_trade_commission(quantity, price)

        statement.stock_sells.append(StockSell(
            symbol=symbol, quantity=quantity, price=price, volume=volume,
            commission=commission, conclusion_date=conclusion_date,
            execution_date=execution_date, emulation=True))

        statement.cash_assets.deposit(volume)
        statement.cash_assets.withdraw(commission)

        remaining = statement.open_positions[symbol] - quantity
        if remaining:
            statement.open_positions[symbol] = remaining
        else:
            del statement.open_positions[symbol]

        statement.process_trades()
        return statement


def read_statement(reader, statement_dir_path: str) -> BrokerStatement:
    """Reads and merges all statements of an account from a directory."""
    try:
        file_names = [
            file_name for file_name in os.listdir(statement_dir_path)
            if reader.is_statement(file_name)
        ]
    except OSError as e:
        raise StatementError('Error while reading %r: %s' % (statement_dir_path, e)) from e

    if not file_names:
        raise StatementError('%r doesn\'t contain any broker statement' % statement_dir_path)

    statements = []
    for file_name in sorted(file_names):
        path = os.path.join(statement_dir_path, file_name)
        try:
            statements.append(reader.read(path))
        except StatementError as e:
            raise type(e)('Error while reading %r broker statement: %s' % (path, e)) from e

    joint_statement = BrokerStatement.new_from(statements)
    logger.debug('%r', joint_statement)
    return joint_statement
