"""A single broker statement file, not yet validated against its siblings."""

from typing import Dict, List, Optional, Tuple
import datetime

from beancount.core.number import ZERO, Decimal

from .brokers import BrokerInfo
from .cash import CashAssets, MultiCurrencyCashAccount
from .dividends import Dividend, DividendWithoutPaidTax, IdleCashInterest
from .errors import ConsistencyError, ParseError
from .taxes import TaxChanges, TaxId
from .trades import StockBuy, StockSell

Period = Tuple[datetime.date, datetime.date]


def format_period(period: Period) -> str:
    """Formats a half-open period as an inclusive date range."""
    start, end = period
    return '%s - %s' % (start.strftime('%d.%m.%Y'),
                        (end - datetime.timedelta(days=1)).strftime('%d.%m.%Y'))


class PartialBrokerStatement:
    def __init__(self, broker: BrokerInfo) -> None:
        self.broker = broker
        self.period = None  # type: Optional[Period]
        self.starting_assets = None  # type: Optional[bool]

        self.cash_flows = []  # type: List[CashAssets]
        self.cash_assets = MultiCurrencyCashAccount()
        self.idle_cash_interest = []  # type: List[IdleCashInterest]

        self.stock_buys = []  # type: List[StockBuy]
        self.stock_sells = []  # type: List[StockSell]
        self.dividends = []  # type: List[Dividend]

        self.dividends_without_paid_tax = []  # type: List[DividendWithoutPaidTax]
        self.tax_changes = {}  # type: Dict[TaxId, TaxChanges]

        self.open_positions = {}  # type: Dict[str, Decimal]
        self.instrument_names = {}  # type: Dict[str, str]

    def set_period(self, period: Period) -> None:
        if self.period is not None:
            raise ParseError('Duplicate statement period: %s' % format_period(period))
        if period[0] >= period[1]:
            raise ParseError('Invalid statement period: %s - %s' % period)
        self.period = period

    def get_period(self) -> Period:
        if self.period is None:
            raise ParseError('Unable to find statement period')
        return self.period

    def set_starting_assets(self, exists: bool) -> None:
        self.starting_assets = bool(self.starting_assets) or exists

    def get_starting_assets(self) -> bool:
        if self.starting_assets is None:
            raise ParseError('Unable to find any information about starting assets')
        return self.starting_assets

    def add_tax_change(self, tax_id: TaxId, amount) -> None:
        changes = self.tax_changes.get(tax_id)
        if changes is None:
            changes = self.tax_changes[tax_id] = TaxChanges()
        changes.add(amount)

    def add_open_position(self, symbol: str, quantity: Decimal) -> None:
        if symbol in self.open_positions:
            raise ParseError('Duplicated open position: %s' % symbol)
        self.open_positions[symbol] = quantity

    def validate(self) -> 'PartialBrokerStatement':
        self.get_period()
        self.get_starting_assets()

        for symbol, quantity in self.open_positions.items():
            if quantity <= ZERO:
                raise ConsistencyError('Invalid %s open position quantity: %s' % (symbol, quantity))

        return self
