"""Stock trades as found in broker statements."""

from dataclasses import dataclass, field
from typing import List
import datetime

from beancount.core.amount import Amount
from beancount.core.number import ZERO, Decimal

from . import cash


@dataclass
class StockBuy:
    symbol: str
    quantity: Decimal
    price: Amount
    volume: Amount
    commission: Amount
    conclusion_date: datetime.date
    execution_date: datetime.date
    sold: Decimal = ZERO

    def get_unsold(self) -> Decimal:
        return self.quantity - self.sold

    def is_sold(self) -> bool:
        return self.sold == self.quantity

    def sell(self, quantity: Decimal) -> None:
        assert ZERO < quantity <= self.get_unsold(), (self.symbol, quantity)
        self.sold += quantity


@dataclass
class StockSellSource:
    """A part of a sell satisfied by a single buy lot."""

    quantity: Decimal
    price: Amount
    commission: Amount
    conclusion_date: datetime.date
    execution_date: datetime.date

    def cost(self) -> Amount:
        return cash.mul(self.price, self.quantity)


@dataclass
class StockSell:
    symbol: str
    quantity: Decimal
    price: Amount
    volume: Amount
    commission: Amount
    conclusion_date: datetime.date
    execution_date: datetime.date
    emulation: bool = False
    sources: List[StockSellSource] = field(default_factory=list)

    def is_processed(self) -> bool:
        return bool(self.sources)

    def process(self, sources: List[StockSellSource]) -> None:
        assert not self.is_processed(), self.symbol
        assert sum((source.quantity for source in sources), ZERO) == self.quantity, (
            self.symbol, sources)
        self.sources = sources

    def cost(self) -> Amount:
        """Acquisition cost of the sold shares."""
        assert self.is_processed(), self.symbol
        total = cash.zero(self.price.currency)
        for source in self.sources:
            total = cash.add(total, source.cost())
        return total

    def buy_commission(self) -> Amount:
        assert self.is_processed(), self.symbol
        total = cash.zero(self.commission.currency)
        for source in self.sources:
            total = cash.add(total, source.commission)
        return total

    def realized_profit(self) -> Amount:
        """Proceeds minus the acquisition cost and both commissions."""
        profit = cash.sub(self.volume, self.cost())
        profit = cash.sub(profit, self.commission)
        return cash.sub(profit, self.buy_commission())
