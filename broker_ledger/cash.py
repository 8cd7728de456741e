"""Cash amounts tagged with a currency.

Money is represented by `beancount.core.amount.Amount`.  The helpers below
refuse to mix currencies: multi-currency totals are kept in a
`MultiCurrencyCashAccount`, never summed.
"""

from typing import Dict, Iterator, NamedTuple, Optional, Tuple
import datetime
import decimal
import enum

from beancount.core.amount import Amount
from beancount.core.number import ZERO, Decimal

from .errors import ConsistencyError


def _check_currency(a: Amount, b: Amount) -> None:
    if a.currency != b.currency:
        raise ConsistencyError('Currency mismatch: %s vs %s' %
                               (format_cash(a), format_cash(b)))


def add(a: Amount, b: Amount) -> Amount:
    _check_currency(a, b)
    return Amount(a.number + b.number, a.currency)


def sub(a: Amount, b: Amount) -> Amount:
    _check_currency(a, b)
    return Amount(a.number - b.number, a.currency)


def mul(a: Amount, number: Decimal) -> Amount:
    return Amount(a.number * number, a.currency)


def div(a: Amount, number: Decimal) -> Amount:
    return Amount(a.number / number, a.currency)


def neg(a: Amount) -> Amount:
    return Amount(-a.number, a.currency)


def zero(currency: str) -> Amount:
    return Amount(ZERO, currency)


def round_to(value: Decimal, points: int) -> Decimal:
    """Rounds half up to `points` decimal places."""
    return value.quantize(Decimal(1).scaleb(-points), rounding=decimal.ROUND_HALF_UP)


def round_cash(amount: Amount, points: int = 2) -> Amount:
    return Amount(round_to(amount.number, points), amount.currency)


def format_cash(amount: Amount) -> str:
    return '%s %s' % (amount.number, amount.currency)


class DecimalRestrictions(enum.Enum):
    NON_ZERO = 'non-zero'
    STRICTLY_POSITIVE = 'strictly positive'
    POSITIVE_OR_ZERO = 'positive or zero'
    STRICTLY_NEGATIVE = 'strictly negative'
    NEGATIVE_OR_ZERO = 'negative or zero'

    def check(self, value: Decimal) -> bool:
        if self is DecimalRestrictions.NON_ZERO:
            return value != ZERO
        if self is DecimalRestrictions.STRICTLY_POSITIVE:
            return value > ZERO
        if self is DecimalRestrictions.POSITIVE_OR_ZERO:
            return value >= ZERO
        if self is DecimalRestrictions.STRICTLY_NEGATIVE:
            return value < ZERO
        return value <= ZERO


def validate_named_decimal(name: str, value: Decimal,
                           restriction: DecimalRestrictions) -> Decimal:
    if not restriction.check(value):
        raise ConsistencyError('Invalid %s: %s' % (name, value))
    return value


def validate_named_cash(name: str, amount: Amount,
                        restriction: DecimalRestrictions) -> Amount:
    validate_named_decimal(name, amount.number, restriction)
    return amount


CashAssets = NamedTuple('CashAssets', [
    ('date', datetime.date),
    ('cash', Amount),
])


class MultiCurrencyCashAccount:
    """Per-currency cash balances."""

    def __init__(self) -> None:
        self.assets = {}  # type: Dict[str, Amount]

    def __repr__(self) -> str:
        return 'MultiCurrencyCashAccount(%s)' % ', '.join(
            format_cash(amount) for amount in self)

    def __eq__(self, other) -> bool:
        if not isinstance(other, MultiCurrencyCashAccount):
            return NotImplemented
        return self.assets == other.assets

    def __iter__(self) -> Iterator[Amount]:
        for currency in sorted(self.assets):
            yield self.assets[currency]

    def is_empty(self) -> bool:
        return not self.assets

    def get(self, currency: str) -> Optional[Amount]:
        return self.assets.get(currency)

    def items(self) -> Iterator[Tuple[str, Amount]]:
        for amount in self:
            yield amount.currency, amount

    def deposit(self, amount: Amount) -> None:
        existing = self.assets.get(amount.currency)
        if existing is None:
            self.assets[amount.currency] = amount
        else:
            self.assets[amount.currency] = add(existing, amount)

    def withdraw(self, amount: Amount) -> None:
        self.deposit(neg(amount))
