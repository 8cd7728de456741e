"""Withholding tax aggregation.

Brokers report withheld taxes separately from the dividends they were
withheld from, and corrections may arrive in a later statement than the
original withholding (reversal of the old amount plus the new one, both
dated with the original date).  All adjustments are accumulated by `TaxId`
across every partial statement and resolved only after the whole statement
has been merged.
"""

from typing import TYPE_CHECKING, Dict, List, NamedTuple
import datetime

from beancount.core.amount import Amount
from beancount.core.number import ZERO

from . import cash
from .errors import ConsistencyError, TaxError

if TYPE_CHECKING:
    from .dividends import Dividend, DividendWithoutPaidTax  # For type annotations only.
    from .partial import PartialBrokerStatement  # For type annotations only.


class TaxId(NamedTuple):
    date: datetime.date
    description: str


class TaxChanges:
    """Signed withholding adjustments for a single tax."""

    def __init__(self) -> None:
        self.amounts = []  # type: List[Amount]

    def __repr__(self) -> str:
        return 'TaxChanges(%s)' % ', '.join(cash.format_cash(amount) for amount in self.amounts)

    def __eq__(self, other) -> bool:
        if not isinstance(other, TaxChanges):
            return NotImplemented
        return self.amounts == other.amounts

    def add(self, amount: Amount) -> None:
        self.amounts.append(amount)

    def merge(self, other: 'TaxChanges') -> None:
        self.amounts.extend(other.amounts)

    def get_result_tax(self) -> Amount:
        if not self.amounts:
            raise TaxError('Got a tax without any withholding records')

        result = cash.zero(self.amounts[0].currency)
        try:
            for amount in self.amounts:
                result = cash.add(result, amount)
        except ConsistencyError as e:
            raise TaxError(str(e)) from e

        if result.number < ZERO:
            raise TaxError('Got a negative withheld tax: %s' % cash.format_cash(result))

        return result


def format_tax_id(tax_id: TaxId) -> str:
    return '%s: %s' % (tax_id.date.strftime('%d.%m.%Y'), tax_id.description)


class TaxAccumulator:
    """Withholding taxes and the dividends waiting for them during a merge."""

    def __init__(self) -> None:
        self.dividends_without_paid_tax = []  # type: List[DividendWithoutPaidTax]
        self.tax_changes = {}  # type: Dict[TaxId, TaxChanges]

    def add(self, statement: 'PartialBrokerStatement') -> None:
        self.dividends_without_paid_tax.extend(statement.dividends_without_paid_tax)

        for tax_id, changes in statement.tax_changes.items():
            existing = self.tax_changes.get(tax_id)
            if existing is None:
                existing = self.tax_changes[tax_id] = TaxChanges()
            existing.merge(changes)

    def resolve(self) -> 'List[Dividend]':
        """Attaches the net withheld taxes to the accumulated dividends.

        Every accumulated tax must be consumed by exactly one dividend.
        """
        taxes = {}  # type: Dict[TaxId, Amount]

        for tax_id, changes in self.tax_changes.items():
            try:
                taxes[tax_id] = changes.get_result_tax()
            except TaxError as e:
                raise TaxError('Failed to process %s tax: %s' % (format_tax_id(tax_id), e)) from e

        dividends = [
            dividend.upgrade(taxes) for dividend in self.dividends_without_paid_tax]

        if taxes:
            raise TaxError('Unable to find origin operations for the following taxes:\n%s' % (
                '\n'.join('* ' + format_tax_id(tax_id) for tax_id in sorted(taxes))))

        return dividends
