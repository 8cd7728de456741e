from dataclasses import dataclass
from typing import Dict
import datetime

from beancount.core.amount import Amount

from . import cash
from .errors import TaxError
from .taxes import TaxId, format_tax_id


@dataclass
class Dividend:
    date: datetime.date
    issuer: str
    amount: Amount
    paid_tax: Amount

    def net_amount(self) -> Amount:
        return cash.sub(self.amount, self.paid_tax)


@dataclass
class DividendWithoutPaidTax:
    """A dividend whose withheld tax is not known until all statements are read."""

    date: datetime.date
    issuer: str
    amount: Amount
    tax_id: TaxId

    def upgrade(self, taxes: Dict[TaxId, Amount]) -> Dividend:
        paid_tax = taxes.pop(self.tax_id, None)
        if paid_tax is None:
            paid_tax = cash.zero(self.amount.currency)
        elif paid_tax.currency != self.amount.currency:
            raise TaxError('%s tax is paid in %s while the dividend is paid in %s' % (
                format_tax_id(self.tax_id), paid_tax.currency, self.amount.currency))

        return Dividend(date=self.date, issuer=self.issuer, amount=self.amount,
                        paid_tax=paid_tax)


@dataclass
class IdleCashInterest:
    date: datetime.date
    amount: Amount
