"""Country tax rules."""

from typing import NamedTuple, Optional

from beancount.core.number import D, ZERO, Decimal

from .cash import round_to


class Country(NamedTuple):
    currency: str
    tax_rate: Decimal
    tax_precision: int

    def round_tax(self, tax: Decimal) -> Decimal:
        return round_to(tax, self.tax_precision)

    def tax_to_pay(self, income: Decimal, paid_tax: Optional[Decimal] = None) -> Decimal:
        """Returns the tax to pay for `income`.

        If the tax has already been withheld abroad (`paid_tax`), it's deducted
        from the result, which never goes below zero.
        """
        if income <= ZERO:
            return ZERO

        tax_to_pay = self.round_tax(income * self.tax_rate)

        if paid_tax is None:
            return tax_to_pay

        assert paid_tax >= ZERO, paid_tax
        tax_deduction = self.round_tax(paid_tax)

        if tax_deduction < tax_to_pay:
            return tax_to_pay - tax_deduction
        return ZERO

    def deduce_income(self, net_income: Decimal) -> Decimal:
        """Restores the gross income from an amount with the tax already withheld."""
        return self.round_tax(net_income / (1 - self.tax_rate))


def russia() -> Country:
    return Country(currency='RUB', tax_rate=D('0.13'), tax_precision=0)


def us() -> Country:
    return Country(currency='USD', tax_rate=D('0.1'), tax_precision=2)
