"""Broker configuration and commission schedules.

A broker is configured with a plain dictionary:

    dict(broker='interactive-brokers',
         currency='USD',
         commission=dict(per_share='0.005', minimum='$1', maximum_percent='1'))

All `commission` keys are optional; missing ones fall back to the broker's
default schedule.  `minimum` may carry a currency (`'$1'`, `'1 USD'`), otherwise
the broker currency is assumed.
"""

from typing import NamedTuple, Optional

import jsonschema
from beancount.core.amount import Amount
from beancount.core.number import D, ZERO, Decimal
from typing_extensions import TypedDict

from .amount_parsing import parse_amount
from .cash import round_to
from .errors import ConfigError


class CommissionSpecDict(TypedDict, total=False):
    per_share: str
    percent: str
    minimum: str
    maximum_percent: str


class BrokerConfigDict(TypedDict, total=False):
    broker: str
    currency: str
    commission: CommissionSpecDict


_decimal_string = {'type': 'string', 'pattern': r'^[0-9]+(\.[0-9]+)?$'}

schema = {
    '#schema': 'http://json-schema.org/draft-07/schema#',
    'description': 'JSON schema for the broker configuration.',
    'type': 'object',
    'properties': {
        'broker': {
            'type': 'string',
            'enum': ['interactive-brokers', 'firstrade', 'tinkoff'],
        },
        'currency': {
            'type': 'string',
            'pattern': '^[A-Z]{3}$',
        },
        'commission': {
            'type': 'object',
            'properties': {
                'per_share': _decimal_string,
                'percent': _decimal_string,
                'minimum': {'type': 'string'},
                'maximum_percent': _decimal_string,
            },
            'additionalProperties': False,
        },
    },
    'required': ['broker'],
    'additionalProperties': False,
}


class CommissionSpec(NamedTuple):
    per_share: Decimal = ZERO
    percent: Decimal = ZERO
    minimum: Optional[Amount] = None
    maximum_percent: Optional[Decimal] = None


class BrokerInfo(NamedTuple):
    name: str
    currency: str
    commission_spec: CommissionSpec

    def get_trade_commission(self, quantity: Decimal, price: Amount) -> Amount:
        """Returns the commission the broker charges for the specified trade."""
        if price.currency != self.currency:
            raise ConfigError('%s commission schedule is defined in %s, got a trade in %s' % (
                self.name, self.currency, price.currency))

        spec = self.commission_spec
        volume = price.number * quantity
        commission = spec.per_share * quantity + volume * spec.percent / 100

        if spec.minimum is not None and commission < spec.minimum.number:
            commission = spec.minimum.number

        if spec.maximum_percent is not None:
            commission = min(commission, volume * spec.maximum_percent / 100)

        return Amount(round_to(commission, 2), self.currency)


_brokers = {
    'interactive-brokers': ('Interactive Brokers', 'USD', dict(
        per_share='0.005', minimum='1', maximum_percent='1')),
    'firstrade': ('Firstrade', 'USD', dict()),
    'tinkoff': ('Тинькофф', 'RUB', dict(percent='0.3')),
}


def load_broker_info(config: BrokerConfigDict) -> BrokerInfo:
    try:
        jsonschema.validate(config, schema)
    except jsonschema.ValidationError as e:
        raise ConfigError('Invalid broker configuration: %s' % e.message) from e

    name, default_currency, default_commission = _brokers[config['broker']]
    currency = config.get('currency', default_currency)
    commission = dict(default_commission, **config.get('commission', {}))

    minimum = None
    if 'minimum' in commission:
        try:
            minimum = parse_amount(commission['minimum'], assumed_currency=currency)
        except ValueError as e:
            raise ConfigError('Invalid minimum commission: %s' % e) from e
        if minimum.currency != currency:
            raise ConfigError('Minimum commission must be specified in %s' % currency)

    maximum_percent = commission.get('maximum_percent')

    return BrokerInfo(
        name=name,
        currency=currency,
        commission_spec=CommissionSpec(
            per_share=D(commission.get('per_share', '0')),
            percent=D(commission.get('percent', '0')),
            minimum=minimum,
            maximum_percent=None if maximum_percent is None else D(maximum_percent),
        ))
