"""Reads Interactive Brokers activity statements in CSV format.

To use, specify:

    dict(module='broker_ledger.source.ib',
         broker=dict(broker='interactive-brokers'))

Statements are downloaded from Reports -> Activity -> Statements in the client
portal, selecting the CSV format.  Download statements for consecutive periods
(for example one per year, the last one up to now) starting from the account
opening: each file must start exactly where the previous one ends.

File format
===========

An activity statement is a sequence of sections interleaved in a single CSV
file.  The first field of every row is the section name, and the second is the
row kind:

    Statement,Header,Field Name,Field Value
    Statement,Data,Period,"January 1, 2020 - December 31, 2020"
    Trades,Header,DataDiscriminator,Asset Category,Currency,Symbol,...
    Trades,Data,Order,Stocks,USD,VTI,...
    Trades,SubTotal,,Stocks,USD,VTI,...

A "Header" row declares the columns of the following rows of the same section.
Sections are parsed by the handlers registered in `SECTION_PARSERS`; unknown
sections (IB adds new disclosures from time to time) are skipped.  An unknown
column requested by a handler is an error.
"""

from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Union
import csv
import datetime
import logging
import re

import dateutil.parser
from beancount.core.amount import Amount
from beancount.core.number import ZERO, Decimal

from ..amount_parsing import parse_number
from ..brokers import load_broker_info
from ..cash import CashAssets, DecimalRestrictions, validate_named_decimal
from ..dividends import DividendWithoutPaidTax, IdleCashInterest
from ..errors import ParseError, StatementError
from ..partial import PartialBrokerStatement
from ..taxes import TaxId
from ..trades import StockBuy, StockSell
from . import LogFunction, StatementReader

logger = logging.getLogger('broker-ledger')

BASE_CURRENCY_SUMMARY = 'Base Currency Summary'


def format_record(values: Sequence[str]) -> str:
    return ', '.join('"%s"' % value for value in values)


class RecordSpec(NamedTuple):
    name: str
    fields: List[str]
    offset: int

    def field_index(self, field: str) -> Optional[int]:
        try:
            return self.fields.index(field)
        except ValueError:
            return None


class Record:
    def __init__(self, spec: RecordSpec, values: List[str]) -> None:
        self.spec = spec
        self.values = values

    def get_value(self, field: str) -> str:
        value = self.get_optional_value(field)
        if value is None:
            raise ParseError('%r record doesn\'t have %r field' % (self.spec.name, field))
        return value

    def get_optional_value(self, field: str) -> Optional[str]:
        index = self.spec.field_index(field)
        if index is None:
            return None

        index += self.spec.offset
        if index >= len(self.values):
            raise ParseError('%r record doesn\'t have a value for %r field' % (
                self.spec.name, field))

        return self.values[index]

    def parse_date(self, field: str) -> datetime.date:
        return parse_date(self.get_value(field))

    def parse_decimal(self, field: str) -> Decimal:
        value = self.get_value(field)
        try:
            return parse_number(value)
        except ValueError as e:
            raise ParseError('Invalid %r value: %s' % (field, e)) from e

    def parse_amount(self, field: str, currency: str,
                     restriction: DecimalRestrictions) -> Amount:
        number = validate_named_decimal(field.lower(), self.parse_decimal(field), restriction)
        return Amount(number, currency)


def parse_header(values: List[str]) -> RecordSpec:
    offset = 2
    spec = RecordSpec(name=values[0], fields=values[offset:], offset=offset)
    logger.debug('Header: %s: %s.', spec.name, format_record(spec.fields))
    return spec


def parse_date(value: str) -> datetime.date:
    """Parses `2020-01-15` or `2020-01-15, 10:00:00` dates."""
    m = re.fullmatch(r'(\d{4}-\d{2}-\d{2})(?:,? \d{2}:\d{2}:\d{2})?', value.strip())
    if m is None:
        raise ParseError('Invalid date: %r' % value)
    return datetime.datetime.strptime(m.group(1), '%Y-%m-%d').date()


def parse_period(value: str):
    """Parses `January 1, 2020 - December 31, 2020` into a half-open period."""
    dates = value.split(' - ')
    if len(dates) == 1:
        dates = dates * 2
    if len(dates) != 2:
        raise ParseError('Invalid statement period: %r' % value)

    try:
        start, end = [dateutil.parser.parse(date).date() for date in dates]
    except (ValueError, OverflowError) as e:
        raise ParseError('Invalid statement period: %r' % value) from e

    return start, end + datetime.timedelta(days=1)


def add_business_days(date: datetime.date, days: int) -> datetime.date:
    while days > 0:
        date += datetime.timedelta(days=1)
        if date.weekday() < 5:
            days -= 1
    return date


class _StatementParser:
    def __init__(self, broker) -> None:
        self.statement = PartialBrokerStatement(broker)
        self.base_currency = None  # type: Optional[str]
        self.base_currency_summary = None  # type: Optional[Amount]

    def get_base_currency(self) -> str:
        if self.base_currency is None:
            raise ParseError('Unable to determine account base currency')
        return self.base_currency


class SectionParser(NamedTuple):
    """Handles the data rows of a single section.

    :param parse: Called with the statement parser and each data row.
    :param data_types: Allowed row kinds; any other kind is an error.
    :param skip_data_types: Row kinds that are silently skipped.
    :param skip_totals: Skip rows whose first field starts with "Total".
    """
    parse: Callable[[_StatementParser, Record], None]
    data_types: Optional[Sequence[str]] = ('Data', )
    skip_data_types: Optional[Sequence[str]] = None
    skip_totals: bool = False


def parse_statement_info(parser: _StatementParser, record: Record) -> None:
    if record.get_value('Field Name') == 'Period':
        parser.statement.set_period(parse_period(record.get_value('Field Value')))


def parse_account_information(parser: _StatementParser, record: Record) -> None:
    if record.get_value('Field Name') == 'Base Currency':
        parser.base_currency = record.get_value('Field Value')


def parse_change_in_nav(parser: _StatementParser, record: Record) -> None:
    if record.get_value('Field Name') == 'Starting Value':
        parser.statement.set_starting_assets(record.parse_decimal('Field Value') != ZERO)


def parse_cash_report(parser: _StatementParser, record: Record) -> None:
    summary = record.get_value('Currency Summary')
    currency = record.get_value('Currency')

    if summary == 'Starting Cash' and currency == BASE_CURRENCY_SUMMARY:
        parser.statement.set_starting_assets(record.parse_decimal('Total') != ZERO)
    elif summary == 'Ending Cash':
        if currency == BASE_CURRENCY_SUMMARY:
            parser.base_currency_summary = Amount(
                record.parse_decimal('Total'), parser.get_base_currency())
        else:
            parser.statement.cash_assets.deposit(Amount(record.parse_decimal('Total'), currency))


def parse_open_position(parser: _StatementParser, record: Record) -> None:
    data_type = record.get_value('DataDiscriminator')
    if data_type != 'Summary':
        raise ParseError('Unsupported open position record type: %r' % data_type)

    asset_category = record.get_value('Asset Category')
    if asset_category != 'Stocks':
        raise ParseError('Unsupported asset category: %r' % asset_category)

    quantity = validate_named_decimal(
        'open position quantity', record.parse_decimal('Quantity'),
        DecimalRestrictions.STRICTLY_POSITIVE)
    parser.statement.add_open_position(record.get_value('Symbol'), quantity)


def parse_trade(parser: _StatementParser, record: Record) -> None:
    data_type = record.get_value('DataDiscriminator')
    if data_type == 'ClosedLot':
        return
    elif data_type != 'Order':
        raise ParseError('Unsupported trade record type: %r' % data_type)

    asset_category = record.get_value('Asset Category')
    if asset_category != 'Stocks':
        raise ParseError('Unsupported asset category: %r' % asset_category)

    currency = record.get_value('Currency')
    symbol = record.get_value('Symbol')
    conclusion_date = record.parse_date('Date/Time')

    settle_date = record.get_optional_value('Settle Date')
    if settle_date:
        execution_date = parse_date(settle_date)
    else:
        execution_date = add_business_days(conclusion_date, 2)

    quantity = validate_named_decimal(
        'trade quantity', record.parse_decimal('Quantity'), DecimalRestrictions.NON_ZERO)
    price = record.parse_amount('T. Price', currency, DecimalRestrictions.STRICTLY_POSITIVE)
    commission = -record.parse_decimal('Comm/Fee')
    validate_named_decimal('commission', commission, DecimalRestrictions.POSITIVE_OR_ZERO)
    proceeds = record.parse_decimal('Proceeds')

    if quantity > ZERO:
        validate_named_decimal('trade volume', proceeds, DecimalRestrictions.STRICTLY_NEGATIVE)
        parser.statement.stock_buys.append(StockBuy(
            symbol=symbol, quantity=quantity, price=price, volume=Amount(-proceeds, currency),
            commission=Amount(commission, currency), conclusion_date=conclusion_date,
            execution_date=execution_date))
    else:
        validate_named_decimal('trade volume', proceeds, DecimalRestrictions.STRICTLY_POSITIVE)
        parser.statement.stock_sells.append(StockSell(
            symbol=symbol, quantity=-quantity, price=price, volume=Amount(proceeds, currency),
            commission=Amount(commission, currency), conclusion_date=conclusion_date,
            execution_date=execution_date))


def parse_deposit_or_withdrawal(parser: _StatementParser, record: Record) -> None:
    currency = record.get_value('Currency')
    date = record.parse_date('Settle Date')
    amount = record.parse_amount('Amount', currency, DecimalRestrictions.NON_ZERO)
    parser.statement.cash_flows.append(CashAssets(date, amount))


def parse_dividend_description(description: str) -> str:
    """Returns the part of the description shared with the withholding record.

    `VTI(US9229087690) Cash Dividend USD 0.6 per Share (Ordinary Dividend)` ->
    `VTI(US9229087690) Cash Dividend USD 0.6 per Share`.
    """
    return re.sub(r' \([^()]*\)$', '', description)


def parse_tax_description(description: str) -> str:
    """`VTI(US9229087690) Cash Dividend USD 0.6 per Share - US Tax` ->
    `VTI(US9229087690) Cash Dividend USD 0.6 per Share`.
    """
    m = re.fullmatch(r'(.+) - [A-Z]{2} Tax', description)
    if m is None:
        raise ParseError('Unexpected tax description: %r' % description)
    return m.group(1)


def parse_dividend_issuer(description: str) -> str:
    m = re.match(r'([A-Za-z0-9.]+) ?\([A-Z0-9]+\) ', description)
    if m is None:
        raise ParseError('Unable to determine dividend issuer: %r' % description)
    return m.group(1)


def parse_dividend(parser: _StatementParser, record: Record) -> None:
    currency = record.get_value('Currency')
    date = record.parse_date('Date')
    description = record.get_value('Description')
    amount = record.parse_amount('Amount', currency, DecimalRestrictions.STRICTLY_POSITIVE)

    parser.statement.dividends_without_paid_tax.append(DividendWithoutPaidTax(
        date=date, issuer=parse_dividend_issuer(description), amount=amount,
        tax_id=TaxId(date, parse_dividend_description(description))))


def parse_withholding_tax(parser: _StatementParser, record: Record) -> None:
    currency = record.get_value('Currency')
    date = record.parse_date('Date')
    description = parse_tax_description(record.get_value('Description'))

    # Withheld tax is negative, its reversal is positive.
    tax = -validate_named_decimal(
        'withholding tax', record.parse_decimal('Amount'), DecimalRestrictions.NON_ZERO)
    parser.statement.add_tax_change(TaxId(date, description), Amount(tax, currency))


def parse_interest(parser: _StatementParser, record: Record) -> None:
    currency = record.get_value('Currency')
    amount = record.parse_amount('Amount', currency, DecimalRestrictions.NON_ZERO)
    parser.statement.idle_cash_interest.append(
        IdleCashInterest(date=record.parse_date('Date'), amount=amount))


def parse_instrument_information(parser: _StatementParser, record: Record) -> None:
    if record.get_value('Asset Category') != 'Stocks':
        return
    parser.statement.instrument_names[record.get_value('Symbol')] = record.get_value('Description')


def parse_unknown(parser: _StatementParser, record: Record) -> None:
    pass


SECTION_PARSERS = {
    'Statement': SectionParser(parse_statement_info),
    'Account Information': SectionParser(parse_account_information),
    'Change in NAV': SectionParser(parse_change_in_nav),
    'Cash Report': SectionParser(parse_cash_report),
    'Open Positions': SectionParser(parse_open_position, skip_data_types=('Total', )),
    'Trades': SectionParser(parse_trade, skip_data_types=('SubTotal', 'Total')),
    'Deposits & Withdrawals': SectionParser(parse_deposit_or_withdrawal, skip_totals=True),
    'Dividends': SectionParser(parse_dividend, skip_totals=True),
    'Withholding Tax': SectionParser(parse_withholding_tax, skip_totals=True),
    'Interest': SectionParser(parse_interest, skip_totals=True),
    'Financial Instrument Information': SectionParser(parse_instrument_information),
}  # type: Dict[str, SectionParser]

UNKNOWN_SECTION_PARSER = SectionParser(parse_unknown, data_types=None)


class Idle(NamedTuple):
    pass


class PendingRow(NamedTuple):
    row: List[str]


class ActiveHeader(NamedTuple):
    row: List[str]


State = Union[Idle, PendingRow, ActiveHeader]


def parse_rows(parser: _StatementParser, rows: Iterator[List[str]]) -> None:
    state = Idle()  # type: State

    while True:
        if isinstance(state, Idle):
            row = next(rows, None)
            if row is None:
                break
            state = PendingRow(row)

        elif isinstance(state, PendingRow):
            row = state.row
            if len(row) < 2:
                raise ParseError('Invalid record: %s' % format_record(row))

            if row[1] == 'Header':
                state = ActiveHeader(row)
            elif row[1] == '':
                logger.debug('Headerless record: %s.', format_record(row))
                state = Idle()
            else:
                raise ParseError('Invalid record: %s' % format_record(row))

        else:
            spec = parse_header(state.row)
            section_parser = SECTION_PARSERS.get(spec.name, UNKNOWN_SECTION_PARSER)
            state = Idle()

            for row in rows:
                if len(row) < 3:
                    raise ParseError('Invalid record: %s' % format_record(row))

                if row[0] != spec.name:
                    state = PendingRow(row)
                    break
                elif row[1] == 'Header':
                    state = ActiveHeader(row)
                    break

                _parse_section_row(parser, section_parser, spec, row)
            else:
                break


def _parse_section_row(parser: _StatementParser, section_parser: SectionParser,
                       spec: RecordSpec, row: List[str]) -> None:
    data_type = row[1]

    if section_parser.skip_data_types is not None and data_type in section_parser.skip_data_types:
        return

    if section_parser.data_types is not None and data_type not in section_parser.data_types:
        raise ParseError('Invalid data record type: %s' % format_record(row))

    # Matches totals records. For example:
    # * Deposits & Withdrawals,Data,Total,,,1000
    # * Interest,Data,Total in USD,,,100
    # * Interest,Data,Total Interest in USD,,,100
    if section_parser.skip_totals and row[2].startswith('Total'):
        return

    try:
        section_parser.parse(parser, Record(spec, row))
    except StatementError as e:
        raise type(e)('Failed to parse (%s) record: %s' % (format_record(row), e)) from e
    except ValueError as e:
        raise ParseError('Failed to parse (%s) record: %s' % (format_record(row), e)) from e


class InteractiveBrokersReader(StatementReader):
    @property
    def name(self) -> str:
        return 'ib'

    def is_statement(self, file_name: str) -> bool:
        return file_name.endswith('.csv')

    def read(self, path: str) -> PartialBrokerStatement:
        self.log_status('ib: processing %s' % (path, ))

        parser = _StatementParser(self.broker)
        with open(path, 'r', newline='', encoding='utf-8-sig') as f:
            parse_rows(parser, iter(csv.reader(f)))

        statement = parser.statement

        # When the statement has no non-base currency activity it contains
        # only the base currency summary.
        if statement.cash_assets.is_empty():
            if parser.base_currency_summary is None:
                raise ParseError('Unable to find base currency summary')
            statement.cash_assets.deposit(parser.base_currency_summary)

        return statement.validate()


def load(spec, log_status: LogFunction):
    broker = load_broker_info(spec.get('broker', dict(broker='interactive-brokers')))
    return InteractiveBrokersReader(broker, log_status=log_status)
