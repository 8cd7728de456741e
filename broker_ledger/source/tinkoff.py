"""Reads Tinkoff broker reports in xlsx format.

To use, specify:

    dict(module='broker_ledger.source.tinkoff',
         broker=dict(broker='tinkoff'))

The report is downloaded from the personal account as "Брокерский отчет" in
Excel format; its data lives on the `broker_rep` sheet.

Only the statement period, cash balances and securities balances are read;
trades and income are not extracted from these reports yet, so a statement
with non-empty positions won't pass open position validation.
"""

import datetime
import os
import re

from beancount.core.amount import Amount
from beancount.core.number import ZERO

from ..amount_parsing import parse_number
from ..brokers import load_broker_info
from ..errors import ParseError
from ..partial import PartialBrokerStatement
from . import LogFunction, StatementReader
from .xls import Section, SectionData, Table, XlsStatementParser, parse_date

SHEET_NAME = 'broker_rep'

PERIOD_SECTION = 'Отчет о сделках и операциях за период '
CASH_SECTION = '2. Операции с денежными средствами'
SECURITIES_SECTION = '3.1 Движение по ценным бумагам инвестора'


def parse_period(statement: PartialBrokerStatement, section: SectionData) -> None:
    period = section.title[len(PERIOD_SECTION):].strip()
    m = re.fullmatch(r'(\d{2}\.\d{2}\.\d{4})\s*-\s*(\d{2}\.\d{2}\.\d{4})', period)
    if m is None:
        raise ParseError('Invalid statement period: %r' % period)

    start, end = parse_date(m.group(1)), parse_date(m.group(2))
    statement.set_period((start, end + datetime.timedelta(days=1)))


def parse_cash(statement: PartialBrokerStatement, section: SectionData) -> None:
    table = Table(section)
    statement.set_starting_assets(False)

    for row in table.rows:
        currency = str(table.get(row, 'Валюта'))
        incoming = parse_number(table.get(row, 'Входящий остаток на начало периода'))
        outgoing = parse_number(table.get(row, 'Исходящий остаток на конец периода'))

        statement.set_starting_assets(incoming != ZERO)
        statement.cash_assets.deposit(Amount(outgoing, currency))


def parse_securities(statement: PartialBrokerStatement, section: SectionData) -> None:
    table = Table(section)

    for row in table.rows:
        symbol = str(table.get(row, 'Код актива'))
        incoming = parse_number(table.get(row, 'Входящий остаток'))
        outgoing = parse_number(table.get(row, 'Исходящий остаток'))

        statement.instrument_names[symbol] = str(
            table.get(row, 'Сокращенное наименование актива'))
        statement.set_starting_assets(incoming != ZERO)
        if outgoing != ZERO:
            statement.add_open_position(symbol, outgoing)


class TinkoffReader(StatementReader):
    @property
    def name(self) -> str:
        return 'tinkoff'

    def is_statement(self, file_name: str) -> bool:
        return os.path.splitext(file_name)[1].lower() == '.xlsx'

    def read(self, path: str) -> PartialBrokerStatement:
        self.log_status('tinkoff: processing %s' % (path, ))
        return XlsStatementParser.read(self.broker, path, SHEET_NAME, [
            Section(PERIOD_SECTION, by_prefix=True, required=True, parser=parse_period),
            Section(CASH_SECTION, required=True, parser=parse_cash),
            Section(SECURITIES_SECTION, parser=parse_securities),
        ])


def load(spec, log_status: LogFunction):
    broker = load_broker_info(spec.get('broker', dict(broker='tinkoff')))
    return TinkoffReader(broker, log_status=log_status)
