import datetime

from beancount.core.amount import Amount
from beancount.core.number import D
import openpyxl
import pytest

from . import load_reader
from ..errors import ParseError
from ..statement import BrokerStatement, read_statement

PERIOD_TITLE = 'Отчет о сделках и операциях за период 01.01.2020 - 31.12.2020'
CASH_HEADER = [
    'Валюта', 'Входящий остаток на начало периода', 'Исходящий остаток на конец периода',
    'Плановый исходящий остаток',
]
SECURITIES_HEADER = [
    'Сокращенное наименование актива', 'Код актива', 'ISIN', 'Входящий остаток',
    'Зачисление', 'Списание', 'Исходящий остаток',
]


def make_reader():
    return load_reader(
        dict(module='broker_ledger.source.tinkoff', broker=dict(broker='tinkoff')),
        log_status=lambda message: None)


def write_report(path, rows, sheet_name='broker_rep'):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    for row in rows:
        sheet.append(row)
    workbook.save(str(path))
    return str(path)


def report_rows(cash_rows, securities_rows=None, period_title=PERIOD_TITLE):
    rows = [
        [None, 'АО «Тинькофф Банк»'],
        [],
        [period_title],
        ['Дата расчета: 31.12.2020'],
        [],
        ['1.1 Информация о совершенных и исполненных сделках на конец отчетного периода'],
        ['Номер сделки', 'Дата заключения'],
        [],
        ['2. Операции с денежными средствами'],
        CASH_HEADER,
    ] + cash_rows
    if securities_rows is not None:
        rows += [[], ['3.1 Движение по ценным бумагам инвестора'], SECURITIES_HEADER]
        rows += securities_rows
    return rows


def test_read(tmp_path):
    path = write_report(tmp_path / 'report.xlsx', report_rows(
        [['RUB', '0', '1 500,25', '1 500,25'], ['USD', 0, 12.5, 12.5]],
        [['FinEx USA', 'FXUS', 'IE00BD3QHZ91', 0, 10, 0, 10]]))

    reader = make_reader()
    assert reader.is_statement('report.xlsx')
    assert not reader.is_statement('report.xls')

    statement = reader.read(path)
    assert statement.period == (datetime.date(2020, 1, 1), datetime.date(2021, 1, 1))
    assert statement.starting_assets is False
    assert list(statement.cash_assets) == [
        Amount(D('1500.25'), 'RUB'), Amount(D('12.5'), 'USD')]
    assert statement.open_positions == {'FXUS': D('10')}
    assert statement.instrument_names == {'FXUS': 'FinEx USA'}


def test_starting_assets(tmp_path):
    path = write_report(tmp_path / 'report.xlsx', report_rows(
        [['RUB', '100', '0', '0']]))
    assert make_reader().read(path).starting_assets is True


def test_read_statement(tmp_path):
    write_report(tmp_path / '2020.xlsx', report_rows([['RUB', '0', '1000', '1000']]))
    write_report(tmp_path / '2021.xlsx', report_rows(
        [['RUB', '1000', '1000', '1000']],
        period_title='Отчет о сделках и операциях за период 01.01.2021 - 30.06.2021'))

    statement = read_statement(make_reader(), str(tmp_path))
    assert isinstance(statement, BrokerStatement)
    assert statement.period == (datetime.date(2020, 1, 1), datetime.date(2021, 7, 1))
    assert list(statement.cash_assets) == [Amount(D('1000'), 'RUB')]
    assert statement.broker.name == 'Тинькофф'


def test_missing_required_section(tmp_path):
    rows = [row for row in report_rows([['RUB', '0', '1000', '1000']])
            if row[:1] != ['2. Операции с денежными средствами']]
    path = write_report(tmp_path / 'report.xlsx', rows)
    with pytest.raises(ParseError, match='Unable to find \'2. Операции с денежными средствами\' section'):
        make_reader().read(path)


def test_missing_column(tmp_path):
    rows = report_rows([['RUB', '0', '1000', '1000']])
    rows[rows.index(CASH_HEADER)] = ['Валюта', 'Входящий остаток на начало периода']
    path = write_report(tmp_path / 'report.xlsx', rows)
    with pytest.raises(ParseError, match='Unable to find \'Исходящий остаток на конец периода\' column'):
        make_reader().read(path)


def test_invalid_period(tmp_path):
    path = write_report(tmp_path / 'report.xlsx', report_rows(
        [['RUB', '0', '1000', '1000']],
        period_title='Отчет о сделках и операциях за период 2020'))
    with pytest.raises(ParseError, match='Invalid statement period'):
        make_reader().read(path)


def test_missing_sheet(tmp_path):
    path = write_report(tmp_path / 'report.xlsx', report_rows([['RUB', '0', '1000', '1000']]),
                        sheet_name='Sheet')
    with pytest.raises(ParseError, match='no \'broker_rep\' sheet'):
        make_reader().read(path)
