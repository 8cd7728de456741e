import datetime
import os

from beancount.core.amount import Amount
from beancount.core.number import D
import pytest

from . import load_reader
from .ib import _StatementParser, add_business_days, parse_period, parse_rows
from ..brokers import load_broker_info
from ..dividends import Dividend, IdleCashInterest
from ..errors import ConsistencyError, ParseError
from ..statement import read_statement
from ..taxes import TaxId

testdata_dir = os.path.realpath(
    os.path.join(
        os.path.dirname(__file__), '..', '..', 'testdata', 'source', 'ib'))


def usd(value):
    return Amount(D(value), 'USD')


def make_reader():
    return load_reader(
        dict(module='broker_ledger.source.ib', broker=dict(broker='interactive-brokers')),
        log_status=lambda message: None)


def parse(rows):
    parser = _StatementParser(load_broker_info(dict(broker='interactive-brokers')))
    parse_rows(parser, iter(rows))
    return parser.statement


def test_parse_period():
    assert parse_period('January 1, 2020 - December 31, 2020') == (
        datetime.date(2020, 1, 1), datetime.date(2021, 1, 1))
    assert parse_period('March 31, 2021') == (
        datetime.date(2021, 3, 31), datetime.date(2021, 4, 1))
    with pytest.raises(ParseError):
        parse_period('Last year')


def test_add_business_days():
    # Friday -> Tuesday
    assert add_business_days(datetime.date(2020, 1, 3), 2) == datetime.date(2020, 1, 7)
    # Monday -> Wednesday
    assert add_business_days(datetime.date(2020, 2, 3), 2) == datetime.date(2020, 2, 5)


def test_read():
    reader = make_reader()
    assert reader.is_statement('2020.csv')
    assert not reader.is_statement('2020.pdf')

    statement = reader.read(os.path.join(testdata_dir, '2020.csv'))

    assert statement.period == (datetime.date(2020, 1, 1), datetime.date(2021, 1, 1))
    assert statement.starting_assets is False
    assert statement.cash_flows == [(datetime.date(2020, 1, 15), usd('10000'))]
    assert list(statement.cash_assets) == [usd('5584.68')]
    assert statement.idle_cash_interest == [
        IdleCashInterest(date=datetime.date(2020, 12, 3), amount=usd('0.43'))]

    assert [(trade.symbol, trade.quantity, trade.price, trade.volume, trade.commission,
             trade.conclusion_date, trade.execution_date)
            for trade in statement.stock_buys] == [
        ('BND', D('15'), usd('85'), usd('1275'), usd('1'),
         datetime.date(2020, 2, 3), datetime.date(2020, 2, 5)),
        ('VTI', D('25'), usd('160'), usd('4000'), usd('1'),
         datetime.date(2020, 2, 3), datetime.date(2020, 2, 5)),
    ]
    stock_sell, = statement.stock_sells
    assert (stock_sell.symbol, stock_sell.quantity, stock_sell.volume) == (
        'VTI', D('5'), usd('850'))
    assert stock_sell.execution_date == datetime.date(2020, 9, 17)

    tax_id = TaxId(datetime.date(2020, 3, 26), 'VTI(US9229087690) Cash Dividend USD 0.7 per Share')
    dividend, = statement.dividends_without_paid_tax
    assert (dividend.issuer, dividend.amount, dividend.tax_id) == ('VTI', usd('17.5'), tax_id)
    assert statement.tax_changes[tax_id].amounts == [usd('5.25')]

    assert statement.open_positions == {'BND': D('15'), 'VTI': D('20')}
    assert statement.instrument_names == {
        'BND': 'VANGUARD TOTAL BOND MARKET',
        'VTI': 'VANGUARD TOTAL STOCK MKT ETF',
    }


def test_read_statement():
    statement = read_statement(make_reader(), testdata_dir)

    assert statement.period == (datetime.date(2020, 1, 1), datetime.date(2021, 4, 1))
    assert list(statement.cash_assets) == [usd('5157.18')]
    assert statement.dividends == [Dividend(
        date=datetime.date(2020, 3, 26), issuer='VTI', amount=usd('17.5'),
        paid_tax=usd('1.75'))]

    assert [trade.symbol for trade in statement.stock_buys] == ['BND', 'VTI', 'BND']
    assert statement.stock_buys[2].execution_date == datetime.date(2021, 2, 12)

    stock_sell, = statement.stock_sells
    assert stock_sell.buy_commission() == usd('0.2')
    assert stock_sell.realized_profit() == usd('48.8')
    assert statement.open_positions == {'BND': D('20'), 'VTI': D('20')}


def test_sections_interleaving():
    statement = parse([
        ['Statement', 'Header', 'Field Name', 'Field Value'],
        ['Statement', 'Data', 'Period', 'January 1, 2020 - January 31, 2020'],
        ['Disclosure', 'Header', 'Text'],
        ['Disclosure', 'Data', 'Anything'],
        ['Interest', 'Header', 'Currency', 'Date', 'Description', 'Amount'],
        ['Interest', 'Data', 'USD', '2020-01-03', 'USD Credit Interest', '1'],
        ['Deposits & Withdrawals', 'Header', 'Currency', 'Settle Date', 'Description', 'Amount'],
        ['Deposits & Withdrawals', 'Data', 'USD', '2020-01-02', 'Transfer', '100'],
        ['Interest', 'Header', 'Currency', 'Date', 'Description', 'Amount'],
        ['Interest', 'Data', 'USD', '2020-01-10', 'USD Credit Interest', '2'],
        ['Interest', 'Data', 'Total', '', '', '3'],
    ])

    assert statement.period == (datetime.date(2020, 1, 1), datetime.date(2020, 2, 1))
    assert [interest.amount for interest in statement.idle_cash_interest] == [usd('1'), usd('2')]
    assert statement.cash_flows == [(datetime.date(2020, 1, 2), usd('100'))]


def test_headerless_record():
    statement = parse([
        ['Notes', ''],
        ['Statement', 'Header', 'Field Name', 'Field Value'],
        ['Statement', 'Data', 'Period', 'January 1, 2020 - January 31, 2020'],
    ])
    assert statement.period == (datetime.date(2020, 1, 1), datetime.date(2020, 2, 1))


@pytest.mark.parametrize('rows,error', [
    ([['Statement']], 'Invalid record'),
    ([['Statement', 'Data', 'Period', 'January 1, 2020']], 'Invalid record'),
    ([['Statement', 'Header', 'Field Name', 'Field Value'],
      ['Statement', 'Data']], 'Invalid record'),
    ([['Dividends', 'Header', 'Currency', 'Date', 'Description', 'Amount'],
      ['Dividends', 'SubTotal', 'USD', '2020-01-03', 'VTI(US9229087690) Dividend', '1']],
     'Invalid data record type'),
    ([['Interest', 'Header', 'Currency', 'Date', 'Description'],
      ['Interest', 'Data', 'USD', '2020-01-03', 'USD Credit Interest']],
     'Failed to parse .* record: \'Interest\' record doesn\'t have \'Amount\' field'),
    ([['Trades', 'Header', 'DataDiscriminator', 'Asset Category', 'Currency', 'Symbol',
       'Date/Time', 'Quantity', 'T. Price', 'Proceeds', 'Comm/Fee'],
      ['Trades', 'Data', 'Order', 'Forex', 'USD', 'EUR.USD', '2020-01-03, 10:00:00',
       '100', '1.1', '-110', '-2']],
     'Unsupported asset category'),
])
def test_invalid_records(rows, error):
    with pytest.raises(ParseError, match=error):
        parse(rows)


def test_trade_sign_mismatch():
    with pytest.raises(ConsistencyError, match='Invalid trade volume'):
        parse([
            ['Trades', 'Header', 'DataDiscriminator', 'Asset Category', 'Currency', 'Symbol',
             'Date/Time', 'Quantity', 'T. Price', 'Proceeds', 'Comm/Fee'],
            ['Trades', 'Data', 'Order', 'Stocks', 'USD', 'VTI', '2020-01-03, 10:00:00',
             '10', '100', '1000', '-1'],
        ])


def test_missing_base_currency_summary(tmp_path):
    path = tmp_path / 'statement.csv'
    path.write_text('\n'.join([
        'Statement,Header,Field Name,Field Value',
        'Statement,Data,Period,"January 1, 2020 - January 31, 2020"',
        'Change in NAV,Header,Field Name,Field Value',
        'Change in NAV,Data,Starting Value,0',
    ]) + '\n')

    with pytest.raises(ParseError, match='Unable to find base currency summary'):
        make_reader().read(str(path))
