import datetime
import logging

from beancount.core.amount import Amount
from beancount.core.number import D
import pytest

from .brokers import load_broker_info
from .cash import CashAssets
from .dividends import Dividend, DividendWithoutPaidTax
from .errors import ConsistencyError, ContinuityError, ParseError, StatementError, TaxError
from .partial import PartialBrokerStatement
from .statement import BrokerStatement, read_statement
from .taxes import TaxId
from .trades import StockBuy

broker = load_broker_info(dict(broker='interactive-brokers'))


def usd(value):
    return Amount(D(value), 'USD')


def make_partial(start, end, starting_assets=False):
    statement = PartialBrokerStatement(broker)
    statement.set_period((start, end + datetime.timedelta(days=1)))
    statement.set_starting_assets(starting_assets)
    return statement


def make_buy(symbol, quantity, price, date, commission='1'):
    quantity = D(quantity)
    return StockBuy(
        symbol=symbol, quantity=quantity, price=usd(price), volume=usd(str(D(price) * quantity)),
        commission=usd(commission), conclusion_date=date,
        execution_date=date + datetime.timedelta(days=2))


def make_statements():
    first = make_partial(datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))
    first.cash_flows.append(CashAssets(datetime.date(2024, 1, 2), usd('2000')))
    first.stock_buys.append(make_buy('VTI', '10', '100', datetime.date(2024, 1, 10)))
    first.cash_assets.deposit(usd('999'))
    first.add_open_position('VTI', D('10'))
    first.instrument_names['VTI'] = 'Vanguard Total Stock Market ETF'

    second = make_partial(datetime.date(2024, 2, 1), datetime.date(2024, 2, 29),
                          starting_assets=True)
    second.cash_assets.deposit(usd('999'))
    second.add_open_position('VTI', D('10'))

    return [first, second]


def test_merge():
    first, second = make_statements()
    statement = BrokerStatement.new_from([second, first])

    assert statement.period == (datetime.date(2024, 1, 1), datetime.date(2024, 3, 1))
    assert statement.cash_flows == [CashAssets(datetime.date(2024, 1, 2), usd('2000'))]
    assert statement.cash_assets.get('USD') == usd('999')
    assert len(statement.stock_buys) == 1
    assert statement.stock_sells == []
    assert statement.open_positions == {'VTI': D('10')}
    assert statement.get_instrument_name('VTI') == 'Vanguard Total Stock Market ETF (VTI)'


def test_merge_is_idempotent():
    statements = make_statements()
    assert BrokerStatement.new_from(statements) == BrokerStatement.new_from(statements)
    assert not statements[0].stock_buys[0].sold


def test_gap_between_statements():
    first = make_partial(datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))
    second = make_partial(datetime.date(2024, 2, 2), datetime.date(2024, 2, 29))
    with pytest.raises(ContinuityError, match='Non-continuous periods: 01.01.2024 - 31.01.2024, 02.02.2024 - 29.02.2024'):
        BrokerStatement.new_from([first, second])


def test_overlapping_statements():
    first = make_partial(datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))
    second = make_partial(datetime.date(2024, 1, 15), datetime.date(2024, 2, 29))
    with pytest.raises(ContinuityError):
        BrokerStatement.new_from([first, second])


def test_truncated_history():
    statement = make_partial(datetime.date(2024, 1, 1), datetime.date(2024, 1, 31),
                             starting_assets=True)
    with pytest.raises(ContinuityError, match='non-zero starting assets'):
        BrokerStatement.new_from([statement])


def test_no_statements():
    with pytest.raises(ParseError):
        BrokerStatement.new_from([])


def test_event_outside_of_period():
    statement = make_partial(datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))
    statement.cash_flows.append(CashAssets(datetime.date(2024, 2, 1), usd('1')))
    with pytest.raises(ConsistencyError, match='cash flow outside of statement period: 01.02.2024'):
        BrokerStatement.new_from([statement])


def test_dividend_taxes_across_statements():
    date = datetime.date(2024, 1, 20)
    tax_id = TaxId(date, 'VTI(US9229087690) Cash Dividend USD 0.5 per Share')
    first, second = make_statements()

    first.dividends_without_paid_tax.append(DividendWithoutPaidTax(
        date=date, issuer='VTI', amount=usd('5'), tax_id=tax_id))
    first.add_tax_change(tax_id, usd('0.5'))
    second.add_tax_change(tax_id, usd('-0.5'))
    second.add_tax_change(tax_id, usd('0.75'))

    statement = BrokerStatement.new_from([first, second])
    assert statement.dividends == [
        Dividend(date=date, issuer='VTI', amount=usd('5'), paid_tax=usd('0.75'))]


def test_orphaned_tax():
    first, second = make_statements()
    second.add_tax_change(TaxId(datetime.date(2024, 2, 5), 'BND dividend'), usd('1'))
    with pytest.raises(TaxError, match='05.02.2024: BND dividend'):
        BrokerStatement.new_from([first, second])


def test_emulate_sell_order():
    statement = BrokerStatement.new_from(make_statements())
    emulated = statement.emulate_sell_order(
        'VTI', D('4'), usd('120'), today=datetime.date(2024, 3, 5))

    stock_sell, = emulated.stock_sells
    assert stock_sell.emulation
    assert stock_sell.volume == usd('480')
    assert stock_sell.commission == usd('1')
    assert stock_sell.sources[0].quantity == D('4')
    assert emulated.open_positions == {'VTI': D('6')}
    assert emulated.cash_assets.get('USD') == usd('1478')

    # The original statement stays intact.
    assert statement.stock_sells == []
    assert statement.open_positions == {'VTI': D('10')}

    with pytest.raises(ConsistencyError):
        statement.emulate_sell_order('VTI', D('11'), usd('120'))


def test_check_date(caplog):
    statement = BrokerStatement.new_from(make_statements())

    with caplog.at_level(logging.WARNING, logger='broker-ledger'):
        statement.check_date(today=datetime.date(2024, 3, 10))
    assert not caplog.records

    with caplog.at_level(logging.WARNING, logger='broker-ledger'):
        statement.check_date(today=datetime.date(2024, 5, 29))
    assert 'is 3.0 months old' in caplog.text


def test_unknown_instrument_name():
    statement = BrokerStatement.new_from(make_statements())
    with pytest.raises(StatementError):
        statement.get_instrument_name('BND')


def test_batch_quotes():
    class Quotes:
        def __init__(self):
            self.symbols = []

        def batch(self, symbol):
            self.symbols.append(symbol)

    quotes = Quotes()
    BrokerStatement.new_from(make_statements()).batch_quotes(quotes)
    assert quotes.symbols == ['VTI']


class FakeReader:
    def __init__(self, statements):
        self.statements = statements

    def is_statement(self, file_name):
        return file_name.endswith('.csv')

    def read(self, path):
        return self.statements[path.rsplit('/', 1)[-1]]


def test_read_statement(tmp_path):
    first, second = make_statements()
    for name in ('2024-01.csv', '2024-02.csv', 'notes.txt'):
        (tmp_path / name).write_text('')

    reader = FakeReader({'2024-01.csv': first, '2024-02.csv': second})
    statement = read_statement(reader, str(tmp_path))
    assert statement.period == (datetime.date(2024, 1, 1), datetime.date(2024, 3, 1))


def test_read_statement_error(tmp_path):
    (tmp_path / 'broken.csv').write_text('')
    statement = PartialBrokerStatement(broker)

    class BrokenReader(FakeReader):
        def read(self, path):
            return statement.validate()

    with pytest.raises(ParseError, match='broken.csv.*Unable to find statement period'):
        read_statement(BrokenReader({}), str(tmp_path))


def test_empty_statement_directory(tmp_path):
    with pytest.raises(StatementError, match='doesn\'t contain any broker statement'):
        read_statement(FakeReader({}), str(tmp_path))
