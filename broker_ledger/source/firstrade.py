"""Reads Firstrade account history exported as OFX.

Firstrade lets you download the whole account history (since the account
opening) as a single OFX file, so each file is a complete statement with no
starting assets.

To use, specify:

    dict(module='broker_ledger.source.firstrade',
         broker=dict(broker='firstrade'))

Dividends
=========

The OFX export contains only the net dividend amounts, so the gross amount and
the withheld tax are deduced assuming the US tax treaty rate.  A warning is
emitted for the first such dividend.

Securities Lending Income Program
=================================

Firstrade moves cash between the account and the "FFS" (Fully-paid securities
lending) sub-account using "XFER CASH FROM FFS" / "XFER FFS TO CASH"
transactions.  They always compensate each other and are not reported as cash
flows.
"""

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Union
import datetime
import logging
import os

from beancount.core.amount import Amount
from beancount.core.number import ZERO, Decimal

from . import ofx
from .ofx import deserialize, ofx_field, parse_ofx_date, parse_ofx_decimal
from .. import cash
from .. import localities
from ..brokers import load_broker_info
from ..cash import CashAssets, DecimalRestrictions, validate_named_decimal
from ..dividends import Dividend, IdleCashInterest
from ..errors import ConsistencyError, ParseError
from ..partial import PartialBrokerStatement
from ..trades import StockBuy, StockSell
from . import LogFunction, StatementReader

logger = logging.getLogger('broker-ledger')

NON_QUALIFIED_DIVIDEND_MEMO_SUFFIX = ' NON-QUALIFIED DIVIDEND NON-RES TAX WITHHELD'
FFS_TRANSFER_NAMES = ('XFER CASH FROM FFS', 'XFER FFS TO CASH')


class SecurityId(NamedTuple):
    id: str
    type: str


class Stock(NamedTuple):
    symbol: str


class Interest(NamedTuple):
    pass


SecurityType = Union[Stock, Interest]


@dataclass
class SecurityIdInfo:
    id: str = ofx_field('uniqueid')
    type: str = ofx_field('uniqueidtype')

    def get(self) -> SecurityId:
        return SecurityId(self.id, self.type)


@dataclass
class TransactionInfo:
    id: None = ofx_field('fitid', ignore=True)
    conclusion_date: datetime.date = ofx_field('dttrade', parse_ofx_date)
    execution_date: datetime.date = ofx_field('dtsettle', parse_ofx_date)
    memo: str = ofx_field('memo')


@dataclass
class CashFlowTransaction:
    type: str = ofx_field('trntype')
    date: datetime.date = ofx_field('dtposted', parse_ofx_date)
    amount: Decimal = ofx_field('trnamt', parse_ofx_decimal)
    id: str = ofx_field('fitid')
    name: str = ofx_field('name')
    memo: Optional[str] = ofx_field('memo', optional=True)


@dataclass
class CashFlowInfo:
    transaction: CashFlowTransaction = ofx_field('stmttrn', record=CashFlowTransaction)
    sub_account: str = ofx_field('subacctfund')


@dataclass
class StockTradeTransaction:
    info: TransactionInfo = ofx_field('invtran', record=TransactionInfo)
    security_id: SecurityIdInfo = ofx_field('secid', record=SecurityIdInfo)
    units: Decimal = ofx_field('units', parse_ofx_decimal)
    price: Decimal = ofx_field('unitprice', parse_ofx_decimal)
    commission: Decimal = ofx_field('commission', parse_ofx_decimal)
    fees: Decimal = ofx_field('fees', parse_ofx_decimal)
    total: Decimal = ofx_field('total', parse_ofx_decimal)
    sub_account_to: str = ofx_field('subacctsec')
    sub_account_from: str = ofx_field('subacctfund')


@dataclass
class StockBuyInfo:
    type: str = ofx_field('buytype')
    transaction: StockTradeTransaction = ofx_field('invbuy', record=StockTradeTransaction)


# Dividend reinvestment transactions appear as BUYOTHER.
@dataclass
class OtherBuyInfo:
    transaction: StockTradeTransaction = ofx_field('invbuy', record=StockTradeTransaction)


@dataclass
class StockSellInfo:
    type: str = ofx_field('selltype')
    transaction: StockTradeTransaction = ofx_field('invsell', record=StockTradeTransaction)


@dataclass
class IncomeInfo:
    info: TransactionInfo = ofx_field('invtran', record=TransactionInfo)
    security_id: SecurityIdInfo = ofx_field('secid', record=SecurityIdInfo)
    type: str = ofx_field('incometype')
    total: Decimal = ofx_field('total', parse_ofx_decimal)
    sub_account_to: str = ofx_field('subacctsec')
    sub_account_from: str = ofx_field('subacctfund')


@dataclass
class Transactions:
    start_date: datetime.date = ofx_field('dtstart', parse_ofx_date)
    end_date: datetime.date = ofx_field('dtend', parse_ofx_date)
    cash_flows: List[CashFlowInfo] = ofx_field('invbanktran', record=CashFlowInfo, many=True)
    stock_buys: List[StockBuyInfo] = ofx_field('buystock', record=StockBuyInfo, many=True)
    other_buys: List[OtherBuyInfo] = ofx_field('buyother', record=OtherBuyInfo, many=True)
    stock_sells: List[StockSellInfo] = ofx_field('sellstock', record=StockSellInfo, many=True)
    income: List[IncomeInfo] = ofx_field('income', record=IncomeInfo, many=True)


@dataclass
class PositionInfo:
    security_id: SecurityIdInfo = ofx_field('secid', record=SecurityIdInfo)
    sub_account: str = ofx_field('heldinacct')
    type: str = ofx_field('postype')
    units: Decimal = ofx_field('units', parse_ofx_decimal)
    price: Decimal = ofx_field('unitprice', parse_ofx_decimal)
    market_value: Decimal = ofx_field('mktval', parse_ofx_decimal)
    price_date: datetime.date = ofx_field('dtpriceasof', parse_ofx_date)
    memo: Optional[str] = ofx_field('memo', optional=True)


@dataclass
class StockPosition:
    position: PositionInfo = ofx_field('invpos', record=PositionInfo)


@dataclass
class OpenPositions:
    stocks: List[StockPosition] = ofx_field('posstock', record=StockPosition, many=True)


@dataclass
class Balance:
    cash: Decimal = ofx_field('availcash', parse_ofx_decimal)
    margin_balance: Decimal = ofx_field('marginbalance', parse_ofx_decimal)
    short_balance: Decimal = ofx_field('shortbalance', parse_ofx_decimal)
    other: None = ofx_field('ballist', optional=True, ignore=True)


@dataclass
class AccountInfo:
    broker_id: str = ofx_field('brokerid')
    account_id: str = ofx_field('acctid')


@dataclass
class Report:
    date: datetime.date = ofx_field('dtasof', parse_ofx_date)
    currency: str = ofx_field('curdef')
    account: AccountInfo = ofx_field('invacctfrom', record=AccountInfo)
    transactions: Transactions = ofx_field('invtranlist', record=Transactions)
    open_positions: Optional[OpenPositions] = ofx_field(
        'invposlist', record=OpenPositions, optional=True)
    balance: Optional[Balance] = ofx_field('invbal', record=Balance, optional=True)
    open_orders: None = ofx_field('invoolist', optional=True, ignore=True)


@dataclass
class ReportTransaction:
    id: None = ofx_field('trnuid', ignore=True)
    status: None = ofx_field('status', ignore=True)
    report: Report = ofx_field('invstmtrs', record=Report)


@dataclass
class ReportMessages:
    transaction: ReportTransaction = ofx_field('invstmttrnrs', record=ReportTransaction)


@dataclass
class SecurityInfo:
    security_id: SecurityIdInfo = ofx_field('secid', record=SecurityIdInfo)
    name: str = ofx_field('secname')
    symbol: Optional[str] = ofx_field('ticker', optional=True)
    price: Optional[Decimal] = ofx_field('unitprice', parse_ofx_decimal, optional=True)
    price_date: Optional[datetime.date] = ofx_field('dtasof', parse_ofx_date, optional=True)


@dataclass
class StockInfo:
    info: SecurityInfo = ofx_field('secinfo', record=SecurityInfo)
    type: Optional[str] = ofx_field('stocktype', optional=True)


@dataclass
class OtherInfo:
    info: SecurityInfo = ofx_field('secinfo', record=SecurityInfo)


@dataclass
class SecurityList:
    stocks: List[StockInfo] = ofx_field('stockinfo', record=StockInfo, many=True)
    other: List[OtherInfo] = ofx_field('otherinfo', record=OtherInfo, many=True)


@dataclass
class SecurityListMessages:
    securities: SecurityList = ofx_field('seclist', record=SecurityList)


@dataclass
class OfxDocument:
    sign_on: None = ofx_field('signonmsgsrsv1', ignore=True)
    report: ReportMessages = ofx_field('invstmtmsgsrsv1', record=ReportMessages)
    securities: SecurityListMessages = ofx_field('seclistmsgsrsv1', record=SecurityListMessages)


def validate_sub_account(name: str) -> None:
    if name != 'CASH':
        raise ParseError('Got an unsupported sub-account type: %r' % name)


class Securities:
    def __init__(self, securities: SecurityList) -> None:
        self.types = {}  # type: Dict[SecurityId, SecurityType]
        self.names = {}  # type: Dict[str, str]

        for stock in securities.stocks:
            info = stock.info
            if not info.symbol:
                raise ParseError('Got a stock without a ticker: %r' % info.name)
            self._add(info, Stock(info.symbol))
            self.names[info.symbol] = info.name

        for other in securities.other:
            self._add(other.info, Interest())

    def _add(self, info: SecurityInfo, security_type: SecurityType) -> None:
        security_id = info.security_id.get()
        if security_id in self.types:
            raise ParseError('Duplicated security ID: %s' % (security_id, ))
        self.types[security_id] = security_type

    def get(self, security_id: SecurityIdInfo) -> SecurityType:
        security_type = self.types.get(security_id.get())
        if security_type is None:
            raise ParseError('Got an unknown security ID: %s' % (security_id.get(), ))
        return security_type

    def get_symbol(self, security_id: SecurityIdInfo) -> str:
        security_type = self.get(security_id)
        if not isinstance(security_type, Stock):
            raise ParseError('Got %s security with an unexpected type' % (security_id.get(), ))
        return security_type.symbol


class _StatementParser:
    def __init__(self, reader: 'FirstradeReader', statement: PartialBrokerStatement,
                 currency: str, securities: Securities) -> None:
        self.reader = reader
        self.statement = statement
        self.currency = currency
        self.securities = securities

    def parse_cash_flows(self, cash_flows: List[CashFlowInfo]) -> None:
        ffs_balance = ZERO

        for cash_flow in cash_flows:
            transaction = cash_flow.transaction

            if transaction.name in FFS_TRANSFER_NAMES:
                ffs_balance += transaction.amount
                continue

            if transaction.type != 'CREDIT':
                raise ParseError('Got %r cash flow transaction of an unsupported type: %s' % (
                    transaction.id, transaction.type))
            validate_sub_account(cash_flow.sub_account)

            amount = validate_named_decimal(
                'transaction amount', transaction.amount, DecimalRestrictions.STRICTLY_POSITIVE)
            self.statement.cash_flows.append(
                CashAssets(transaction.date, Amount(amount, self.currency)))

        if ffs_balance != ZERO:
            raise ConsistencyError('Got a non-zero FFS balance: %s' % ffs_balance)

    def parse_trade(self, trade: StockTradeTransaction, buy: bool) -> None:
        validate_sub_account(trade.sub_account_from)
        validate_sub_account(trade.sub_account_to)

        symbol = self.securities.get_symbol(trade.security_id)

        quantity = ofx.normalize_fraction(abs(validate_named_decimal(
            'trade quantity', trade.units,
            DecimalRestrictions.STRICTLY_POSITIVE if buy else DecimalRestrictions.STRICTLY_NEGATIVE)))

        price = Amount(ofx.normalize_fraction(validate_named_decimal(
            'price', trade.price, DecimalRestrictions.STRICTLY_POSITIVE)), self.currency)

        commission = validate_named_decimal(
            'commission', trade.commission, DecimalRestrictions.POSITIVE_OR_ZERO)
        commission += validate_named_decimal(
            'fees', trade.fees, DecimalRestrictions.POSITIVE_OR_ZERO)
        commission_amount = Amount(commission, self.currency)

        volume = abs(validate_named_decimal(
            'trade volume', trade.total,
            DecimalRestrictions.STRICTLY_NEGATIVE if buy else DecimalRestrictions.STRICTLY_POSITIVE))
        if buy:
            volume -= commission
        else:
            volume += commission
        volume_amount = Amount(volume, self.currency)

        assert volume_amount == cash.round_cash(cash.mul(price, quantity)), (
            trade.info.memo, volume_amount, price, quantity)

        info = trade.info
        trade_type = StockBuy if buy else StockSell
        trades = self.statement.stock_buys if buy else self.statement.stock_sells
        trades.append(trade_type(
            symbol=symbol, quantity=quantity, price=price, volume=volume_amount,
            commission=commission_amount, conclusion_date=info.conclusion_date,
            execution_date=info.execution_date))

    def parse_income(self, income: IncomeInfo) -> None:
        validate_sub_account(income.sub_account_from)
        validate_sub_account(income.sub_account_to)

        info = income.info
        date = info.conclusion_date
        if info.execution_date != date:
            raise ConsistencyError('Got an unexpected %r income settlement date: %s -> %s' % (
                info.memo, date.strftime('%d.%m.%Y'), info.execution_date.strftime('%d.%m.%Y')))

        security_type = self.securities.get(income.security_id)

        if income.type == 'MISC' and isinstance(security_type, Interest):
            amount = validate_named_decimal(
                'idle cash interest amount', income.total, DecimalRestrictions.NON_ZERO)
            self.statement.idle_cash_interest.append(
                IdleCashInterest(date=date, amount=Amount(amount, self.currency)))
        elif income.type == 'DIV' and isinstance(security_type, Stock):
            amount = validate_named_decimal(
                'dividend amount', income.total, DecimalRestrictions.STRICTLY_POSITIVE)
            self.parse_dividend(info, security_type.symbol, amount)
        else:
            raise ParseError('Got an unsupported income: %r' % info.memo)

    def parse_dividend(self, info: TransactionInfo, issuer: str, income: Decimal) -> None:
        if info.memo.endswith(NON_QUALIFIED_DIVIDEND_MEMO_SUFFIX):
            raise ParseError('Got an unexpected dividend description: %r' % info.memo)

        if self.reader.warn_on_missing_dividend_details:
            logger.warning(
                'There is no detailed information for some dividends: it will be deduced '
                'approximately. First occurred dividend: %s at %s.',
                issuer, info.conclusion_date.strftime('%d.%m.%Y'))
            self.reader.warn_on_missing_dividend_details = False

        foreign_country = localities.us()
        amount = foreign_country.deduce_income(income)
        paid_tax = amount - income
        assert paid_tax == foreign_country.tax_to_pay(amount), (issuer, income)

        self.statement.dividends.append(Dividend(
            date=info.conclusion_date, issuer=issuer,
            amount=Amount(amount, self.currency), paid_tax=Amount(paid_tax, self.currency)))

    def parse_open_positions(self, open_positions: OpenPositions) -> None:
        for stock in open_positions.stocks:
            position = stock.position
            validate_sub_account(position.sub_account)
            if position.type != 'LONG':
                raise ParseError('Got an unsupported position type: %r' % position.type)

            symbol = self.securities.get_symbol(position.security_id)
            quantity = validate_named_decimal(
                'open position quantity', position.units, DecimalRestrictions.STRICTLY_POSITIVE)
            self.statement.add_open_position(symbol, ofx.normalize_fraction(quantity))


class FirstradeReader(StatementReader):
    def __init__(self, broker, log_status: LogFunction) -> None:
        super().__init__(broker, log_status)
        self.warn_on_missing_dividend_details = True

    @property
    def name(self) -> str:
        return 'firstrade'

    def is_statement(self, file_name: str) -> bool:
        return os.path.splitext(file_name)[1].lower() == '.ofx'

    def read(self, path: str) -> PartialBrokerStatement:
        self.log_status('firstrade: processing %s' % (path, ))

        with open(path, 'rb') as f:
            contents = f.read()

        document = deserialize(ofx.parse_ofx_document(contents), OfxDocument)
        report = document.report.transaction.report
        transactions = report.transactions

        statement = PartialBrokerStatement(self.broker)
        statement.set_period((transactions.start_date,
                              transactions.end_date + datetime.timedelta(days=1)))
        statement.set_starting_assets(False)

        securities = Securities(document.securities.securities)
        statement.instrument_names.update(securities.names)

        parser = _StatementParser(self, statement, report.currency, securities)
        parser.parse_cash_flows(transactions.cash_flows)

        for stock_buy in transactions.stock_buys:
            if stock_buy.type != 'BUY':
                raise ParseError('Got an unsupported type of stock purchase: %r' % stock_buy.type)
            parser.parse_trade(stock_buy.transaction, buy=True)

        for other_buy in transactions.other_buys:
            parser.parse_trade(other_buy.transaction, buy=True)

        for stock_sell in transactions.stock_sells:
            if stock_sell.type != 'SELL':
                raise ParseError('Got an unsupported type of stock sell: %r' % stock_sell.type)
            parser.parse_trade(stock_sell.transaction, buy=False)

        for income in transactions.income:
            parser.parse_income(income)

        if report.open_positions is not None:
            parser.parse_open_positions(report.open_positions)

        if report.balance is not None:
            statement.cash_assets.deposit(Amount(report.balance.cash, report.currency))

        return statement.validate()


def load(spec, log_status):
    broker = load_broker_info(spec.get('broker', dict(broker='firstrade')))
    return FirstradeReader(broker, log_status=log_status)
