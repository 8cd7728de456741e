"""Strict deserialization of OFX documents.

OFX 1.x files are SGML: aggregates are closed explicitly, but leaf elements
usually are not:

    <STMTTRN>
    <TRNTYPE>CREDIT
    <DTPOSTED>20200115
    <TRNAMT>100.00
    </STMTTRN>

`parse_ofx_document` closes the leaf elements and builds a `bs4` tree.  Records
are then described by dataclasses whose fields declare the OFX tag they are read
from:

    @dataclass
    class CashFlowTransaction:
        type: str = ofx_field('trntype')
        date: datetime.date = ofx_field('dtposted', parse_ofx_date)
        amount: Decimal = ofx_field('trnamt', parse_ofx_decimal)
        memo: Optional[str] = ofx_field('memo', optional=True)

and `deserialize` maps an aggregate onto such a record.  Any child element not
declared by the record is an error: we'd rather fail on a new field than
silently misinterpret a changed export.
"""

from typing import Any, Callable, Optional, Type, TypeVar
import dataclasses
import datetime
import re

import bs4
from beancount.core.number import D, Decimal

from ..errors import ParseError

T = TypeVar('T')


def close_sgml_elements(contents: str) -> str:
    """Adds missing end tags to the leaf elements of an SGML document."""
    return re.sub(
        r'<([A-Za-z][A-Za-z0-9.]*)>([^<]*?[^<\s])\s*(?=<)(?!</\1>)',
        lambda m: '<%s>%s</%s>\n' % (m.group(1), m.group(2), m.group(1)),
        contents)


def parse_ofx_document(contents: bytes) -> bs4.element.Tag:
    text = contents.decode('utf-8', errors='replace')
    soup = bs4.BeautifulSoup(close_sgml_elements(text), 'html.parser')
    root = soup.find('ofx')
    if root is None:
        raise ParseError('Unable to find <OFX> element')
    return root


def parse_ofx_date(date_str: str) -> datetime.date:
    """Parses an OFX date/time string, ignoring the time part.

    Accepts `YYYYMMDD`, optionally followed by `hhmmss`, milliseconds and a
    time zone (`20200131120000.000[-5:EST]`).
    """
    m = re.fullmatch(r'([0-9]{8})(?:[0-9]{6}(?:\.[0-9]{3})?)?(?:\[[^\]]*\])?', date_str)
    if m is None:
        raise ValueError('Invalid date: %r' % date_str)
    return datetime.datetime.strptime(m.group(1), '%Y%m%d').date()


def parse_ofx_decimal(value: str) -> Decimal:
    if re.fullmatch(r'[-+]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)', value) is None:
        raise ValueError('Invalid decimal value: %r' % value)
    return D(value)


def normalize_fraction(d: Decimal) -> Decimal:
    normalized = d.normalize()
    sign, digits, exponent = normalized.as_tuple()
    if exponent > 0:
        return Decimal((sign, tuple(digits) + (0, ) * exponent, 0))
    else:
        return normalized


def ofx_field(tag: str,
              parse: Optional[Callable[[str], Any]] = None,
              record: Optional[type] = None,
              many: bool = False,
              optional: bool = False,
              ignore: bool = False) -> Any:
    """Declares a record field read from the `tag` child element.

    :param parse: Converter for the text of a leaf element.
    :param record: Record class for an aggregate element.
    :param many: The element may be repeated; the field holds a list.
    :param optional: The element may be absent; the field is None then.
    :param ignore: The element must be present, but its contents are ignored.
    """
    metadata = dict(tag=tag.lower(), parse=parse, record=record, many=many,
                    required=not (many or optional), ignore=ignore)
    if many:
        return dataclasses.field(default_factory=list, metadata=metadata)
    return dataclasses.field(default=None, metadata=metadata)


def _format_tag(node: bs4.element.Tag) -> str:
    return '<%s>' % node.name.upper()


def _deserialize_field(node: bs4.element.Tag, field: dataclasses.Field) -> Any:
    metadata = field.metadata

    if metadata['ignore']:
        return None

    if metadata['record'] is not None:
        return deserialize(node, metadata['record'])

    if node.find(True) is not None:
        raise ParseError('Got an aggregate where a value is expected: %s' % _format_tag(node))

    value = node.get_text().strip()
    if metadata['parse'] is not None:
        try:
            value = metadata['parse'](value)
        except ValueError as e:
            raise ParseError('Invalid %s value: %s' % (_format_tag(node), e)) from e
    return value


def deserialize(node: bs4.element.Tag, cls: Type[T]) -> T:
    """Maps the children of `node` onto the `cls` record."""
    fields = dataclasses.fields(cls)
    fields_by_tag = {field.metadata['tag']: field for field in fields}
    values = {}  # type: dict

    for child in node.find_all(True, recursive=False):
        field = fields_by_tag.get(child.name)
        if field is None:
            raise ParseError('Unknown field %s in %s' % (_format_tag(child), _format_tag(node)))

        value = _deserialize_field(child, field)

        if field.metadata['many']:
            values.setdefault(field.name, []).append(value)
        elif field.name in values:
            raise ParseError('Duplicated field %s in %s' % (_format_tag(child), _format_tag(node)))
        else:
            values[field.name] = value

    for field in fields:
        if field.metadata['required'] and field.name not in values:
            raise ParseError('Missing <%s> field in %s' % (
                field.metadata['tag'].upper(), _format_tag(node)))

    return cls(**values)  # type: ignore
