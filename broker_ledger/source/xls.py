"""Section-based parsing of spreadsheet broker statements.

Spreadsheet statements are laid out for printing: a sheet consists of titled
sections, each followed by a table or by a few free-form rows.  A section is
located by the text of the first non-empty cell of its title row (either the
whole text or its prefix, when the title carries data such as the statement
period), and spans the rows up to the next blank row or the next known section
title.
"""

from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence
import datetime

import openpyxl

from ..errors import ParseError
from ..partial import PartialBrokerStatement

Row = List[Any]


class SectionData(NamedTuple):
    title: str
    rows: List[Row]


SectionParserFunction = Callable[[PartialBrokerStatement, SectionData], None]


class Section:
    def __init__(self, title: str, by_prefix: bool = False, required: bool = False,
                 parser: Optional[SectionParserFunction] = None) -> None:
        self.title = title
        self.by_prefix = by_prefix
        self.required = required
        self.parser = parser

    def matches(self, text: str) -> bool:
        if self.by_prefix:
            return text.startswith(self.title)
        return text == self.title


def _normalize_cell(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    return value


def get_first_value(row: Row) -> Optional[str]:
    for value in row:
        if value is not None:
            return str(value)
    return None


def is_blank(row: Row) -> bool:
    return all(value is None for value in row)


class Table:
    """A table whose first row names the columns."""

    def __init__(self, section: SectionData) -> None:
        if not section.rows:
            raise ParseError('%r section has no table header' % section.title)

        self.title = section.title
        self.columns = {}  # type: Dict[str, int]
        for index, value in enumerate(section.rows[0]):
            if value is not None:
                self.columns.setdefault(str(value), index)
        self.rows = section.rows[1:]

    def get(self, row: Row, column: str) -> Any:
        index = self.columns.get(column)
        if index is None:
            raise ParseError('Unable to find %r column in %r section' % (column, self.title))
        if index >= len(row) or row[index] is None:
            raise ParseError('Got an empty %r value in %r section' % (column, self.title))
        return row[index]


def read_sheet(path: str, sheet_name: str) -> List[Row]:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        if sheet_name not in workbook.sheetnames:
            raise ParseError('There is no %r sheet in the workbook' % sheet_name)
        sheet = workbook[sheet_name]
        return [[_normalize_cell(value) for value in row]
                for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


class XlsStatementParser:
    def __init__(self, sections: Sequence[Section]) -> None:
        self.sections = sections

    def _find_section(self, row: Row) -> Optional[Section]:
        text = get_first_value(row)
        if text is None:
            return None
        for section in self.sections:
            if section.matches(text):
                return section
        return None

    def parse(self, statement: PartialBrokerStatement, rows: List[Row]) -> None:
        found = set()  # type: set
        index = 0

        while index < len(rows):
            section = self._find_section(rows[index])
            if section is None:
                index += 1
                continue

            if section.title in found:
                raise ParseError('Got a duplicated %r section' % section.title)
            found.add(section.title)

            title = get_first_value(rows[index])
            assert title is not None
            index += 1

            section_rows = []  # type: List[Row]
            while (index < len(rows) and not is_blank(rows[index]) and
                   self._find_section(rows[index]) is None):
                section_rows.append(rows[index])
                index += 1

            if section.parser is not None:
                try:
                    section.parser(statement, SectionData(title, section_rows))
                except ValueError as e:
                    raise ParseError('Failed to parse %r section: %s' % (title, e)) from e

        for section in self.sections:
            if section.required and section.title not in found:
                raise ParseError('Unable to find %r section' % section.title)

    @classmethod
    def read(cls, broker, path: str, sheet_name: str,
             sections: Sequence[Section]) -> PartialBrokerStatement:
        statement = PartialBrokerStatement(broker)
        cls(sections).parse(statement, read_sheet(path, sheet_name))
        return statement.validate()


def parse_date(value: Any) -> datetime.date:
    """Parses a `dd.mm.YYYY` date or a date cell."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.datetime.strptime(str(value).strip(), '%d.%m.%Y').date()
