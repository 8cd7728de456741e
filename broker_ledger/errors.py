"""Errors raised while building a broker statement.

Every failure aborts the whole account ledger construction; partial or
inconsistent ledgers are never returned.
"""


class StatementError(Exception):
    """Base class for all statement processing errors."""


class ConfigError(StatementError):
    """Invalid broker or reader configuration."""


class ParseError(StatementError):
    """Unknown fields, missing sections or unrecognized record kinds."""


class ConsistencyError(StatementError):
    """The source export is internally inconsistent."""


class ContinuityError(StatementError):
    """Partial statements don't form a continuous period."""


class TaxError(StatementError):
    """Withholding tax adjustments that can't be resolved."""


class MatchError(ConsistencyError):
    """A sell can't be matched against the open buy lots."""
