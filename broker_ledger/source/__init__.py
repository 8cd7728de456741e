"""Defines the interface of broker statement readers.

A statement reader is a class that inherits from `StatementReader`, and is
responsible for parsing the statement files of one broker format into
`PartialBrokerStatement` objects.  It doesn't validate them against each
other: that's done by `broker_ledger.statement.BrokerStatement.new_from`.

A reader module must define a top-level `load` function with a signature:

    def load(spec: dict, log_status: LogFunction) -> StatementReader
        ...

that is called with a dictionary `spec` of configuration options specified by
the user, as well as a logging function `log_status`.  The `broker` key of the
spec holds the broker configuration (see `broker_ledger.brokers`).

For example, to read Interactive Brokers activity statements:

    reader = load_reader(
        dict(module='broker_ledger.source.ib',
             broker=dict(broker='interactive-brokers')),
        log_status=print)
    statement = read_statement(reader, 'data/ib')
"""

from typing import Any, Callable, Dict
import importlib

from ..brokers import BrokerInfo
from ..errors import ConfigError
from ..partial import PartialBrokerStatement

LogFunction = Callable[[str], None]
ReaderSpec = Dict[str, Any]


class StatementReader:
    """Reads the statement files of a particular broker format."""

    def __init__(self, broker: BrokerInfo, log_status: LogFunction) -> None:
        self.broker = broker
        self.log_status = log_status

    @property
    def name(self) -> str:
        """Returns the name of the reader, e.g. "ib" or "firstrade"."""
        raise NotImplementedError

    def is_statement(self, file_name: str) -> bool:
        """Returns `True` if `file_name` looks like a statement of this format."""
        raise NotImplementedError

    def read(self, path: str) -> PartialBrokerStatement:
        """Parses a single statement file.

        The returned statement must have its period and starting assets set.
        """
        raise NotImplementedError


def load_reader(reader_spec: ReaderSpec, log_status: LogFunction) -> StatementReader:
    """Loads a StatementReader from a specification.

    The `reader_spec` must be a dictionary containing a `module` key specifying
    the full name of the reader module to load.

    The remaining items in the dictionary are passed directly to the `load`
    function defined in the specified `module`.
    """
    reader_spec = reader_spec.copy()
    module_name = reader_spec.pop('module', None)
    if module_name is None:
        raise ConfigError('Reader specification must contain a "module" key')
    m = importlib.import_module(module_name)
    return m.load(reader_spec, log_status=log_status)  # type: ignore
