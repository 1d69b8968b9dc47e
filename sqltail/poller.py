import itertools
import logging
import time

from psycopg2 import sql

from sqltail import cursor
from sqltail.emit import emit
from sqltail.errors import ConfigError

log = logging.getLogger('sqltail.poller')


def table_identifier(table):
    """Quote a table name. A dotted name is schema qualified."""
    return sql.Identifier(*table.split('.'))


def seed_query(table, column):
    return sql.SQL('SELECT max({column}) FROM {table}').format(
        column=sql.Identifier(column), table=table_identifier(table))


def bounded_query(table, column):
    return sql.SQL('SELECT * FROM {table} WHERE {column} > %s ORDER BY {column}').format(
        column=sql.Identifier(column), table=table_identifier(table))


def unbounded_query(table, column):
    # Rows with a null order value are never emitted, bounded or not
    return sql.SQL('SELECT * FROM {table} WHERE {column} IS NOT NULL ORDER BY {column}').format(
        column=sql.Identifier(column), table=table_identifier(table))


def find_column(columns, column):
    if column in columns:
        return columns.index(column)
    # Unquoted identifiers are folded by the server, so be lenient about case
    lowered = [name.lower() for name in columns]
    if column.lower() in lowered:
        return lowered.index(column.lower())
    raise ConfigError('Column {!r} is not in the result ({})'.format(column, ', '.join(columns)))


class TailPoller:
    """Follow a table by repeatedly selecting the rows past the largest order value seen.

    The order column must only ever grow for new rows (a serial key, say). Rows inserted
    with a value at or below the cursor are never seen.
    """

    def __init__(self, db, table, column, writer, interval=1.0, from_beginning=False,
                 header_every_poll=False):
        self.db = db
        self.table = table
        self.column = column
        self.writer = writer
        self.interval = interval
        self.from_beginning = from_beginning
        self.header_every_poll = header_every_poll

        self.cursor = None
        self.statement = None
        self.header_written = False

    def seed(self):
        """Set the cursor to the current maximum of the order column."""
        if self.from_beginning:
            log.info('Tailing %s from the beginning', self.table)
            self.cursor = cursor.init(None)
            return self.cursor

        result = self.db.execute(seed_query(self.table, self.column))
        seed = None
        for batch in result.batches:
            for row in batch:
                seed = cursor.cursor_value(row[0])
        self.cursor = cursor.init(seed)

        if self.cursor is None:
            log.info('%s is empty, waiting for the first row', self.table)
        else:
            log.info('Tailing %s where %s > %s', self.table, self.column, self.cursor)
        return self.cursor

    def _execute(self):
        if self.cursor is None:
            return self.db.stream(unbounded_query(self.table, self.column))
        if self.statement is None:
            self.statement = self.db.prepare(bounded_query(self.table, self.column))
        return self.statement.execute((self.cursor,))

    def poll_once(self):
        """Emit every row past the cursor, advancing it as rows are written."""
        result = self._execute()
        index = find_column(result.columns, self.column)

        def advance(row):
            self.cursor = cursor.observe(self.cursor, cursor.cursor_value(row[index]))

        header = not self.header_written
        if self.header_every_poll:
            # Only repeat the header when there are rows to go under it
            result, header = _peek(result, header)

        count = emit(result, self.writer, header=header, on_row=advance)
        self.header_written = self.header_written or header
        if count:
            log.debug('Emitted %d rows, cursor is now %s', count, self.cursor)
        return count

    def run(self):
        """Seed, then poll forever. Only an error or a signal ends this."""
        self.seed()
        while True:
            if not self.poll_once() and self.interval:
                time.sleep(self.interval)


def _peek(result, header):
    batches = iter(result.batches)
    first = next(batches, None)
    if first is None:
        return result._replace(batches=iter(())), header
    return result._replace(batches=itertools.chain([first], batches)), True
