import collections
import itertools
import logging

import psycopg2
import psycopg2.extras
from sqltail import values

log = logging.getLogger('sqltail.db')

# columns is None for statements that return no rows (INSERT, SET, ...).
# type_codes are the type OIDs of the columns, when known.
Result = collections.namedtuple('Result', ['columns', 'batches', 'type_codes'], defaults=(None,))

DEFAULT_ARRAYSIZE = 500


def _raw_text(text):
    return text


def _column_names(description):
    if description is None:
        return None
    return [column[0] for column in description]


def _type_codes(description):
    if description is None:
        return None
    return [column[1] for column in description]


def format_offset(tz_offset):
    sign = '-' if tz_offset < 0 else '+'
    hours, minutes = divmod(abs(tz_offset) // 60, 60)
    return '{}{:02d}:{:02d}'.format(sign, hours, minutes)


def connect(settings):
    """Open an autocommit connection so every statement sees the latest committed rows."""
    params = collections.OrderedDict([
        ('host', settings.host),
        ('port', settings.port),
        ('user', settings.user),
        ('password', settings.password),
        ('dbname', settings.database),
    ])
    kwargs = {key: value for key, value in params.items() if value is not None}

    log.info('Connecting to host=%s port=%s dbname=%s', settings.host or '(default)',
             settings.port or '(default)', settings.database or '(default)')
    conn = psycopg2.connect(settings.dsn, **kwargs)
    conn.autocommit = True

    # Hand json and jsonb columns over as their text
    psycopg2.extras.register_default_json(conn, loads=_raw_text)
    psycopg2.extras.register_default_jsonb(conn, loads=_raw_text)

    if settings.tz_offset is not None:
        # timestamptz values then come back on the same wall clock as --tz-offset
        with conn.cursor() as cursor:
            cursor.execute('SET TIME ZONE INTERVAL %s HOUR TO MINUTE',
                           (format_offset(settings.tz_offset),))
    return conn


class Database:

    def __init__(self, conn, arraysize=DEFAULT_ARRAYSIZE):
        self.conn = conn
        self.arraysize = arraysize
        self._cursor_ids = itertools.count(1)

    def execute(self, query, params=None):
        """Run one statement on a client-side cursor, which holds all of its rows in memory.

        For statements with no or few rows: DML, SET, aggregates.
        """
        log.debug('Executing %s with %r', query, params)
        cursor = self.conn.cursor()
        cursor.arraysize = self.arraysize
        try:
            cursor.execute(query, params)
        except Exception:
            cursor.close()
            raise

        if cursor.description is None:
            log.info('%s', cursor.statusmessage)
            cursor.close()
            return Result(None, iter(()))

        return Result(_column_names(cursor.description), self._batches(cursor),
                      _type_codes(cursor.description))

    def stream(self, query, params=None):
        """Run a row-returning statement on a server-side cursor, fetching arraysize rows at a time."""
        name = 'sqltail_{}'.format(next(self._cursor_ids))
        log.debug('Streaming %s with %r through cursor %s', query, params, name)
        # The connection is in autocommit, where only a WITH HOLD cursor outlives its statement
        cursor = self.conn.cursor(name=name, withhold=True)
        cursor.itersize = self.arraysize
        cursor.arraysize = self.arraysize
        try:
            cursor.execute(query, params)
            # A server-side cursor only describes its columns after the first fetch
            first = cursor.fetchmany()
        except Exception:
            cursor.close()
            raise

        return Result(_column_names(cursor.description), self._batches(cursor, first),
                      _type_codes(cursor.description))

    def _batches(self, cursor, rows=None):
        try:
            if rows is None:
                rows = cursor.fetchmany()
            while rows:
                yield [tuple(values.from_driver(cell) for cell in row) for row in rows]
                rows = cursor.fetchmany()
        finally:
            cursor.close()

    def prepare(self, query):
        """Build a statement to re-run with new %s parameters, streaming its rows each time."""
        return PreparedStatement(self, query)

    def close(self):
        self.conn.close()


class PreparedStatement:

    def __init__(self, db, query):
        self.db = db
        self.query = query

    def execute(self, params):
        return self.db.stream(self.query, tuple(params))
