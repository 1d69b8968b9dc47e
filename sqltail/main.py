#!/usr/bin/env python3

import argparse
import logging
import os
import sys

import psycopg2
import sqlparse

from sqltail import __version__
from sqltail.config import load_config_file, resolve_settings
from sqltail.db import DEFAULT_ARRAYSIZE, Database, connect
from sqltail.emit import emit, make_writer
from sqltail.errors import ConfigError, SqlTailError
from sqltail.poller import TailPoller

log = logging.getLogger('sqltail.main')

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def configure_logging(verbose=False):
    # stdout carries the rows, so logs go to stderr
    logging.basicConfig(stream=sys.stderr, level=logging.DEBUG if verbose else logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def build_parser():
    parser = argparse.ArgumentParser(
        prog='sqltail',
        description='Run SQL against PostgreSQL, or follow new rows of a table, '
                    'and write the rows as JSON lines or CSV.')
    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    parser.add_argument('--config', help='dotenv file with SQLTAIL_* settings (default: ./.env)')
    parser.add_argument('--dsn', help='libpq connection string; the flags below override it')
    parser.add_argument('--host', help='database host')
    parser.add_argument('--port', help='database port')
    parser.add_argument('--user', help='database user')
    parser.add_argument('--password', help='database password')
    parser.add_argument('--database', help='database name')
    parser.add_argument('--format', help='json (default) or csv, any case')
    parser.add_argument('--tz-offset', metavar='SECONDS',
                        help='UTC offset of DATETIME values in seconds east, e.g. 32400')
    parser.add_argument('--arraysize', type=int, default=DEFAULT_ARRAYSIZE,
                        help='rows fetched per batch (default: %(default)s)')
    parser.add_argument('-v', '--verbose', action='store_true', help='log debug messages')

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    query = subparsers.add_parser('query', help='run statements once and print their rows')
    query.add_argument('statements', nargs='*', metavar='SQL',
                       help='statements to run in order, several may be separated by semicolons '
                            '(default: all of standard input)')

    tail = subparsers.add_parser('tail', help='print new rows of a table as they are inserted')
    tail.add_argument('table', help='table to follow, optionally schema qualified')
    tail.add_argument('column', help='order column whose values grow for new rows')
    tail.add_argument('--interval', type=float, default=1.0,
                      help='seconds to wait after a poll finds nothing; 0 polls '
                           'continuously (default: %(default)s)')
    tail.add_argument('--from-beginning', action='store_true',
                      help='print the rows already in the table first')
    tail.add_argument('--header-every-poll', action='store_true',
                      help='repeat the CSV header for every batch of new rows')
    return parser


def split_statements(text):
    """Split SQL text into its statements, without their terminating semicolons."""
    statements = []
    for statement in sqlparse.split(text):
        statement = statement.strip().rstrip(';').strip()
        if statement:
            statements.append(statement)
    return statements


def returns_rows(statement):
    """True for SELECT statements, which are read through a server-side cursor."""
    return sqlparse.parse(statement)[0].get_type() == 'SELECT'


def read_statements(statements, stdin):
    """Statements from the command line, or all of standard input, in the order given."""
    if not any(statement.strip() for statement in statements):
        statements = [stdin.read()]

    split = [part for statement in statements for part in split_statements(statement)]
    if not split:
        raise ConfigError('No SQL given on the command line or on standard input')
    return split


def run_query(db, statements, writer):
    """Run each statement and write its rows. Each result set gets its own CSV header."""
    total = 0
    for statement in statements:
        if returns_rows(statement):
            result = db.stream(statement)
        else:
            result = db.execute(statement)
        if result.columns is None:
            continue
        total += emit(result, writer)
    return total


def run_tail(db, args, writer):
    poller = TailPoller(db, args.table, args.column, writer,
                        interval=args.interval,
                        from_beginning=args.from_beginning,
                        header_every_poll=args.header_every_poll)
    poller.run()


def main(argv=None, stdin=None, stdout=None):
    """Run sqltail and return the exit status."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if stdin is None:
        stdin = sys.stdin
    if stdout is None:
        sys.stdout.reconfigure(encoding='utf-8', newline='')
        stdout = sys.stdout

    try:
        load_config_file(args.config)
        settings = resolve_settings(args)
        writer = make_writer(settings.format, stdout, settings.tz_offset)
        if args.command == 'query':
            statements = read_statements(args.statements, stdin)
        elif args.interval < 0:
            raise ConfigError('--interval cannot be negative')

        conn = connect(settings)
        try:
            db = Database(conn, arraysize=args.arraysize)
            if args.command == 'query':
                run_query(db, statements, writer)
            else:
                run_tail(db, args, writer)
        finally:
            conn.close()
        stdout.flush()
    except ConfigError as e:
        log.error('%s', e)
        return EXIT_CONFIG
    except SqlTailError as e:
        log.error('%s', e)
        return EXIT_ERROR
    except psycopg2.Error as e:
        log.error('Database error: %s', str(e).strip())
        return EXIT_ERROR
    except BrokenPipeError:
        log.error('Output closed before all rows were written')
        if stdout is sys.stdout:
            # Whatever is still buffered would fail again when Python exits
            devnull = os.open(os.devnull, os.O_WRONLY)
            os.dup2(devnull, sys.stdout.fileno())
        return EXIT_ERROR
    except OSError as e:
        log.error('I/O error: %s', e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        log.info('Interrupted')
        return EXIT_INTERRUPTED
    return EXIT_OK


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
