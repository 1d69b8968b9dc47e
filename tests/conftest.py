import io
import os
from unittest import mock

import pytest

from sqltail import poller, values
from sqltail.db import Result


class FakeStatement:

    def __init__(self, db, query):
        self.db = db
        self.query = query

    def execute(self, params):
        self.db.calls.append(('execute_prepared', self.query, tuple(params)))
        (bound,) = params
        return self.db.result([row for row in self.db.ordered_rows()
                               if row[self.db.order_index] > bound])


class FakeDatabase:
    """In-memory stand-in for sqltail.db.Database holding one table."""

    def __init__(self, table, column, columns, rows, batch_size=2):
        self.table = table
        self.column = column
        self.columns = list(columns)
        self.rows = list(rows)
        self.order_index = self.columns.index(column)
        self.batch_size = batch_size
        self.calls = []
        self.statements = []

    def insert(self, *row):
        self.rows.append(row)

    def ordered_rows(self):
        return [row for row in self.rows if row[self.order_index] is not None]

    def result(self, rows):
        rows = sorted(rows, key=lambda row: row[self.order_index])
        batches = []
        for start in range(0, len(rows), self.batch_size):
            chunk = rows[start:start + self.batch_size]
            batches.append([tuple(values.from_driver(cell) for cell in row) for row in chunk])
        return Result(self.columns, iter(batches))

    def execute(self, query, params=None):
        self.calls.append(('execute', query, params))
        if query == poller.seed_query(self.table, self.column):
            order_values = [row[self.order_index] for row in self.ordered_rows()]
            seed = max(order_values) if order_values else None
            return Result(['max'], iter([[(values.from_driver(seed),)]]))
        raise AssertionError('Unexpected query {!r}'.format(query))

    def stream(self, query, params=None):
        self.calls.append(('stream', query, params))
        if query == poller.unbounded_query(self.table, self.column):
            return self.result(self.ordered_rows())
        raise AssertionError('Unexpected query {!r}'.format(query))

    def prepare(self, query):
        assert query == poller.bounded_query(self.table, self.column)
        self.calls.append(('prepare', query, None))
        statement = FakeStatement(self, query)
        self.statements.append(statement)
        return statement


class FlushCountingStream(io.StringIO):

    def __init__(self):
        super().__init__()
        self.flushes = 0

    def flush(self):
        self.flushes += 1
        super().flush()


@pytest.fixture
def stream():
    return FlushCountingStream()


@pytest.fixture
def events_db():
    """An events table with two rows already in it."""
    return FakeDatabase('events', 'id', ['id', 'name'], [(1, 'first'), (2, 'second')])


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Run in an empty directory with no SQLTAIL_* variables, restoring the environment."""
    monkeypatch.chdir(tmp_path)
    with mock.patch.dict(os.environ):
        for key in list(os.environ):
            if key.startswith('SQLTAIL_'):
                del os.environ[key]
        yield tmp_path
