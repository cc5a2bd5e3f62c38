"""
Shared fixtures: an in-memory stand-in for the Supabase query builder.

The fake supports exactly the calls SupabaseStore makes (select with count,
insert, upsert with on_conflict/ignore_duplicates, update, delete, the
eq/neq/gt/gte/lt/lte filters, order and limit) and enforces the unique
indexes from migrations/001_initial_schema.sql.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import copy
import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest

from alertledger.services.store import SupabaseStore
from alertledger.utils.dates import to_iso, utcnow

UNIQUE_KEYS = {
    'pending_transactions': [('user_id', 'message_hash')],
    'transactions': [('user_id', 'message_hash')],
    'merchant_patterns': [('user_id', 'merchant_key')],
    'merchant_locations': [('user_id', 'merchant_key')],
    'email_parsing_patterns': [('scope_key',)],
    'device_tokens': [('user_id', 'token')],
}


def _comparable(value):
    """ISO timestamps compare as datetimes, everything else as is."""
    if isinstance(value, str) and len(value) >= 19 and value[4] == '-' and value[10] == 'T':
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return value
    return value


def _matches(row, filters):
    for column, operator, value in filters:
        actual = row.get(column)
        if operator == 'eq':
            if actual != value:
                return False
        elif operator == 'neq':
            if actual == value:
                return False
        else:
            if actual is None:
                return False
            left, right = _comparable(actual), _comparable(value)
            if operator == 'gt' and not left > right:
                return False
            if operator == 'gte' and not left >= right:
                return False
            if operator == 'lt' and not left < right:
                return False
            if operator == 'lte' and not left <= right:
                return False
    return True


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.operation = 'select'
        self.payload = None
        self.filters = []
        self.order_by = None
        self.descending = False
        self.limit_to = None
        self.count_mode = None
        self.on_conflict = None
        self.ignore_duplicates = False

    # Builders

    def select(self, columns='*', count=None):
        self.operation = 'select'
        self.count_mode = count
        return self

    def insert(self, row):
        self.operation, self.payload = 'insert', row
        return self

    def upsert(self, row, on_conflict=None, ignore_duplicates=False):
        self.operation, self.payload = 'upsert', row
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values):
        self.operation, self.payload = 'update', values
        return self

    def delete(self):
        self.operation = 'delete'
        return self

    def _filter(self, operator, column, value):
        self.filters.append((column, operator, value))
        return self

    def eq(self, column, value):
        return self._filter('eq', column, value)

    def neq(self, column, value):
        return self._filter('neq', column, value)

    def gt(self, column, value):
        return self._filter('gt', column, value)

    def gte(self, column, value):
        return self._filter('gte', column, value)

    def lt(self, column, value):
        return self._filter('lt', column, value)

    def lte(self, column, value):
        return self._filter('lte', column, value)

    def order(self, column, desc=False):
        self.order_by, self.descending = column, desc
        return self

    def limit(self, n):
        self.limit_to = n
        return self

    # Execution

    def execute(self):
        if self.table in self.client.failing_tables:
            raise RuntimeError(f"simulated outage on {self.table}")

        rows = self.client.tables.setdefault(self.table, [])
        handler = getattr(self, f"_{self.operation}")
        data = handler(rows)
        return SimpleNamespace(data=copy.deepcopy(data), count=len(data) if self.count_mode else None)

    def _select(self, rows):
        found = [row for row in rows if _matches(row, self.filters)]
        if self.order_by:
            present = [r for r in found if r.get(self.order_by) is not None]
            missing = [r for r in found if r.get(self.order_by) is None]
            present.sort(key=lambda r: _comparable(r[self.order_by]), reverse=self.descending)
            found = present + missing
        if self.limit_to is not None:
            found = found[:self.limit_to]
        return found

    def _conflict(self, rows, row, columns):
        return next((r for r in rows if all(r.get(c) == row.get(c) for c in columns)), None)

    def _new_row(self, row):
        row = copy.deepcopy(row)
        row.setdefault('id', str(uuid.uuid4()))
        row.setdefault('created_at', to_iso(utcnow()))
        return row

    def _insert(self, rows):
        for columns in UNIQUE_KEYS.get(self.table, []):
            if self._conflict(rows, self.payload, columns):
                raise RuntimeError(f"duplicate key value violates unique constraint on {self.table}")
        row = self._new_row(self.payload)
        rows.append(row)
        return [row]

    def _upsert(self, rows):
        columns = tuple(self.on_conflict.split(',')) if self.on_conflict else ('id',)
        existing = self._conflict(rows, self.payload, columns)
        if existing is not None:
            if self.ignore_duplicates:
                return []
            existing.update(copy.deepcopy(self.payload))
            return [existing]
        row = self._new_row(self.payload)
        rows.append(row)
        return [row]

    def _update(self, rows):
        updated = []
        for row in rows:
            if _matches(row, self.filters):
                row.update(copy.deepcopy(self.payload))
                updated.append(row)
        return updated

    def _delete(self, rows):
        deleted = [row for row in rows if _matches(row, self.filters)]
        self.client.tables[self.table] = [row for row in rows if row not in deleted]
        return deleted


class FakeSupabase:
    """Holds tables as lists of dicts."""

    def __init__(self):
        self.tables = {}
        self.failing_tables = set()

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.get(name, [])


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def store(fake_supabase):
    return SupabaseStore(client=fake_supabase)


@pytest.fixture
def user_id():
    return "00000000-0000-0000-0000-000000000001"
