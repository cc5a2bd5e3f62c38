"""
Persistence layer over the Supabase client.

Every pipeline write goes through SupabaseStore so that row encoding, filter
building and error translation live in one place. Uniqueness guarantees come
from the unique indexes declared in migrations/001_initial_schema.sql; insert_if_absent relies on
them instead of a read-then-write check.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from alertledger.services.errors import StoreError
from alertledger.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)

# Table names
PENDING_TRANSACTIONS = 'pending_transactions'
TRANSACTIONS = 'transactions'
MERCHANT_PATTERNS = 'merchant_patterns'
MERCHANT_LOCATIONS = 'merchant_locations'
EMAIL_PARSING_PATTERNS = 'email_parsing_patterns'
EMAIL_LOCATION_PATTERNS = 'email_location_patterns'
LOCATION_SAMPLES = 'location_samples'
LEARNING_PATTERNS = 'learning_patterns'
DEVICE_TOKENS = 'device_tokens'

_OPERATORS = ('eq', 'neq', 'gt', 'gte', 'lt', 'lte')

Row = Dict[str, Any]


def to_row(value: Union[BaseModel, Row]) -> Row:
    """
    Encode a model for the database.

    Decimals and datetimes become strings (the Supabase JSON encoder cannot
    serialize them), and unset server-generated columns are left out.
    """
    if isinstance(value, BaseModel):
        row = value.model_dump(mode='json')
    else:
        row = dict(value)

    for column in ('id', 'created_at'):
        if row.get(column) is None:
            row.pop(column, None)
    return row


class SupabaseStore:
    """Find / insert / upsert / insert-if-absent / update over Supabase tables."""

    def __init__(self, client=None):
        self.supabase = client if client is not None else get_supabase_client()

    def _apply_filters(self, query, filters: Optional[Dict[str, Any]]):
        """
        Add filters to a query.

        Keys are column names, optionally suffixed with an operator:
        {'status': 'pending', 'expires_at__lt': '2024-01-01T00:00:00Z'}
        """
        for key, value in (filters or {}).items():
            column, _, operator = key.partition('__')
            operator = operator or 'eq'
            if operator not in _OPERATORS:
                raise ValueError(f"Unsupported filter operator: {operator}")
            query = getattr(query, operator)(column, value)
        return query

    def _execute(self, table: str, operation: str, query) -> List[Row]:
        try:
            response = query.execute()
        except Exception as e:
            logger.error("Database operation failed", extra={
                "table": table,
                "operation": operation,
                "error": str(e)
            }, exc_info=True)
            raise StoreError(table, operation, str(e)) from e
        return response.data or []

    def find(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None
    ) -> List[Row]:
        query = self._apply_filters(self.supabase.table(table).select('*'), filters)
        if order_by:
            query = query.order(order_by, desc=desc)
        if limit is not None:
            query = query.limit(limit)
        return self._execute(table, 'select', query)

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Row]:
        rows = self.find(table, filters, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        query = self._apply_filters(
            self.supabase.table(table).select('id', count='exact'),
            filters
        )
        try:
            response = query.execute()
        except Exception as e:
            logger.error("Database count failed", extra={
                "table": table,
                "error": str(e)
            }, exc_info=True)
            raise StoreError(table, 'count', str(e)) from e

        if getattr(response, 'count', None) is not None:
            return response.count
        return len(response.data or [])

    def insert(self, table: str, row: Union[BaseModel, Row]) -> Row:
        rows = self._execute(table, 'insert', self.supabase.table(table).insert(to_row(row)))
        if not rows:
            raise StoreError(table, 'insert', 'no row returned')
        return rows[0]

    def upsert(self, table: str, row: Union[BaseModel, Row], on_conflict: str) -> Row:
        """Update the row matching the unique columns in on_conflict, or insert it."""
        query = self.supabase.table(table).upsert(to_row(row), on_conflict=on_conflict)
        rows = self._execute(table, 'upsert', query)
        if not rows:
            raise StoreError(table, 'upsert', 'no row returned')
        return rows[0]

    def insert_if_absent(
        self,
        table: str,
        row: Union[BaseModel, Row],
        on_conflict: str
    ) -> Optional[Row]:
        """
        Atomically insert a row unless one with the same unique key exists.

        Returns:
            The inserted row, or None when the unique key was already taken
        """
        query = self.supabase.table(table).upsert(
            to_row(row),
            on_conflict=on_conflict,
            ignore_duplicates=True
        )
        rows = self._execute(table, 'insert_if_absent', query)
        return rows[0] if rows else None

    def update(self, table: str, filters: Dict[str, Any], values: Union[BaseModel, Row]) -> List[Row]:
        """Update every row matching filters. Returns the updated rows (empty if none matched)."""
        if not filters:
            raise ValueError("update requires at least one filter")
        query = self._apply_filters(self.supabase.table(table).update(to_row(values)), filters)
        return self._execute(table, 'update', query)

    def delete(self, table: str, filters: Dict[str, Any]) -> List[Row]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        query = self._apply_filters(self.supabase.table(table).delete(), filters)
        return self._execute(table, 'delete', query)
