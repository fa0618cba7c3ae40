"""
Query executor — typed parameter binding over an async SQLAlchemy engine.

Every value that reaches a statement goes through :func:`bind_parameters`,
which picks the SQL type from the value's runtime type.  Statements are
plain ``text()`` templates with ``:name`` placeholders; user input is never
concatenated into SQL text.

The executor owns its engine.  It is created once at application startup
(see ``main.py``) and disposed on shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.elements import BindParameter, TextClause
from sqlalchemy.types import (
    Boolean,
    Date,
    DateTime,
    Integer,
    Numeric,
    TypeEngine,
    Unicode,
)

logger = logging.getLogger(__name__)

Params = Optional[Mapping[str, Any]]
NullTypes = Optional[Mapping[str, TypeEngine]]
Row = Dict[str, Any]

_TABLE_RE = re.compile(r"\b(?:FROM|INTO|UPDATE)\s+([A-Za-z_][\w.]*)", re.IGNORECASE)


class QueryError(Exception):
    """A statement or connection failed.  Carries the operation, never credentials."""

    def __init__(self, operation: str, message: str = "Query execution failed"):
        super().__init__(f"{message}: {operation}")
        self.operation = operation


class ConstraintViolation(QueryError):
    """A unique / foreign-key / check constraint rejected the statement."""


class NoRowsAffected(QueryError):
    """A statement that must touch a row matched none; its transaction was rolled back."""


class ParameterBindingError(TypeError):
    """A parameter value has no safe SQL binding."""


class Statement(NamedTuple):
    """One step of :meth:`QueryExecutor.execute_transaction`.

    ``require_rows`` makes the step fail with :class:`NoRowsAffected` when it
    matches no row, which turns a guarded ``UPDATE ... WHERE status = :expected``
    into a compare-and-set.
    """

    query: str
    params: Params = None
    null_types: NullTypes = None
    require_rows: bool = False


# ── Binding ────────────────────────────────────────────────────────────


def bind_value(name: str, value: Any, null_type: Optional[TypeEngine] = None) -> BindParameter:
    """
    Build one typed bind parameter for ``value``.

    ``None`` binds as a text NULL unless ``null_type`` names the column type
    (needed where the driver casts the parameter, e.g. a NULL timestamp).
    """
    if value is None:
        return bindparam(name, None, type_=null_type if null_type is not None else Unicode())
    if isinstance(value, bool):
        return bindparam(name, value, type_=Boolean())
    if isinstance(value, int):
        return bindparam(name, value, type_=Integer())
    if isinstance(value, float):
        return bindparam(name, Decimal(str(value)), type_=Numeric(10, 2))
    if isinstance(value, Decimal):
        return bindparam(name, value, type_=Numeric(10, 2))
    if isinstance(value, str):
        return bindparam(name, value, type_=Unicode())
    if isinstance(value, datetime):
        return bindparam(name, value, type_=DateTime(timezone=True))
    if isinstance(value, date):
        return bindparam(name, value, type_=Date())
    if isinstance(value, uuid.UUID):
        return bindparam(name, str(value), type_=Unicode())
    if isinstance(value, (dict, list, tuple)):
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            raise ParameterBindingError(
                f"Parameter '{name}' could not be serialized to JSON"
            ) from exc
        return bindparam(name, serialized, type_=Unicode())
    raise ParameterBindingError(
        f"Parameter '{name}' has unsupported type {type(value).__name__}"
    )


def bind_parameters(params: Params, null_types: NullTypes = None) -> List[BindParameter]:
    null_types = null_types or {}
    return [
        bind_value(name, value, null_types.get(name))
        for name, value in (params or {}).items()
    ]


def build_statement(query: str, params: Params = None, null_types: NullTypes = None) -> TextClause:
    """Return a ``text()`` clause with every parameter bound by type."""
    stmt = text(query)
    binds = bind_parameters(params, null_types)
    if binds:
        stmt = stmt.bindparams(*binds)
    return stmt


def describe_operation(query: str) -> str:
    """Short label for logs: statement verb plus first table."""
    words = query.split()
    verb = words[0].upper() if words else "QUERY"
    match = _TABLE_RE.search(query)
    return f"{verb} {match.group(1)}" if match else verb


# ── Executor ───────────────────────────────────────────────────────────


class QueryExecutor:
    """Runs parameterized statements against a pooled async engine."""

    def __init__(self, engine: AsyncEngine, query_timeout: float = 30.0):
        self._engine = engine
        self._query_timeout = query_timeout

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def execute(
        self, query: str, params: Params = None, null_types: NullTypes = None,
    ) -> List[Row]:
        """
        Execute a single statement in its own transaction.

        Returns result rows as dicts (empty for statements without rows).
        Raises ``QueryError`` on any driver, connection or timeout failure.
        """
        operation = describe_operation(query)
        stmt = self._prepare(query, params, null_types, operation)
        try:
            async with self._engine.begin() as conn:
                rows, _ = await self._run(conn, stmt)
                return rows
        except (SQLAlchemyError, asyncio.TimeoutError, OSError) as exc:
            raise await self._failure(exc, operation, params) from exc

    async def execute_transaction(self, statements: Sequence[Tuple[Any, ...]]) -> List[List[Row]]:
        """
        Execute ``statements`` atomically: either all commit or all roll back.

        Each item is a :class:`Statement` or a plain ``(query, params)`` tuple.
        The first failure, including a ``require_rows`` step that matched
        nothing, rolls the transaction back before the error propagates.
        """
        prepared = []
        for item in statements:
            step = Statement(*item)
            label = describe_operation(step.query)
            prepared.append(
                (label, step, self._prepare(step.query, step.params, step.null_types, label))
            )

        results: List[List[Row]] = []
        operation = "BEGIN"
        params: Params = None
        try:
            async with self._engine.connect() as conn:
                trans = await conn.begin()
                try:
                    for operation, step, stmt in prepared:
                        params = step.params
                        rows, affected = await self._run(conn, stmt)
                        if step.require_rows and affected < 1:
                            raise NoRowsAffected(operation, "No rows affected")
                        results.append(rows)
                except BaseException:
                    await trans.rollback()
                    logger.warning("Transaction rolled back at %s", operation)
                    raise
                operation = "COMMIT"
                await trans.commit()
        except (SQLAlchemyError, asyncio.TimeoutError, OSError) as exc:
            raise await self._failure(exc, operation, params) from exc
        return results

    async def test_connection(self) -> Dict[str, Any]:
        """Check the database with a trivial query."""
        try:
            await self.execute("SELECT 1 AS ok")
        except QueryError as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "database": self._engine.url.database}

    async def dispose(self) -> None:
        await self._engine.dispose()
        logger.info("Database pool closed")

    # ── internals ──────────────────────────────────────────────────────

    @staticmethod
    def _prepare(query: str, params: Params, null_types: NullTypes, operation: str) -> TextClause:
        try:
            return build_statement(query, params, null_types)
        except SQLAlchemyError as exc:
            # Placeholder / parameter-name mismatch in the template.
            logger.error("Could not bind parameters for %s: %s", operation, exc)
            raise QueryError(operation, "Invalid query parameters") from exc

    async def _run(self, conn: AsyncConnection, stmt: TextClause) -> Tuple[List[Row], int]:
        """Rows as dicts plus the number of rows returned or affected."""
        result = await asyncio.wait_for(conn.execute(stmt), timeout=self._query_timeout)
        if not result.returns_rows:
            return [], result.rowcount
        rows = [dict(row._mapping) for row in result]
        return rows, len(rows)

    async def _failure(self, exc: BaseException, operation: str, params: Params) -> QueryError:
        param_names = sorted((params or {}).keys())
        if isinstance(exc, asyncio.TimeoutError):
            logger.error("Query timed out after %.1fs: %s", self._query_timeout, operation)
            error = QueryError(operation, "Query timed out")
        elif isinstance(exc, IntegrityError):
            logger.warning("Constraint violation in %s (params: %s)", operation, param_names)
            error = ConstraintViolation(operation, "Constraint violation")
        else:
            logger.error(
                "Query failed: %s (params: %s): %s", operation, param_names, _driver_message(exc),
            )
            error = QueryError(operation)

        if isinstance(exc, DBAPIError) and exc.connection_invalidated:
            logger.warning("Connection invalidated, disposing pool; next use reconnects")
            await self._engine.dispose()
        return error


def _driver_message(exc: BaseException) -> str:
    """Driver error text without the SQL/parameter echo SQLAlchemy appends."""
    orig = getattr(exc, "orig", None)
    return f"{type(orig or exc).__name__}: {orig or exc}".splitlines()[0]
