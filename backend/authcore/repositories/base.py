"""Generic repository base and query utilities for SQLAlchemy 2.x.

This module centralizes persistence-only concerns shared by all repositories:
- The uniform CRUD / query / soft-delete / projection contract.
- Whitelisted equality filters and update fields (no mass-assignment).
- Safe sorting with a whitelist mapping and deterministic pagination.
- Uniform translation of storage faults into ``RepositoryError``.
- No business logic, no commit/rollback; services own transactions.

Design decisions
----------------
* Repositories MUST remain thin and persistence-focused:
  - They never implement use cases or domain policies.
  - They never call commit/rollback; the Unit of Work does.
* Soft-deleted rows are hidden from every read except ``find_by_id``
  unless ``include_deleted=True`` is passed.
* Every insert runs inside a SAVEPOINT so a unique-constraint failure leaves
  the surrounding transaction usable (needed by ``upsert`` and
  ``create_many``).
* Conditional writes go through :meth:`BaseRepository._execute_update`, which
  reports the affected row count; callers build compare-and-swap transitions
  on it instead of locking in-process.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generic, NoReturn, TypeVar, cast

from sqlalchemy import ColumnElement, Select, and_, func, or_, select, update
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import InstrumentedAttribute, Session

from authcore.core.extensions import db
from authcore.models.base import new_id, utcnow
from authcore.services._shared.errors import (
    BulkWriteError,
    RepositoryError,
    ValidationError,
)

E = TypeVar("E")  # SQLAlchemy mapped entity type

log = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, DisconnectionError, PoolTimeoutError)


# ----------------------------- Storage faults --------------------------------


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy faults into :class:`RepositoryError`.

    ``IntegrityError`` passes through untouched: only the repository that
    knows its constraints can turn it into a meaningful domain error.

    :param operation: Short operation label used in messages and logs.
    :type operation: str
    :raises RepositoryError: ``retryable=True`` for timeouts and connection
        loss, ``retryable=False`` for any other storage fault.
    """
    try:
        yield
    except IntegrityError:
        raise
    except TRANSIENT_ERRORS as exc:
        log.warning("storage.transient_fault", extra={"event": operation})
        raise RepositoryError(f"{operation}: storage unavailable", retryable=True) from exc
    except SQLAlchemyError as exc:
        log.error("storage.fault", extra={"event": operation}, exc_info=True)
        raise RepositoryError(f"{operation}: storage error", retryable=False) from exc


# ------------------------------- Value objects -------------------------------


@dataclass(slots=True, frozen=True)
class UpdateResult:
    """Outcome of a set-style update.

    :param matched: Rows matching the filter.
    :type matched: int
    :param modified: Rows whose stored values actually changed.
    :type modified: int
    """

    matched: int
    modified: int


@dataclass(slots=True)
class Pagination:
    """Pagination input parameters.

    :param page: 1-based page number (validated to be ``>= 1``).
    :type page: int
    :param limit: Page size (validated to be ``>= 1``).
    :type limit: int
    :param sort: Public sort tokens (e.g., ``["-created_at", "email"]``).
    :type sort: list[str]
    """

    page: int
    limit: int
    sort: list[str]


@dataclass(slots=True)
class Page(Generic[E]):
    """Result page with metadata."""

    items: Sequence[E]
    total: int
    page: int
    limit: int


# ----------------------------- Sorting utilities -----------------------------


def parse_sort_tokens(raw: Iterable[str]) -> list[tuple[str, bool]]:
    """Parse public sort tokens into ``(field, is_desc)`` tuples.

    :param raw: Public tokens like ``["-created_at", "name"]``.
    :type raw: Iterable[str]
    :returns: List of ``(field_name, is_desc)`` tokens.
    :rtype: list[tuple[str, bool]]
    """
    parsed: list[tuple[str, bool]] = []
    for token in raw:
        is_desc = token.startswith("-")
        field = token[1:] if is_desc else token
        field = field.strip()
        if field:
            parsed.append((field, is_desc))
    return parsed


def _apply_sorting(
    stmt: Select[Any],
    sortable_fields: Mapping[str, InstrumentedAttribute[Any]],
    tokens: Iterable[str],
    *,
    pk_attr: InstrumentedAttribute[Any] | None,
) -> Select[Any]:
    """Apply safe ``ORDER BY`` clauses based on a whitelist mapping.

    Unknown sort tokens are ignored silently. The primary key is always
    appended as a final ascending tiebreaker to stabilize pagination.
    """
    orders: list[Any] = []
    for field, is_desc in parse_sort_tokens(tokens):
        col = sortable_fields.get(field)
        if isinstance(col, InstrumentedAttribute):
            orders.append(col.desc() if is_desc else col.asc())

    if orders:
        stmt = stmt.order_by(*orders)

    if pk_attr is not None:
        stmt = stmt.order_by(pk_attr.asc())

    return stmt


def paginate_select(
    session: Session,
    stmt: Select[Any],
    *,
    page: int,
    limit: int,
    with_total: bool = True,
) -> tuple[list[Any], int]:
    """Execute a select with pagination and an optional total count.

    :returns: Tuple of ``(items, total)`` where ``total`` is 0 when ``with_total=False``.
    :rtype: tuple[list[Any], int]
    """
    page = max(int(page), 1)
    limit = max(int(limit), 1)

    total = 0
    if with_total:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = int(session.execute(count_stmt).scalar_one())

    offset = (page - 1) * limit
    sliced = stmt.limit(limit).offset(offset)
    items = list(session.execute(sliced).scalars().all())
    return items, total


# ------------------------------ Base repository ------------------------------


class BaseRepository(Generic[E]):
    """Generic, persistence-only repository for a single entity type.

    Subclasses MUST define:

    * ``model``: the SQLAlchemy mapped class.

    Subclasses MAY override:

    * ``_required_fields`` to reject incomplete ``create`` payloads early.
    * ``_filterable_fields`` to whitelist equality filters (recommended).
    * ``_updatable_fields`` to whitelist keys allowed in patches.
    * ``_sortable_fields`` to expose safe sort keys.
    * ``_raise_integrity`` to map constraint violations to domain errors.

    This class NEVER:

    * opens/commits/rolls back transactions,
    * implements business rules or cross-aggregate coordination.
    """

    #: SQLAlchemy mapped model (must be set by subclasses)
    model: type[E]

    #: Fields that must be present and non-empty in ``create`` payloads.
    _required_fields: tuple[str, ...] = ()

    def __init__(self, session: Session | None = None) -> None:
        """Initialise the repository with an optional SQLAlchemy session.

        When no explicit session is provided the repository falls back to the
        Flask-scoped session exposed by ``authcore.core.extensions``.

        :param session: Session shared across the Unit of Work scope.
        :type session: :class:`sqlalchemy.orm.Session` | None
        """
        self._session: Session | None = session

    # ------------------------------ Session access ---------------------------

    @property
    def session(self) -> Session:
        """Return the injected session, or the Flask-scoped one."""
        if self._session is not None:
            return self._session
        return cast(Session, db.session)

    # ------------------------------ Extensibility ----------------------------

    def _pk_attr(self) -> InstrumentedAttribute[Any] | None:
        """Return the model's primary-key attribute (``model.id``) if available."""
        return getattr(self.model, "id", None)

    def _sortable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]]:
        """Whitelist mapping of public sort keys to model attributes."""
        return {}

    def _filterable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]] | None:
        """Optional whitelist of equality-filterable fields.

        If this method returns ``None``, any mapped attribute of the model can
        be used as a filter key. If a mapping is returned, only its keys are
        accepted. Unknown keys raise :class:`ValidationError` in both modes so
        a typo can never widen a bulk update.

        :returns: Public key → ORM attribute mapping, or ``None``.
        :rtype: Mapping[str, InstrumentedAttribute] | None
        """
        return None

    def _updatable_fields(self) -> set[str]:
        """Whitelist of public keys that can be assigned on update.

        :returns: Set of allowed public keys for update operations.
        :rtype: set[str]
        """
        return set()

    def _raise_integrity(self, exc: IntegrityError) -> NoReturn:
        """Map a constraint violation to a domain error.

        Subclasses override to raise ``Duplicate*Error`` for their unique
        keys and delegate to ``super()`` otherwise.

        :raises ValidationError: Always.
        """
        raise ValidationError(f"{self.model.__name__}: constraint violated") from exc

    # ------------------------------ Internals --------------------------------

    @property
    def _has_soft_delete(self) -> bool:
        return hasattr(self.model, "is_deleted")

    def _column(self, key: str) -> InstrumentedAttribute[Any]:
        allowed = self._filterable_fields()
        col = allowed.get(key) if allowed is not None else getattr(self.model, key, None)
        if not isinstance(col, InstrumentedAttribute):
            raise ValidationError(f"Unknown or non-filterable field: {key}")
        return col

    def _where(
        self,
        filters: Mapping[str, Any] | None,
        *,
        include_deleted: bool = False,
    ) -> list[ColumnElement[bool]]:
        """Build WHERE clauses from an equality mapping.

        Sequence values (list/tuple/set) translate to ``IN``.
        """
        clauses: list[ColumnElement[bool]] = []
        for key, value in (filters or {}).items():
            col = self._column(key)
            if isinstance(value, list | tuple | set | frozenset):
                clauses.append(col.in_(list(value)))
            else:
                clauses.append(col == value)
        if self._has_soft_delete and not include_deleted:
            clauses.append(self.model.is_deleted.is_(False))  # type: ignore[attr-defined]
        return clauses

    def _select(
        self,
        filters: Mapping[str, Any] | None,
        *,
        include_deleted: bool = False,
    ) -> Select[Any]:
        clauses = self._where(filters, include_deleted=include_deleted)
        stmt: Select[Any] = select(self.model)
        return stmt.where(and_(*clauses)) if clauses else stmt

    def _sanitize_update_fields(
        self,
        fields: Mapping[str, Any],
        *,
        strict: bool = True,
    ) -> dict[str, Any]:
        """Return a dict with only whitelisted update keys.

        :raises ValidationError: If ``strict`` and unknown keys are present.
        """
        allowed = self._updatable_fields()
        if not allowed:
            # Fail-closed by default to avoid accidental mass-assignment
            if fields and strict:
                raise ValidationError("No updatable fields configured for this repository.")
            return {}

        unknown = [k for k in fields if k not in allowed]
        if unknown and strict:
            raise ValidationError(f"Unknown or non-updatable fields: {unknown}")

        return {k: v for k, v in fields.items() if k in allowed}

    def _build(self, fields: Mapping[str, Any]) -> E:
        """Instantiate the model, running ``@validates`` hooks.

        :raises ValidationError: On missing required fields or rejected values.
        """
        missing = [f for f in self._required_fields if fields.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {missing}")
        try:
            instance = self.model(**fields)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc)) from exc
        if getattr(instance, "id", None) is None:
            instance.id = new_id()  # type: ignore[attr-defined]
        return instance

    def _insert(self, instance: E) -> E:
        """Insert inside a SAVEPOINT; ``IntegrityError`` propagates raw."""
        with storage_errors(f"{self.model.__name__}.insert"):
            with self.session.begin_nested():
                self.session.add(instance)
        return instance

    def _execute_update(
        self,
        clauses: Sequence[ColumnElement[bool]],
        values: Mapping[str, Any],
    ) -> int:
        """Run a single ``UPDATE ... WHERE`` and return the affected row count.

        This is the conditional-write primitive: the row count tells the
        caller whether its precondition still held at write time.
        """
        payload = dict(values)
        if hasattr(self.model, "updated_at"):
            payload.setdefault("updated_at", utcnow())
        stmt = (
            update(self.model)
            .where(and_(*clauses))
            .values(**payload)
            .execution_options(synchronize_session="fetch")
        )
        with storage_errors(f"{self.model.__name__}.update"):
            try:
                result = self.session.execute(stmt)
            except IntegrityError as exc:
                self._raise_integrity(exc)
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    def _changed_clause(self, values: Mapping[str, Any]) -> ColumnElement[bool]:
        return or_(*[getattr(self.model, k).is_distinct_from(v) for k, v in values.items()])

    def flush(self) -> None:
        """Flush pending changes, translating constraint and storage faults."""
        with storage_errors(f"{self.model.__name__}.flush"):
            try:
                self.session.flush()
            except IntegrityError as exc:
                self._raise_integrity(exc)

    # ------------------------------- Reads -----------------------------------

    def find_many(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        include_deleted: bool = False,
        sort: Iterable[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[E]:
        """List entities matching equality filters.

        :param filters: Equality filters (public keys); sequences mean ``IN``.
        :type filters: Mapping[str, Any] | None
        :param include_deleted: Also return soft-deleted rows.
        :type include_deleted: bool
        :param sort: Public sort tokens (e.g., ``["-created_at"]``).
        :type sort: Iterable[str] | None
        :returns: Matching entities; empty list when none match.
        :rtype: list[E]
        """
        stmt = self._select(filters, include_deleted=include_deleted)
        stmt = _apply_sorting(stmt, self._sortable_fields(), sort or [], pk_attr=self._pk_attr())
        if limit is not None:
            stmt = stmt.limit(int(limit))
        if offset is not None:
            stmt = stmt.offset(int(offset))
        with storage_errors(f"{self.model.__name__}.find_many"):
            return cast(list[E], list(self.session.execute(stmt).scalars().all()))

    def find_one(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        include_deleted: bool = False,
    ) -> E | None:
        """Return the first entity matching the filters, or ``None``."""
        stmt = self._select(filters, include_deleted=include_deleted)
        stmt = _apply_sorting(stmt, {}, [], pk_attr=self._pk_attr()).limit(1)
        with storage_errors(f"{self.model.__name__}.find_one"):
            return cast(E | None, self.session.execute(stmt).scalars().first())

    def find_by_id(self, entity_id: Any) -> E | None:
        """Retrieve an entity by identifier, soft-deleted or not.

        :raises RuntimeError: If no PK attribute can be detected.
        """
        if self._pk_attr() is None:
            raise RuntimeError("BaseRepository.find_by_id requires a detectable PK attribute.")
        with storage_errors(f"{self.model.__name__}.find_by_id"):
            return self.session.get(self.model, entity_id)

    def count(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        include_deleted: bool = False,
    ) -> int:
        """Count entities matching the filters."""
        clauses = self._where(filters, include_deleted=include_deleted)
        stmt = select(func.count()).select_from(self.model)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        with storage_errors(f"{self.model.__name__}.count"):
            return int(self.session.execute(stmt).scalar_one())

    def exists(self, filters: Mapping[str, Any] | None = None) -> bool:
        """Return ``True`` when at least one non-deleted row matches."""
        return self.find_one(filters) is not None

    def distinct(self, field: str, filters: Mapping[str, Any] | None = None) -> set[Any]:
        """Return the set of distinct values of ``field`` among matching rows."""
        col = getattr(self.model, field, None)
        if not isinstance(col, InstrumentedAttribute):
            raise ValidationError(f"Unknown field: {field}")
        clauses = self._where(filters)
        stmt = select(col).distinct()
        if clauses:
            stmt = stmt.where(and_(*clauses))
        with storage_errors(f"{self.model.__name__}.distinct"):
            return set(self.session.execute(stmt).scalars().all())

    def find_many_projected(
        self,
        fields: Sequence[str],
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Return only the requested columns of matching rows, as dicts."""
        cols = []
        for name in fields:
            col = getattr(self.model, name, None)
            if not isinstance(col, InstrumentedAttribute):
                raise ValidationError(f"Unknown field: {name}")
            cols.append(col)
        clauses = self._where(filters)
        stmt = select(*cols)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        pk = self._pk_attr()
        if pk is not None:
            stmt = stmt.order_by(pk.asc())
        with storage_errors(f"{self.model.__name__}.find_many_projected"):
            return [dict(row._mapping) for row in self.session.execute(stmt)]

    def paginate(
        self,
        pagination: Pagination,
        *,
        filters: Mapping[str, Any] | None = None,
        with_total: bool = True,
    ) -> Page[E]:
        """Paginate entities with stable sorting and optional total."""
        stmt = self._select(filters)
        stmt = _apply_sorting(
            stmt, self._sortable_fields(), pagination.sort, pk_attr=self._pk_attr()
        )
        with storage_errors(f"{self.model.__name__}.paginate"):
            raw_items, total = paginate_select(
                self.session,
                stmt,
                page=pagination.page,
                limit=pagination.limit,
                with_total=with_total,
            )
        return Page(
            items=cast(list[E], raw_items),
            total=total if with_total else 0,
            page=pagination.page,
            limit=pagination.limit,
        )

    # ------------------------------- Writes ----------------------------------

    def create(self, fields: Mapping[str, Any]) -> E:
        """Create and flush a new entity with a fresh identifier.

        :param fields: Column values for the new row.
        :type fields: Mapping[str, Any]
        :returns: The persisted entity.
        :rtype: E
        :raises ValidationError: On missing fields, rejected values or a
            uniqueness violation (subclasses raise more specific errors).
        """
        instance = self._build(fields)
        try:
            return self._insert(instance)
        except IntegrityError as exc:
            self._raise_integrity(exc)

    def create_many(self, rows: Sequence[Mapping[str, Any]]) -> list[E]:
        """Create every row or none of them.

        All rows are written inside one SAVEPOINT; the first failure rolls it
        back so no partial batch is visible to subsequent reads.

        :raises BulkWriteError: Reporting the index of the first failing row.
        """
        created: list[E] = []
        index = 0
        try:
            with storage_errors(f"{self.model.__name__}.create_many"):
                with self.session.begin_nested():
                    for index, fields in enumerate(rows):
                        instance = self._build(fields)
                        self.session.add(instance)
                        self.session.flush()
                        created.append(instance)
        except ValidationError as exc:
            raise BulkWriteError(index=index, reason=str(exc)) from exc
        except IntegrityError as exc:
            raise BulkWriteError(index=index, reason="uniqueness constraint violated") from exc
        return created

    def update_by_id(self, entity_id: Any, patch: Mapping[str, Any]) -> E | None:
        """Apply a whitelisted patch to one entity; never creates.

        :returns: The post-update entity, or ``None`` if the id is unknown.
        :rtype: E | None
        """
        instance = self.find_by_id(entity_id)
        if instance is None:
            return None
        return self.assign_updates(instance, patch)

    def update_one(self, filters: Mapping[str, Any], patch: Mapping[str, Any]) -> UpdateResult:
        """Patch the first non-deleted entity matching ``filters``."""
        instance = self.find_one(filters)
        if instance is None:
            return UpdateResult(matched=0, modified=0)
        updates = self._sanitize_update_fields(patch)
        changed = any(getattr(instance, k) != v for k, v in updates.items())
        self.assign_updates(instance, updates)
        return UpdateResult(matched=1, modified=int(changed))

    def update_many(self, filters: Mapping[str, Any], patch: Mapping[str, Any]) -> UpdateResult:
        """Patch every non-deleted entity matching ``filters`` in one statement."""
        updates = self._sanitize_update_fields(patch)
        clauses = self._where(filters)
        matched = self.count(filters)
        if not updates or matched == 0:
            return UpdateResult(matched=matched, modified=0)
        modified = self._execute_update([*clauses, self._changed_clause(updates)], updates)
        return UpdateResult(matched=matched, modified=modified)

    def upsert(self, filters: Mapping[str, Any], patch: Mapping[str, Any]) -> E:
        """Patch the matching non-deleted entity or create ``filters | patch``.

        Two concurrent callers with the same unique key cannot both insert:
        the loser's INSERT fails inside its SAVEPOINT and it falls back to
        patching the winner's row.
        """
        existing = self.find_one(filters)
        if existing is not None:
            return self.assign_updates(existing, patch)

        instance = self._build({**filters, **patch})
        try:
            return self._insert(instance)
        except IntegrityError as exc:
            existing = self.find_one(filters)
            if existing is None:
                self._raise_integrity(exc)
            log.info("upsert.race_resolved", extra={"event": self.model.__name__})
            return self.assign_updates(existing, patch)

    def soft_delete_many(self, ids: Iterable[Any]) -> UpdateResult:
        """Flag entities as deleted without removing them."""
        if not self._has_soft_delete:
            raise RuntimeError(f"{self.model.__name__} does not support soft deletion.")
        id_list = list(ids)
        if not id_list:
            return UpdateResult(matched=0, modified=0)
        pk = self._pk_attr()
        assert pk is not None
        matched = self.count({"id": id_list}, include_deleted=True)
        modified = self._execute_update(
            [pk.in_(id_list), self.model.is_deleted.is_(False)],  # type: ignore[attr-defined]
            {"is_deleted": True},
        )
        return UpdateResult(matched=matched, modified=modified)

    def delete_by_id(self, entity_id: Any) -> E | None:
        """Hard-delete an entity and return it (``None`` if absent)."""
        instance = self.find_by_id(entity_id)
        if instance is None:
            return None
        with storage_errors(f"{self.model.__name__}.delete"):
            self.session.delete(instance)
        self.flush()
        return instance

    # ----------------------------- Safe updates -------------------------------

    def assign_updates(
        self,
        instance: E,
        fields: Mapping[str, Any],
        *,
        strict: bool = True,
        flush: bool = True,
    ) -> E:
        """Assign only whitelisted keys to ``instance`` and optionally flush.

        The assignment uses ``setattr`` to trigger SQLAlchemy ``@validates``
        decorators defined on the mapped class.

        :raises ValidationError: If ``strict`` and unknown keys are present,
            or if a model validator rejects a value.
        """
        updates = self._sanitize_update_fields(fields, strict=strict)
        try:
            for k, v in updates.items():
                setattr(instance, k, v)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if flush:
            self.flush()
        return instance
