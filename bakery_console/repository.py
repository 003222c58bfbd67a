from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional, Union
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from bakery_console.auth import SessionContext
from bakery_console.entities import CASCADE, RESTRICT, Entity, dependents_of, get_entity
from bakery_console.errors import (
    ConstraintError,
    DataAccessError,
    NotFoundError,
    RemoteOperationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

Fields = Union[dict, BaseModel]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def serialize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def describe_errors(errors: Iterable[dict]) -> str:
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages)


def describe_validation_error(exc: PydanticValidationError) -> str:
    return describe_errors(exc.errors())


class TableRepository:
    """List/get/create/update/delete over the entity registry.

    Bound to one database session and to the authenticated session of the
    caller; writes are attributed to that caller in the log.
    """

    def __init__(self, db: Session, context: SessionContext) -> None:
        self.db = db
        self.context = context

    @property
    def actor(self) -> str:
        return self.context.email or self.context.user_id

    def list(
        self,
        entity: str,
        filters: Optional[dict[str, Any]] = None,
        embed: Optional[Iterable[str]] = None,
        order_by: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        definition = get_entity(entity)
        embeds = self._embeds(definition, embed)
        stmt, targets = self._select(definition)
        for name, value in (filters or {}).items():
            stmt = stmt.where(self._column(definition, name) == value)
        if search:
            stmt = stmt.where(self._search_clause(definition, targets, search))
        stmt = stmt.order_by(*self._ordering(definition, order_by))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._guard(f"list {definition.name}"):
            rows = self.db.execute(stmt).all()
        return [self._to_dict(definition, embeds, row) for row in rows]

    def get(self, entity: str, key: Any) -> dict:
        definition = get_entity(entity)
        stmt, _ = self._select(definition)
        stmt = stmt.where(getattr(definition.model, definition.key) == key)
        with self._guard(f"get {definition.name}"):
            row = self.db.execute(stmt).first()
        if row is None:
            raise NotFoundError(f"{definition.name} {key} not found")
        return self._to_dict(definition, self._embeds(definition, None), row)

    def create(self, entity: str, fields: Fields) -> dict:
        definition = get_entity(entity)
        values = self._validate(definition.create_schema, fields)
        missing = [name for name in definition.required if not self._given(definition, name, values)]
        if missing:
            raise ValidationError(f"{definition.name} requires {', '.join(missing)}")
        with self._guard(f"create {definition.name}"):
            values = self._resolve_aliases(definition, values)
            self._check_references(definition, values)
            for name in definition.generated:
                if _absent(values.get(name)):
                    values[name] = str(uuid4())
            row = definition.model(**values, created_at=_now())
            self.db.add(row)
            self.db.commit()
            key = getattr(row, definition.key)
        logger.info("%s created %s %s", self.actor, definition.name, key)
        return self.get(definition.name, key)

    def update(self, entity: str, key: Any, patch: Fields) -> None:
        definition = get_entity(entity)
        values = self._validate(definition.update_schema, patch)
        if definition.key in values:
            raise ValidationError(f"{definition.key} cannot be changed")
        cleared = [name for name in definition.required if name in values and _absent(values[name])]
        if cleared:
            raise ValidationError(f"{definition.name} cannot clear {', '.join(cleared)}")
        with self._guard(f"update {definition.name}"):
            row = self._load(definition, key)
            values = self._resolve_aliases(definition, values)
            self._check_references(definition, values)
            for name, value in values.items():
                setattr(row, name, value)
            self.db.commit()
        logger.info("%s updated %s %s: %s", self.actor, definition.name, key, sorted(values))

    def delete(self, entity: str, key: Any) -> None:
        definition = get_entity(entity)
        with self._guard(f"delete {definition.name}"):
            row = self._load(definition, key)
            key_value = getattr(row, definition.key)
            dependents = dependents_of(definition)
            for other, relation in dependents:
                if relation.on_delete != RESTRICT:
                    continue
                count = self.db.execute(
                    select(func.count())
                    .select_from(other.model)
                    .where(getattr(other.model, relation.field) == key_value)
                ).scalar_one()
                if count:
                    raise ConstraintError(
                        f"{definition.name} {key} is referenced by {count} {other.table} row(s)"
                    )
            for other, relation in dependents:
                if relation.on_delete == CASCADE:
                    result = self.db.execute(
                        sa_delete(other.model).where(getattr(other.model, relation.field) == key_value)
                    )
                    if result.rowcount:
                        logger.info(
                            "%s cascaded delete of %s %s row(s) from %s",
                            self.actor,
                            definition.name,
                            result.rowcount,
                            other.table,
                        )
            self.db.delete(row)
            self.db.commit()
        logger.info("%s deleted %s %s", self.actor, definition.name, key)

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except DataAccessError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("%s rejected by the database: %s", action, exc.orig)
            raise ConstraintError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("%s failed", action)
            raise RemoteOperationError(str(exc)) from exc

    def _validate(self, schema: type[BaseModel], fields: Fields) -> dict:
        if isinstance(fields, BaseModel):
            fields = fields.model_dump(exclude_unset=True)
        try:
            payload = schema.model_validate(fields)
        except PydanticValidationError as exc:
            raise ValidationError(describe_validation_error(exc)) from exc
        return payload.model_dump(exclude_unset=True)

    def _given(self, definition: Entity, name: str, values: dict) -> bool:
        if not _absent(values.get(name)):
            return True
        return any(
            alias.field == name and not _absent(values.get(alias.name)) for alias in definition.aliases
        )

    def _resolve_aliases(self, definition: Entity, values: dict) -> dict:
        for alias in definition.aliases:
            if alias.name not in values:
                continue
            natural = values.pop(alias.name)
            if _absent(natural):
                continue
            if not _absent(values.get(alias.field)):
                raise ValidationError(f"give either {alias.field} or {alias.name}, not both")
            related = get_entity(definition.relation_for_field(alias.field).entity)
            key = self.db.execute(
                select(getattr(related.model, related.key)).where(
                    getattr(related.model, alias.lookup) == natural
                )
            ).scalars().first()
            if key is None:
                raise ConstraintError(f"{related.name} with {alias.lookup} '{natural}' does not exist")
            values[alias.field] = key
        return values

    def _check_references(self, definition: Entity, values: dict) -> None:
        for relation in definition.relations:
            value = values.get(relation.field)
            if value is None:
                continue
            related = get_entity(relation.entity)
            if self.db.get(related.model, value) is None:
                raise ConstraintError(
                    f"{relation.field} {value} does not reference an existing {related.name}"
                )

    def _load(self, definition: Entity, key: Any):
        row = self.db.get(definition.model, key)
        if row is None:
            raise NotFoundError(f"{definition.name} {key} not found")
        return row

    def _embeds(self, definition: Entity, embed: Optional[Iterable[str]]) -> set[str]:
        if embed is None:
            return {relation.name for relation in definition.relations}
        return {definition.relation(name).name for name in embed}

    def _select(self, definition: Entity):
        targets = {}
        stmt = select(definition.model)
        for relation in definition.relations:
            related = get_entity(relation.entity)
            target = aliased(related.model, name=f"embed_{relation.name}")
            targets[relation.name] = target
            stmt = stmt.add_columns(target).outerjoin(
                target, getattr(definition.model, relation.field) == getattr(target, related.key)
            )
        return stmt, targets

    def _column(self, definition: Entity, name: str):
        if name not in definition.columns:
            raise ValidationError(f"{definition.name} has no column '{name}'")
        return getattr(definition.model, name)

    def _ordering(self, definition: Entity, order_by: Optional[str]) -> list:
        if order_by:
            descending = order_by.startswith("-")
            column = self._column(definition, order_by.lstrip("-"))
        else:
            descending = definition.descending
            column = self._column(definition, definition.order_by)
        tiebreak = getattr(definition.model, definition.key).desc()
        return [column.desc() if descending else column.asc(), tiebreak]

    def _search_clause(self, definition: Entity, targets: dict, term: str):
        if not definition.search:
            raise ValidationError(f"{definition.name} does not support search")
        escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        clauses = []
        for path in definition.search:
            if "." in path:
                embed_name, column = path.split(".", 1)
                attribute = getattr(targets[embed_name], column)
            else:
                attribute = getattr(definition.model, path)
            clauses.append(func.lower(attribute).like(pattern, escape="\\"))
        return or_(*clauses)

    def _to_dict(self, definition: Entity, embeds: set[str], row) -> dict:
        data = {column: serialize_value(getattr(row[0], column)) for column in definition.columns}
        for index, relation in enumerate(definition.relations, start=1):
            if relation.name not in embeds:
                continue
            related = row[index]
            data[relation.name] = (
                None
                if related is None
                else {column: serialize_value(getattr(related, column)) for column in relation.columns}
            )
        if definition.decorate is not None:
            data = definition.decorate(data)
        return data
