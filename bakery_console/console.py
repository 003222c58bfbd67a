"""List-page state for one entity: rows, the row being edited and notices.

Local rows change only after the remote call succeeds; a failure becomes an
error notice and leaves the rows as they were.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from bakery_console.entities import get_entity
from bakery_console.errors import DataAccessError, ValidationError
from bakery_console.repository import Fields, TableRepository, describe_validation_error, serialize_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    level: str
    message: str


class EntityListView:
    def __init__(
        self,
        repository: TableRepository,
        entity: str,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.repository = repository
        self.entity = get_entity(entity)
        self.confirm = confirm or (lambda message: True)
        self.rows: list[dict] = []
        self.editing_id: Any = None
        self.notices: list[Notice] = []

    def _fail(self, action: str, exc: DataAccessError) -> None:
        logger.warning("%s %s failed: %s", action, self.entity.name, exc.message)
        self.notices.append(Notice("error", f"{action} failed: {exc.message}"))

    def _key(self, row: dict) -> Any:
        return row[self.entity.key]

    def refresh(self, **options: Any) -> bool:
        try:
            self.rows = self.repository.list(self.entity.name, **options)
        except DataAccessError as exc:
            self._fail("load", exc)
            return False
        return True

    def add(self, fields: Fields) -> Optional[dict]:
        try:
            row = self.repository.create(self.entity.name, fields)
        except DataAccessError as exc:
            self._fail("create", exc)
            return None
        self.rows = [row] + self.rows
        self.notices.append(Notice("success", f"{self.entity.name} created"))
        return row

    def start_editing(self, key: Any) -> None:
        # one editable row per list; picking another row drops the previous edit
        self.editing_id = key

    def cancel_editing(self) -> None:
        self.editing_id = None

    def is_editing(self, key: Any) -> bool:
        return self.editing_id is not None and self.editing_id == key

    def save_edit(self, patch: Fields) -> bool:
        if self.editing_id is None:
            return False
        key = self.editing_id
        try:
            typed = self._typed_patch(patch)
            self.repository.update(self.entity.name, key, typed)
        except DataAccessError as exc:
            self._fail("update", exc)
            return False
        self.notices.append(Notice("success", f"{self.entity.name} updated"))
        self.editing_id = None
        try:
            merged = self._merge(key, typed)
        except DataAccessError as exc:
            # the write went through; only the local copy is stale
            self._fail("reload", exc)
            return True
        self.rows = [merged if self._key(row) == key else row for row in self.rows]
        return True

    def remove(self, key: Any) -> bool:
        if not self.confirm(f"Delete {self.entity.name} {key}?"):
            return False
        try:
            self.repository.delete(self.entity.name, key)
        except DataAccessError as exc:
            self._fail("delete", exc)
            return False
        self.rows = [row for row in self.rows if self._key(row) != key]
        if self.editing_id == key:
            self.editing_id = None
        self.notices.append(Notice("success", f"{self.entity.name} deleted"))
        return True

    def _typed_patch(self, patch: Fields) -> dict:
        if not isinstance(patch, dict):
            patch = patch.model_dump(exclude_unset=True)
        try:
            return self.entity.update_schema.model_validate(patch).model_dump(exclude_unset=True)
        except PydanticValidationError as exc:
            raise ValidationError(describe_validation_error(exc)) from exc

    def _merge(self, key: Any, patch: dict) -> dict:
        touches_relation = any(
            self.entity.relation_for_field(name) is not None for name in patch
        ) or any(alias.name in patch for alias in self.entity.aliases)
        if touches_relation:
            return self.repository.get(self.entity.name, key)
        current = next((row for row in self.rows if self._key(row) == key), None)
        if current is None:
            return self.repository.get(self.entity.name, key)
        merged = dict(current)
        merged.update({name: serialize_value(value) for name, value in patch.items() if name in self.entity.columns})
        if self.entity.decorate is not None:
            merged = self.entity.decorate(merged)
        return merged
