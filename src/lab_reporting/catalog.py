"""Read-only catalog access used by the result builder.

The catalog itself (tests, panels, packages, formulas) is administered
elsewhere; the core only needs lookup by id, in batches.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from lab_reporting.schemas.catalog import (
    CatalogEntry,
    Formula,
    Package,
    Panel,
    TestDefinition,
)

logger = logging.getLogger(__name__)


class CatalogLookup(Protocol):
    def get(self, item_id: str) -> CatalogEntry | None: ...

    def get_many(self, item_ids: Iterable[str]) -> dict[str, CatalogEntry]: ...


class InMemoryCatalog:
    """Dict-backed catalog, also used to load catalog documents from JSON."""

    def __init__(
        self,
        tests: Iterable[TestDefinition] = (),
        panels: Iterable[Panel] = (),
        packages: Iterable[Package] = (),
        formulas: Iterable[Formula] = (),
    ) -> None:
        self._entries: dict[str, CatalogEntry] = {}
        for entry in [*tests, *panels, *packages]:
            self.add(entry)
        self.formulas: list[Formula] = list(formulas)

    @classmethod
    def from_documents(cls, data: dict[str, Any]) -> InMemoryCatalog:
        """Build from ``{"tests": [...], "panels": [...], "packages": [...], "formulas": [...]}``."""
        return cls(
            tests=[TestDefinition.model_validate(t) for t in data.get("tests", [])],
            panels=[Panel.model_validate(p) for p in data.get("panels", [])],
            packages=[Package.model_validate(p) for p in data.get("packages", [])],
            formulas=[Formula.model_validate(f) for f in data.get("formulas", [])],
        )

    def add(self, entry: CatalogEntry) -> None:
        if entry.id in self._entries:
            logger.warning("catalog: replacing duplicate entry %s", entry.id)
        self._entries[entry.id] = entry

    def get(self, item_id: str) -> CatalogEntry | None:
        return self._entries.get(item_id)

    def get_many(self, item_ids: Iterable[str]) -> dict[str, CatalogEntry]:
        return {i: self._entries[i] for i in item_ids if i in self._entries}

    def __len__(self) -> int:
        return len(self._entries)
