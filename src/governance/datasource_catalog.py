"""
Loads, parses, and caches the data source catalog YAML into typed objects.

The catalog is the single source of truth for what the SQL base source may
touch:
  - data sources      (logical name -> physical table and time column)
  - dimensions        (query dimension name -> column)
  - metric columns    (aggregator fieldName -> column)

Query names never reach SQL text directly; they are looked up here first.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)


class CatalogError(ValueError):
    """A name is not declared in the data source catalog."""


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class DataSource:
    name: str
    table: str
    time_column: str
    description: str = ""
    dimensions: dict[str, str] = field(default_factory=dict)   # name -> column
    columns: dict[str, str] = field(default_factory=dict)      # fieldName -> column

    def dimension_column(self, name: str) -> str:
        try:
            return self.dimensions[name]
        except KeyError:
            raise CatalogError(
                f"Unknown dimension '{name}' for data source '{self.name}'. "
                f"Allowed: {', '.join(self.dimensions)}"
            ) from None

    def metric_column(self, name: str) -> str:
        try:
            return self.columns[name]
        except KeyError:
            raise CatalogError(
                f"Unknown field '{name}' for data source '{self.name}'. "
                f"Allowed: {', '.join(self.columns)}"
            ) from None


@dataclass
class DataSourceCatalog:
    """Fully parsed catalog."""

    version: int
    datasources: dict[str, DataSource]  # keyed by name

    def get(self, name: str) -> DataSource | None:
        return self.datasources.get(name)

    def require(self, name: str) -> DataSource:
        ds = self.get(name)
        if ds is None:
            raise CatalogError(
                f"Unknown data source '{name}'. Allowed: {', '.join(self.get_datasource_names())}"
            )
        return ds

    def get_datasource_names(self) -> list[str]:
        return list(self.datasources.keys())

    def get_datasources_list(self) -> list[dict[str, Any]]:
        """Return data sources as a list of dicts (for API responses)."""
        return [
            {
                "name": ds.name,
                "description": ds.description,
                "dimensions": list(ds.dimensions),
                "metrics": list(ds.columns),
            }
            for ds in self.datasources.values()
        ]


# ── Parsing ──────────────────────────────────────────────

def _name_map(entries: list[dict[str, Any]] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for entry in entries or []:
        if isinstance(entry, str):
            out[entry] = entry
        else:
            out[entry["name"]] = entry.get("column", entry["name"])
    return out


def _parse_datasource(raw: dict[str, Any]) -> DataSource:
    return DataSource(
        name=raw["name"],
        table=raw["table"],
        time_column=raw.get("time_column", "event_time"),
        description=raw.get("description", "").strip(),
        dimensions=_name_map(raw.get("dimensions")),
        columns=_name_map(raw.get("columns")),
    )


def parse_catalog(raw: dict[str, Any]) -> DataSourceCatalog:
    datasources: dict[str, DataSource] = {}
    for entry in raw.get("datasources", []):
        ds = _parse_datasource(entry)
        if ds.name in datasources:
            raise CatalogError(f"Data source '{ds.name}' is declared twice")
        datasources[ds.name] = ds
    return DataSourceCatalog(version=raw.get("version", 1), datasources=datasources)


@lru_cache(maxsize=4)
def load_catalog(path: str | None = None) -> DataSourceCatalog:
    """Load and cache the data source catalog from YAML."""
    catalog_path = Path(path or get_settings().datasource_catalog_path)
    with open(catalog_path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    catalog = parse_catalog(raw)
    logger.info("Loaded catalog %s (%d data sources)", catalog_path.name, len(catalog.datasources))
    return catalog
