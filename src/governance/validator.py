"""
Validates a parsed rolling-average query against the data source catalog.

Returns a list of human-readable error strings (empty = valid).  Structural
problems (duplicate names, bad periods ...) are already rejected when the
`QuerySpec` is built; this layer only checks names against the catalog.
"""
from __future__ import annotations

from src.governance.datasource_catalog import DataSourceCatalog
from src.rolling.sources import data_source_name
from src.rolling.spec import QuerySpec


def validate_query(query: QuerySpec, catalog: DataSourceCatalog) -> list[str]:
    """Check *query* against *catalog*; return errors (empty list = valid)."""
    errors: list[str] = []

    name = data_source_name(query.data_source)
    ds = catalog.get(name)
    if ds is None:
        errors.append(
            f"Unknown data source '{name}'. "
            f"Allowed: {', '.join(catalog.get_datasource_names())}"
        )
        return errors  # can't do further validation

    for dim in query.dimensions:
        if dim.dimension not in ds.dimensions:
            errors.append(
                f"Unknown dimension '{dim.dimension}'. "
                f"Allowed: {', '.join(ds.dimensions)}"
            )

    for agg in query.aggregations:
        if agg.field_name and agg.field_name not in ds.columns:
            errors.append(
                f"Aggregator '{agg.name}' reads unknown field '{agg.field_name}'. "
                f"Allowed: {', '.join(ds.columns)}"
            )

    if query.filter is not None:
        for dim_name in sorted(query.filter.dimensions()):
            if dim_name not in ds.dimensions:
                errors.append(
                    f"Filter dimension '{dim_name}' is not a recognized dimension. "
                    f"Allowed: {', '.join(ds.dimensions)}"
                )

    return errors
