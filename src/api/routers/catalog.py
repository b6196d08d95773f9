"""
GET /datasources -- catalog metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from src.api.routers.query import get_catalog
from src.governance.datasource_catalog import DataSourceCatalog

router = APIRouter()



class DataSourceItem(BaseModel):
    name: str
    description: str
    dimensions: list[str]
    metrics: list[str]


@router.get("/datasources", response_model=list[DataSourceItem])
def list_datasources(catalog: DataSourceCatalog = Depends(get_catalog)) -> list[DataSourceItem]:
    """Return every catalogued data source with its dimensions and metric fields."""
    return [DataSourceItem(**item) for item in catalog.get_datasources_list()]


@router.get("/datasources/{name}", response_model=DataSourceItem)
def get_datasource(name: str, catalog: DataSourceCatalog = Depends(get_catalog)) -> DataSourceItem:
    """Return one data source."""
    for item in catalog.get_datasources_list():
        if item["name"] == name:
            return DataSourceItem(**item)
    raise HTTPException(status_code=404, detail=f"Unknown data source '{name}'")
