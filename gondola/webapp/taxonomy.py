"""Admin panel routes for canonical brands and categories and their mappings."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from ..extraction import ALL_SCOPE
from ..mappings import MappingStore
from ..models import LabelKind, MappingMethod
from .auth import require_auth
from .deps import get_db, ok

router = APIRouter(prefix="/api/panel", dependencies=[Depends(require_auth)])

BRAND = LabelKind.BRAND.value
CATEGORY = LabelKind.CATEGORY.value


class BrandCreate(BaseModel):
    name: str


class CategoryCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    keywords: list[str] = []
    synonyms: list[str] = []
    parent_id: int | None = Field(None, alias="parentId")


class MappingCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    extracted_label: str = Field(alias="extractedLabel")
    store_name: str = Field(ALL_SCOPE, alias="storeName")
    method: str = MappingMethod.MANUAL.value
    confidence: float = 1.0
    overwrite: bool = False


class ExtractRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_name: str = Field(ALL_SCOPE, alias="storeName")
    sample_size: int | None = Field(None, alias="sampleSize", ge=1)


class AutoMapRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_name: str = Field(alias="storeName")
    threshold: float | None = Field(None, ge=0.0, le=1.0)


def get_mappings(request: Request) -> MappingStore:
    return request.app.state.mappings


# --- Shared handlers for both kinds ---


def _add_mapping(request: Request, kind: str, entity_id: int, body: MappingCreate) -> dict:
    mapping = get_mappings(request).add_mapping(
        kind,
        body.extracted_label,
        entity_id,
        body.store_name,
        method=body.method,
        confidence=body.confidence,
        overwrite=body.overwrite,
    )
    return ok(mapping, message="Mapping saved")


def _remove_mapping(request: Request, kind: str, entity_id: int, mapping_id: int) -> dict:
    deleted = get_mappings(request).remove_mapping(mapping_id, kind=kind, entity_id=entity_id)
    return ok({"deleted": deleted})


async def _extract(request: Request, kind: str, body: ExtractRequest) -> dict:
    job = request.app.state.extraction
    result = await run_in_threadpool(job.run, kind, body.store_name, body.sample_size)
    return ok(result, message=f"Extracted {result['extractedCount']} {kind} labels")


async def _auto_map(request: Request, kind: str, body: AutoMapRequest, entity_id: int | None = None) -> dict:
    mapped = await run_in_threadpool(
        get_mappings(request).auto_map,
        kind,
        body.store_name,
        entity_id,
        body.threshold,
    )
    return ok({"mappedCount": mapped}, message=f"Auto-mapped {mapped} {kind} labels")


# --- Brands ---


@router.get("/brands")
async def list_brands(request: Request):
    return ok(get_db(request).list_entities(BRAND))


@router.post("/brands")
async def create_brand(request: Request, body: BrandCreate):
    return ok(get_db(request).create_brand(body.name), message="Brand created")


@router.post("/brands/extract-from-products")
async def extract_brands(request: Request, body: ExtractRequest):
    return await _extract(request, BRAND, body)


@router.post("/brands/auto-map")
async def auto_map_brands(request: Request, body: AutoMapRequest):
    return await _auto_map(request, BRAND, body)


@router.delete("/brands/{brand_id}")
async def delete_brand(request: Request, brand_id: int):
    get_db(request).delete_entity(BRAND, brand_id)
    return ok(message="Brand deleted")


@router.get("/brands/{brand_id}/extracted-brands")
async def extracted_brands(
    request: Request,
    brand_id: int,
    store_name: str | None = Query(None, alias="storeName"),
    limit: int = Query(50, ge=1, le=500),
):
    """Unmapped extracted brand labels ranked against this brand."""
    candidates = get_mappings(request).candidates_for_entity(BRAND, brand_id, store_name, limit)
    return ok(candidates)


@router.get("/brands/{brand_id}/mappings")
async def brand_mappings(request: Request, brand_id: int, store_name: str | None = Query(None, alias="storeName")):
    get_db(request).get_entity(BRAND, brand_id)
    return ok(get_mappings(request).list_mappings(BRAND, brand_id, store_name))


@router.post("/brands/{brand_id}/mappings")
async def add_brand_mapping(request: Request, brand_id: int, body: MappingCreate):
    return _add_mapping(request, BRAND, brand_id, body)


@router.delete("/brands/{brand_id}/mappings/{mapping_id}")
async def remove_brand_mapping(request: Request, brand_id: int, mapping_id: int):
    return _remove_mapping(request, BRAND, brand_id, mapping_id)


@router.get("/brands/{brand_id}/extraction-stats")
async def brand_extraction_stats(request: Request, brand_id: int):
    get_db(request).get_entity(BRAND, brand_id)
    return ok(get_mappings(request).extraction_stats(BRAND, brand_id))


# --- Categories ---


@router.get("/categories")
async def list_categories(request: Request):
    return ok(get_db(request).list_entities(CATEGORY))


@router.post("/categories")
async def create_category(request: Request, body: CategoryCreate):
    category = get_db(request).create_category(
        body.name,
        keywords=body.keywords,
        synonyms=body.synonyms,
        parent_id=body.parent_id,
    )
    return ok(category, message="Category created")


@router.post("/categories/seed")
async def seed_categories(request: Request):
    created = get_db(request).seed_master_categories()
    return ok({"created": created}, message=f"Seeded {created} master categories")


@router.post("/categories/extract-from-products")
async def extract_categories(request: Request, body: ExtractRequest):
    return await _extract(request, CATEGORY, body)


@router.post("/categories/auto-map")
async def auto_map_categories(request: Request, body: AutoMapRequest):
    return await _auto_map(request, CATEGORY, body)


@router.delete("/categories/{category_id}")
async def delete_category(request: Request, category_id: int):
    get_db(request).delete_entity(CATEGORY, category_id)
    return ok(message="Category deleted")


@router.get("/categories/{category_id}/store-categories-needing-mapping")
async def store_categories_needing_mapping(
    request: Request,
    category_id: int,
    store_name: str | None = Query(None, alias="storeName"),
    limit: int = Query(50, ge=1, le=500),
):
    nodes = get_mappings(request).store_categories_needing_mapping(category_id, store_name, limit)
    return ok(nodes)


@router.get("/categories/{category_id}/mappings")
async def category_mappings(
    request: Request,
    category_id: int,
    store_name: str | None = Query(None, alias="storeName"),
):
    get_db(request).get_entity(CATEGORY, category_id)
    return ok(get_mappings(request).list_mappings(CATEGORY, category_id, store_name))


@router.post("/categories/{category_id}/mappings")
async def add_category_mapping(request: Request, category_id: int, body: MappingCreate):
    return _add_mapping(request, CATEGORY, category_id, body)


@router.delete("/categories/{category_id}/mappings/{mapping_id}")
async def remove_category_mapping(request: Request, category_id: int, mapping_id: int):
    return _remove_mapping(request, CATEGORY, category_id, mapping_id)


@router.post("/categories/{category_id}/auto-map")
async def auto_map_category(request: Request, category_id: int, body: AutoMapRequest):
    """Auto-map restricted to this category as the only target."""
    return await _auto_map(request, CATEGORY, body, entity_id=category_id)


# --- Mappings ---


@router.post("/mappings/{mapping_id}/validate")
async def validate_mapping(request: Request, mapping_id: int):
    return ok(get_mappings(request).validate(mapping_id), message="Mapping validated")
