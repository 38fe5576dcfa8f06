from functools import lru_cache
from typing import Literal
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from ..schemas.jobs import PageOut, PageSummaryOut
from ..schemas.page_spec import NormalizedPhoto
from ..services.job_store import JobStore
from ..services.photos import MAX_PER_PAGE, PhotoSearchClient

router = APIRouter(tags=["pages"])

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_job_store() -> JobStore:
    return JobStore()


@lru_cache(maxsize=1)
def get_photo_client() -> PhotoSearchClient:
    return PhotoSearchClient()


@router.get("/pages", response_model=list[PageSummaryOut])
def list_pages(
    limit: int = 50,
    offset: int = 0,
    store: JobStore = Depends(get_job_store),
):
    """
    Recently published pages, newest first, with limit/offset pagination.
    """
    # Hard cap to avoid unbounded scans
    safe_limit = max(1, min(limit, 100))
    pages = store.list_pages(limit=safe_limit, offset=max(0, offset))

    return [
        PageSummaryOut(
            slug=p.slug,
            title=((p.page_spec or {}).get("meta") or {}).get("title"),
            job_id=p.job_id,
            created_at=p.created_at,
        )
        for p in pages
    ]


@router.get("/pages/{slug}", response_model=PageOut)
def get_page(
    slug: str,
    store: JobStore = Depends(get_job_store),
):
    page = store.get_page(slug)
    if not page:
        raise HTTPException(status_code=404, detail="Page not found")

    return PageOut(
        page_spec=page.page_spec,
        copy_spec=page.copy_spec,
        theme_tokens=page.theme_tokens,
    )


@router.get("/photos/search", response_model=list[NormalizedPhoto])
def search_photos(
    q: str | None = None,
    orientation: Literal["landscape", "portrait"] = "landscape",
    per_page: int = Query(20, ge=1, le=MAX_PER_PAGE),
    photos: PhotoSearchClient = Depends(get_photo_client),
):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Query parameter is required")

    try:
        return photos.search(q, orientation=orientation, per_page=per_page)
    except httpx.HTTPError as e:
        logger.exception("Photo search failed: %s", e, extra={"step": "photo_search"})
        raise HTTPException(status_code=502, detail="Failed to fetch images")
