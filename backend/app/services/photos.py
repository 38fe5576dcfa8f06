# backend/app/services/photos.py

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import logging

import httpx

from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from ..core.config import get_settings
from ..schemas.page_spec import NormalizedPhoto
from .caching import cached_get

logger = logging.getLogger(__name__)

ENRICH_PER_PAGE = 5
MAX_PER_PAGE = 80


def normalize_photo(raw: Dict[str, Any]) -> NormalizedPhoto:
    src = raw.get("src") or {}
    return NormalizedPhoto(
        id=raw["id"],
        alt=raw.get("alt") or "Stock photo",
        width=int(raw.get("width") or 0),
        height=int(raw.get("height") or 0),
        src={
            "tiny": src.get("tiny", ""),
            "small": src.get("small", ""),
            "medium": src.get("medium", ""),
            "large": src.get("large", ""),
            "original": src.get("original", ""),
        },
        photographer=raw.get("photographer") or "",
        photographer_url=raw.get("photographer_url") or "",
        pexels_url=raw.get("url") or "",
    )


def score_photos(photos: List[NormalizedPhoto], query: str) -> List[NormalizedPhoto]:
    """
    Rank photos: landscape first, then resolution (capped), with a small
    bonus when the query itself asks for a studio/minimal look.
    """
    q = query.lower()
    style_bonus = 5.0 if ("studio" in q or "minimal" in q) else 0.0

    scored = []
    for photo in photos:
        score = style_bonus
        if photo.width > photo.height:
            score += 10
        score += min(photo.width / 100, 20)
        scored.append(photo.model_copy(update={"score": score}))

    return sorted(scored, key=lambda p: p.score, reverse=True)


class PhotoSearchClient:
    name = "pexels"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
        cache: Optional[Callable[..., Any]] = cached_get,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.PEXELS_API_KEY
        self.base_url = (base_url or settings.PEXELS_BASE_URL).rstrip("/")
        self.timeout = int(timeout or settings.PEXELS_TIMEOUT_SECONDS or 10)
        self.cache_ttl = settings.PHOTO_CACHE_TTL_SECONDS
        self._http_client = http_client
        self._cache = cache

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _get(self, params: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": self.api_key or ""}
        if self._http_client is not None:
            return self._http_client.get(f"{self.base_url}/search", params=params, headers=headers)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(f"{self.base_url}/search", params=params, headers=headers)

    def search(
        self,
        query: str,
        *,
        orientation: str = "landscape",
        per_page: int = 20,
    ) -> List[NormalizedPhoto]:
        """
        Search Pexels and return normalized photos, best first.

        4xx responses yield an empty list; 5xx and transport failures raise
        httpx.HTTPError.
        """
        query = (query or "").strip()
        if not query or not self.enabled:
            return []
        per_page = max(1, min(int(per_page), MAX_PER_PAGE))

        cache_key = f"pexels:search:q={query.lower()}|o={orientation}|n={per_page}"
        if self._cache is not None:
            cached = self._cache(cache_key)
            if cached is not None:
                return [NormalizedPhoto.model_validate(p) for p in cached]

        resp = self._get({"query": query, "orientation": orientation, "per_page": per_page})

        if 400 <= resp.status_code < 500:
            logger.warning(
                "Pexels search returned %s: %s",
                resp.status_code,
                resp.text[:200],
            )
            return []
        resp.raise_for_status()

        body = resp.json()
        photos = []
        for raw in body.get("photos") or []:
            try:
                photos.append(normalize_photo(raw))
            except (KeyError, ValueError, TypeError):
                continue
        ranked = score_photos(photos, query)[:per_page]

        if self._cache is not None and ranked:
            self._cache(
                cache_key,
                set_value=[p.model_dump() for p in ranked],
                ttl=self.cache_ttl,
            )
        return ranked


def enrich_page_images(
    page_spec: Dict[str, Any],
    photos: PhotoSearchClient,
    job_id: UUID | None = None,
) -> int:
    """
    Resolve each ``pageSpec.images[*].query`` to a concrete stock photo.

    Best effort: the page renders with placeholders when a lookup fails, so
    errors are logged and skipped. Returns the number of images resolved.
    """
    images = page_spec.get("images") if isinstance(page_spec, dict) else None
    if not isinstance(images, dict) or not photos.enabled:
        return 0

    resolved = 0
    for key, request in images.items():
        if not isinstance(request, dict) or not isinstance(request.get("query"), str):
            continue
        orientation = request.get("orientation") or "landscape"
        try:
            results = photos.search(request["query"], orientation=orientation, per_page=ENRICH_PER_PAGE)
        except httpx.HTTPError as e:
            logger.warning(
                "Photo lookup failed for %s: %s",
                key,
                e,
                extra={"job_id": str(job_id), "step": "enrich_images"},
            )
            continue
        if not results:
            continue
        best = results[0]
        request["photo"] = {
            "id": best.id,
            "alt": best.alt,
            "url": best.src.large,
            "width": best.width,
            "height": best.height,
            "photographer": best.photographer,
            "photographer_url": best.photographer_url,
            "pexels_url": best.pexels_url,
        }
        resolved += 1
    return resolved
