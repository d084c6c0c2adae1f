from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response

from ..blog import PROJECTS_QUERY, PostSearch, build_page, tags_query
from ..schemas import BlogPageResponse, ProjectItem, TagItem
from ..services.sanity_client import ContentStoreConfigurationError, ContentStoreError, fetch

router = APIRouter(prefix="/api", tags=["content"])
logger = logging.getLogger("portfolio.blog")

NO_STORE = "no-store, no-cache, must-revalidate"


def _content_store_failure(exc: ContentStoreError, path: str, detail: str) -> HTTPException:
    if isinstance(exc, ContentStoreConfigurationError):
        logger.error(
            "Content store configuration error",
            extra={"event": "content_store_configuration_error", "reason": str(exc), "path": path},
        )
        return HTTPException(status_code=503, detail="Content store is not configured")

    logger.exception(
        "Content store query failed",
        extra={"event": "content_store_failed", "reason": exc.__class__.__name__, "path": path},
    )
    return HTTPException(status_code=502, detail=detail)


@router.get("/blog", response_model=BlogPageResponse)
async def search_posts(
    response: Response,
    offset: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=200),
    tags: Optional[str] = Query(default=None, max_length=500),
) -> dict:
    """Search published posts by text and tags, newest first, one page at a time."""

    search = PostSearch.from_query(offset=offset, limit=limit, q=q, tags=tags)
    list_query, params = search.list_query()
    count_query, _ = search.count_query()

    try:
        posts, total = await asyncio.gather(
            fetch(list_query, params),
            fetch(count_query, params),
        )
    except ContentStoreError as exc:
        raise _content_store_failure(exc, "/api/blog", "Failed to fetch posts") from exc

    response.headers["Cache-Control"] = NO_STORE
    return build_page(search, list(posts or []), int(total or 0))


@router.get("/blog/tags", response_model=list[TagItem])
async def list_tags(
    response: Response,
    q: Optional[str] = Query(default=None, max_length=100),
) -> list:
    query, params = tags_query(q)
    try:
        tags = await fetch(query, params)
    except ContentStoreError as exc:
        raise _content_store_failure(exc, "/api/blog/tags", "Failed to fetch tags") from exc

    response.headers["Cache-Control"] = NO_STORE
    return list(tags or [])


@router.get("/projects", response_model=list[ProjectItem])
async def list_projects() -> list:
    try:
        projects = await fetch(PROJECTS_QUERY)
    except ContentStoreError as exc:
        raise _content_store_failure(exc, "/api/projects", "Failed to fetch projects") from exc
    return list(projects or [])
