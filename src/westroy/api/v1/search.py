"""Catalog search API endpoint."""

from fastapi import APIRouter, Query

from westroy.api.deps import SearchServiceDep
from westroy.schemas.search import SearchFilters, SearchResponse

router = APIRouter()


@router.get("", response_model=SearchResponse)
async def search(
    service: SearchServiceDep,
    q: str | None = Query(None, max_length=500),
    category: str | None = Query(None, max_length=64),
    in_stock: bool = Query(False, alias="inStock"),
    with_image: bool = Query(False, alias="withImage"),
    with_article: bool = Query(False, alias="withArticle"),
    brand: str | None = Query(None, max_length=100),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    """Public: search suppliers by free text and/or category.

    At least one of `q` or `category` is required.
    """
    filters = SearchFilters(
        in_stock_only=in_stock,
        with_image_only=with_image,
        with_article_only=with_article,
        brand=brand,
    )
    return await service.search(q, category, filters, skip=skip, limit=limit)
