"""Search box autocomplete endpoint."""

from fastapi import APIRouter, Query

from westroy.api.deps import SearchServiceDep
from westroy.schemas.search import SuggestResponse

router = APIRouter()


@router.get("", response_model=SuggestResponse)
async def suggest(service: SearchServiceDep, q: str | None = Query(None, max_length=200)):
    """Public: category, product and query suggestions for partial input."""
    return await service.suggest(q)
