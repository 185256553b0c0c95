"""
Tags router.
Lists the user's tags with their usage counters.
"""

from typing import List

from fastapi import APIRouter, Depends

from models.tag import TagResponse
from routers.auth import get_current_user
from routers.deps import Services, get_services

router = APIRouter()


@router.get("", response_model=List[TagResponse])
async def list_tags(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> List[TagResponse]:
    """All of the user's tags, ordered by name."""
    docs = await services.tags.list_tags(current_user["id"])
    return [
        TagResponse(
            id=str(d["_id"]),
            name=d["name"],
            usage_count=d.get("usageCount") or 0,
            created_at=d.get("createdAt"),
        )
        for d in docs
    ]
