"""
app.api.maintenance
~~~~~~~~~~~~~~~~~~~

运维 REST 接口。

端点:
  - ``POST /maintenance/inactive-rooms`` → 清理长期不活跃的房间（级联删除槽位和消息）
"""
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.api.deps import get_room_registry
from app.core.config import settings
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.services.room_registry import RoomRegistry

router: APIRouter = APIRouter()


class CleanupResultData(BaseModel):
    """清理结果。"""

    days: int = Field(..., description="不活跃天数阈值")
    removed: int = Field(..., description="被删除的房间数")


@router.post(
    "/maintenance/inactive-rooms",
    summary="清理不活跃房间",
    response_model=ApiResponse[CleanupResultData],
)
@limiter.limit(settings.MAINTENANCE_RATE_LIMIT)
async def remove_inactive_rooms(
    request: Request,
    days: int = Query(settings.INACTIVE_ROOM_DAYS, ge=1, le=3650, description="不活跃天数阈值"),
    registry: RoomRegistry = Depends(get_room_registry),
) -> ApiResponse[CleanupResultData]:
    """删除最近一次槽位活动早于 ``days`` 天前的所有房间。

    Args:
        days: 不活跃天数阈值，默认取配置 ``INACTIVE_ROOM_DAYS``。
    """
    removed = await registry.remove_inactive(days)
    return ApiResponse.ok(data=CleanupResultData(days=days, removed=removed))
