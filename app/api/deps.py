from fastapi import Request

from app.services.room_registry import RoomRegistry


def get_room_registry(request: Request) -> RoomRegistry:
    return request.app.state.coordinator.registry
