"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.chat import Message, Room, SlotRecord
from app.schemas.events import (
    ClearChatRequest,
    CreateRoomRequest,
    DeleteMessageRequest,
    GetRoomInfoRequest,
    JoinRoomRequest,
    MarkMessagesReadRequest,
    SendMessageRequest,
    TypingRequest,
    UpdateUsernameRequest,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
