"""Chat request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)


class ChatHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    user_message: str = Field(serialization_alias="userMessage")
    ai_response: str = Field(serialization_alias="aiResponse")
    timestamp: datetime
