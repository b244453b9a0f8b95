"""Auth request/response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    avatar: str | None = None


class SessionResponse(BaseModel):
    user: UserResponse | None = None


class ProviderInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    signin_url: str = Field(serialization_alias="signinUrl")
