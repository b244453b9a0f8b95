"""Append-only chat history entry."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.models.base import Base, StringIDPrimaryKeyMixin, utcnow


class ChatHistory(Base, StringIDPrimaryKeyMixin):
    __tablename__ = "chat_history"

    user_id: Mapped[str] = mapped_column(
        "userId",
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_message: Mapped[str] = mapped_column("userMessage", Text, nullable=False)
    ai_response: Mapped[str] = mapped_column("aiResponse", Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="chat_history")

    def __repr__(self) -> str:
        return f"<ChatHistory user_id={self.user_id} at={self.timestamp}>"
