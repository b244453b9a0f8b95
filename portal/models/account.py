"""Linked identity provider account, with provider tokens encrypted at rest."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, LargeBinary, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.models.base import Base, StringIDPrimaryKeyMixin


class Account(Base, StringIDPrimaryKeyMixin):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("provider", "providerAccountId", name="uq_provider_account"),
    )

    user_id: Mapped[str] = mapped_column(
        "userId",
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="oidc")
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_account_id: Mapped[str] = mapped_column("providerAccountId", String(255), nullable=False)
    # Tokens stored as encrypted bytes (libsodium crypto_secretbox)
    access_token: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    id_token: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="accounts")

    def __repr__(self) -> str:
        return f"<Account {self.provider}:{self.provider_account_id}>"
