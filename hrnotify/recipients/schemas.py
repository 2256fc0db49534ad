"""Recipient spec, resolution context and resolved recipient lists."""

from uuid import UUID

from pydantic import BaseModel, Field

DYNAMIC_TAGS = ("subject", "manager", "hr", "admin", "finance", "team_members")


class Recipient(BaseModel):
    email: str = Field(..., max_length=255)
    name: str = Field("", max_length=255)
    id: UUID | None = None

    @property
    def key(self) -> str:
        """Identity used for deduplication."""
        return self.email.strip().lower()


class RecipientSpec(BaseModel):
    """Declarative recipients: explicit addresses plus dynamic role tags."""

    to: list[Recipient] = Field(default_factory=list)
    to_tags: list[str] = Field(default_factory=list)
    cc_static: list[Recipient] = Field(default_factory=list)
    cc_static_context: str | None = None
    cc_dynamic: list[str] = Field(default_factory=list)


class ResolutionContext(BaseModel):
    """Who the record belongs to and who acted on it."""

    subject_id: UUID | None = None
    acting_user_id: UUID | None = None
    # Lets the acting user be dropped from CC even when the directory no longer returns them
    acting_user_email: str | None = Field(None, max_length=255)
    manager_id: UUID | None = None


class ResolvedRecipients(BaseModel):
    to: list[Recipient]
    cc: list[Recipient] = Field(default_factory=list)

    @property
    def to_emails(self) -> list[str]:
        return [r.email for r in self.to]

    @property
    def cc_emails(self) -> list[str]:
        return [r.email for r in self.cc]
