"""Session claims and the resolved caller identity."""

from uuid import UUID

from pydantic import BaseModel

from aris.db.enums import Role


class TokenPayload(BaseModel):
    """Claims carried by the signed session token."""
    sub: UUID
    org_id: UUID
    role: str
    token_version: int


class UserSession(BaseModel):
    """Who is calling, in which organization, with which role."""
    user_id: UUID
    org_id: UUID
    role: Role
    email: str
    display_name: str
    is_platform_admin: bool = False


class MeResponse(BaseModel):
    user_id: UUID
    email: str
    display_name: str
    is_platform_admin: bool = False
    org_id: UUID
    org_name: str
    org_slug: str
    role: Role
    ai_enabled: bool = False
