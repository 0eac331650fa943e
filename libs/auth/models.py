from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated user from the Supabase JWT.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    app_metadata: dict = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @property
    def is_admin(self) -> bool:
        """Admins carry ``app_metadata.role == "admin"``; the service role is trusted."""
        return self.role == "service_role" or self.app_metadata.get("role") == "admin"
