import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class AppConfig(BaseModel):
    identity_url: Optional[str] = Field(None, description="Base URL of the auth service")
    identity_anon_key: Optional[str] = Field(None, description="Public API key sent as `apikey`")
    site_url: str = Field("http://localhost:3000", description="Redirect target for e-mail links")
    admin_emails: List[str] = Field(default_factory=list)
    admin_email_marker: Optional[str] = Field(None, description="Substring that marks an admin e-mail")
    local_admin_username: str = "admin"
    local_admin_password: str = "admin123"
    storage_prefix: str = "frosty_"
    jwt_secret: str = Field("dev-secret-change-me", description="Signs session tokens")

    @field_validator("admin_emails")
    @classmethod
    def normalize_emails(cls, v: List[str]) -> List[str]:
        return [e.strip().lower() for e in v if e.strip()]


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return value.split(",")


def load_config() -> AppConfig:
    """Build the config from environment variables."""
    return AppConfig(
        identity_url=os.getenv("IDENTITY_URL"),
        identity_anon_key=os.getenv("IDENTITY_ANON_KEY"),
        site_url=os.getenv("SITE_URL", "http://localhost:3000"),
        admin_emails=_split(os.getenv("ADMIN_EMAILS")),
        admin_email_marker=os.getenv("ADMIN_EMAIL_MARKER") or None,
        local_admin_username=os.getenv("LOCAL_ADMIN_USERNAME", "admin"),
        local_admin_password=os.getenv("LOCAL_ADMIN_PASSWORD", "admin123"),
        storage_prefix=os.getenv("STORAGE_PREFIX", "frosty_"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
    )
