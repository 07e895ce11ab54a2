from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    DATABASE_URL: str
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Supabase Auth
    SUPABASE_URL: str
    SUPABASE_JWT_SECRET: str

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Crisis detection / escalation
    CRISIS_KEYWORDS: Optional[str] = None  # comma separated, overrides the built-in list
    CRISIS_CATEGORY_SLUG: str = "crisis"

    # Auto-assignment fallback when a category has no eligible roles configured
    DEFAULT_ASSIGNEE_ROLES: str = "counselor"

    # Attachment tiers, tried in this order
    ATTACHMENT_TIERS: str = "public,private,local"
    ATTACHMENT_PUBLIC_ROOT: str = "storage/public"
    ATTACHMENT_PRIVATE_ROOT: str = "storage/private"
    ATTACHMENT_LOCAL_ROOT: str = "storage/local"

    # Optional S3 tier (enabled by listing "s3" in ATTACHMENT_TIERS)
    ATTACHMENT_S3_BUCKET: Optional[str] = None
    ATTACHMENT_S3_REGION: Optional[str] = None
    ATTACHMENT_S3_ENDPOINT: Optional[str] = None
    ATTACHMENT_S3_ACCESS_KEY: Optional[str] = None
    ATTACHMENT_S3_SECRET_KEY: Optional[str] = None

    MAX_ATTACHMENTS: int = 5
    MAX_ATTACHMENT_MB: int = 10
    ALLOWED_ATTACHMENT_TYPES: str = (
        "application/pdf,"
        "application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "text/plain,image/jpeg,image/png,image/gif"
    )

    # Notification intents are POSTed here when set, otherwise only logged
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return _split_csv(self.CORS_ORIGINS)

    @property
    def crisis_keywords(self) -> List[str]:
        return _split_csv(self.CRISIS_KEYWORDS)

    @property
    def default_assignee_roles(self) -> List[str]:
        return _split_csv(self.DEFAULT_ASSIGNEE_ROLES)

    @property
    def attachment_tiers(self) -> List[str]:
        return _split_csv(self.ATTACHMENT_TIERS)

    @property
    def allowed_attachment_types(self) -> List[str]:
        return _split_csv(self.ALLOWED_ATTACHMENT_TYPES)

settings = Settings()
