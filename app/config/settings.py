from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None

    # Profile rows are created by the on-signup trigger in this table
    profiles_table: str = "users"
    avatars_bucket: str = "avatars"

    # AWS S3 (optional avatar backend; Supabase Storage is used when unset)
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    s3_bucket_name: Optional[str] = None
    s3_public_base_url: Optional[str] = None  # e.g. a CloudFront domain

    # Registration polling (fixed interval, no backoff)
    confirmation_poll_attempts: int = 60
    confirmation_poll_interval: float = 1.0
    profile_poll_attempts: int = 15
    profile_poll_interval: float = 0.3
    session_verify_attempts: int = 10
    session_verify_interval: float = 0.2
    quick_register_profile_attempts: int = 10
    quick_register_profile_interval: float = 0.2

    # Unfinished registrations are evicted after this many seconds
    pending_registration_ttl: float = 3600.0

    # Validation
    password_min_length: int = 6
    avatar_max_bytes: int = 5 * 1024 * 1024

    # App
    app_name: str = "princess-labs-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,https://princess-labs.com,https://www.princess-labs.com"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_s3_avatars(self) -> bool:
        return all([self.aws_access_key_id, self.aws_secret_access_key, self.s3_bucket_name])

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
