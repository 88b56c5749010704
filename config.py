from typing import Optional

from pydantic import PrivateAttr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Visa Tracker API"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"

    database_url: str = "sqlite+aiosqlite:///./visa_tracker.db"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Token signing; no default, startup refuses to run without it
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_days: int = 7

    # Optional bootstrap admin, created on startup when both are set
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "Administrator"

    # Uploads
    max_upload_bytes: int = 10 * 1024 * 1024
    upload_dir: str = "uploads"
    storage_provider: Optional[str] = None
    document_fetch_timeout: float = 30.0
    document_download_requires_auth: bool = False

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "visa-applications"

    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_bucket_name: Optional[str] = None
    aws_s3_prefix: str = "applications"

    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_bucket: str = "visa-documents"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    _is_sqlite: bool = PrivateAttr(default=False)
    _is_postgresql: bool = PrivateAttr(default=False)

    def model_post_init(self, __context: object) -> None:
        _scheme = self.database_url.split(":")[0].lower()
        object.__setattr__(self, "_is_sqlite", "sqlite" in _scheme)
        object.__setattr__(self, "_is_postgresql", "postgresql" in _scheme)

    @property
    def is_sqlite(self) -> bool:
        return self._is_sqlite

    @property
    def is_postgresql(self) -> bool:
        return self._is_postgresql

    @property
    def has_cloudinary(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    @property
    def has_s3(self) -> bool:
        return bool(self.aws_bucket_name and self.aws_access_key_id and self.aws_secret_access_key)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    def require_jwt_secret(self) -> str:
        """Return the signing secret or fail loudly when it was never configured."""
        if not self.jwt_secret:
            raise RuntimeError("JWT_SECRET must be set; refusing to sign or verify tokens without it")
        return self.jwt_secret


settings = Settings()
