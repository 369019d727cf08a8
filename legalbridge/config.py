from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "LegalBridge"
    document_backend: str = "auto"
    blob_backend: str = "auto"
    database_url: str = "sqlite:///./legalbridge.db"
    firebase_credentials_file: str | None = None
    firebase_project_id: str | None = None
    firebase_private_key_id: str | None = None
    firebase_private_key: str | None = None
    firebase_client_email: str | None = None
    firebase_client_id: str | None = None
    firebase_client_x509_cert_url: str | None = None
    cloudinary_cloud_name: str | None = None
    cloudinary_api_key: str | None = None
    cloudinary_api_secret: str | None = None
    cloudinary_folder: str = "pdfs"
    cloudinary_delivery_base: str = "https://res.cloudinary.com"
    completion_url: str = "https://app-weu-moci-dev-001.azurewebsites.net/api/v2/moci/chatcompletion"
    cors_origins: list[str] = ["*"]
    log_level: str = "info"
    log_format: str = "console"
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def has_firebase_credentials(self) -> bool:
        if self.firebase_credentials_file:
            return True
        return bool(self.firebase_project_id and self.firebase_private_key and self.firebase_client_email)

    @property
    def has_cloudinary_credentials(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)


@lru_cache
def get_settings() -> Settings:
    return Settings()
