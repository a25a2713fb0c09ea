"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values.
"""

from pathlib import Path

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5000",
    "http://localhost:8000",
    "https://localhost:3000",
    "https://localhost:8000",
    "http://0.0.0.0:8000",
]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        openai_api_key: API key for the text-enhancement model provider.
        llm_base_url: Base URL of the OpenAI-compatible endpoint.
        model_id: Identifier for the language model to be used.
        enhancement_timeout: Upper bound, in seconds, for a single field enhancement.
        enhancement_context: Default context passed to the model with every field.
        enhance_bullets_only: Only queue fields whose text looks like a bullet list.
        template_path: Path to the DOCX report template.
        max_photo_slots: Number of photo slots the template provides.
        not_provided_text: Text rendered for fields the wizard left empty.
        image_max_width: Maximum width (px) of photos embedded inline.
        image_max_height: Maximum height (px) of photos embedded inline.
        image_jpeg_quality: JPEG quality used when re-encoding photos.
        photo_width_mm: Rendered width of inline photos in the document.
        photo_download_timeout: Timeout in seconds when downloading a photo URL.
        max_photo_bytes: Largest photo payload accepted from a URL or S3.
        progress_retention_seconds: How long a finished run's channel stays readable.
        api_key: General API key for securing internal API endpoints.
        log_level: Level of the application ("app.*") loggers.
        cors_allowed_origins: List of allowed origins for CORS.
        LLM_CONNECT_TIMEOUT: LLM client connect timeout in seconds.
        LLM_READ_TIMEOUT: LLM client read timeout in seconds.
    """

    openai_api_key: str | None = Field(default=None)
    llm_base_url: str = Field(default="https://api.openai.com/v1")
    model_id: str = Field(default="gpt-4o-mini")
    enhancement_timeout: float = Field(default=60.0)
    enhancement_context: str = Field(default="Civil engineering property inspection report")
    enhance_bullets_only: bool = Field(default=False)

    template_path: Path = Field(default=Path("app/templates/report_template.docx"))
    max_photo_slots: int = Field(default=20)
    not_provided_text: str = Field(default="Not provided")

    image_max_width: int = Field(default=800)
    image_max_height: int = Field(default=600)
    image_jpeg_quality: int = Field(default=85)
    photo_width_mm: float = Field(default=150.0)
    photo_download_timeout: float = Field(default=30.0)
    max_photo_bytes: int = Field(default=10 * 1024 * 1024)

    progress_retention_seconds: float = Field(default=300.0)

    api_key: str | None = Field(default=None)
    log_level: str = Field(default="DEBUG")

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),  # Use a copy of the default list
    )

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="LLM client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=120.0, description="LLM client read timeout in seconds.")

    # Google Drive / Docs hand-off (OAuth2 refresh-token flow)
    google_client_id: str | None = Field(default=None)
    google_client_secret: str | None = Field(default=None)
    google_refresh_token: str | None = Field(default=None)
    google_drive_folder_id: str | None = Field(default=None)

    # S3 bucket holding uploaded photos
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)
    aws_region: str = Field(default="us-east-1")
    s3_bucket_name: str | None = Field(default=None)

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.

        Args:
            v: The value from the environment or direct assignment.

        Returns:
            A list of strings representing allowed CORS origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        # Return the default if env var is empty or not a string/list
        return list(DEFAULT_CORS_ORIGINS)  # Use a copy of the default list


settings = Settings()
