"""
Centralized configuration for the render gateway.

Pydantic v2 settings management: strict validation, no secret leakage,
fast failure on invalid configuration. Variable names are unprefixed
(``USERNAME``, ``STORAGE_PATH``, ``SMTP_HOST``, ...).

Optional capabilities are switched by presence:
- ``STORAGE_PATH`` unset  -> rendered documents are returned directly
- ``SMTP_HOST`` unset     -> email directives are ignored
"""

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Field types
# -------------------------------------------------------------------------

EnvRequired = Annotated[
    str,
    Field(min_length=1),
]

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Secret value; repr and logs show it masked"),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Gateway settings, read from the process environment and ``.env``.

    Fails fast at startup if the boundary credentials are missing.
    """

    # ---------------------------------------------------------------------
    # Boundary credentials (HTTP Basic, every route)
    # ---------------------------------------------------------------------

    username: EnvRequired
    password: SensitiveEnv

    # ---------------------------------------------------------------------
    # Storage
    # ---------------------------------------------------------------------

    storage_path: Annotated[
        Optional[Path],
        Field(
            default=None,
            description="Artifact store root. Unset disables storage.",
        ),
    ]

    template_dir: Annotated[
        Path,
        Field(
            default=Path("templates"),
            description="Directory backing the template catalog.",
        ),
    ]

    upload_dir: Annotated[
        Path,
        Field(
            default=Path(tempfile.gettempdir()) / "uploads",
            description="Transient spool for uploaded templates.",
        ),
    ]

    # ---------------------------------------------------------------------
    # SMTP
    # ---------------------------------------------------------------------

    smtp_host: Optional[str] = None
    smtp_port: Annotated[int, Field(default=587, ge=1, le=65535)]
    smtp_user: Optional[str] = None
    smtp_password: Optional[SecretStr] = None
    smtp_sender: Optional[str] = None
    smtp_unsafe: Annotated[
        bool,
        Field(
            default=False,
            description="Skip STARTTLS (local relays only).",
        ),
    ]

    # ---------------------------------------------------------------------
    # Rendering
    # ---------------------------------------------------------------------

    render_timeout_seconds: Annotated[float, Field(default=60.0, gt=0)]
    converter_timeout_seconds: Annotated[float, Field(default=60.0, gt=0)]
    soffice_binary: str = "soffice"

    # ---------------------------------------------------------------------
    # Server
    # ---------------------------------------------------------------------

    host: str = "0.0.0.0"
    port: Annotated[int, Field(default=3030, ge=1, le=65535)]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("storage_path", "smtp_host", mode="before")
    @classmethod
    def blank_means_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def storage_enabled(self) -> bool:
        return self.storage_path is not None

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host)


# -------------------------------------------------------------------------
# Cached accessor
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings singleton."""
    return Settings()
