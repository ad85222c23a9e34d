from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vhostlog.core.exceptions import ConfigurationError

env_path = Path('.') / ".env"

LOG_FORMATS = ("common", "combined")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VHOSTLOG_", extra="ignore")

    BASE_DIR: Path = Path(".")
    TEMPLATE: str = "%Y%m%d-access.log"
    ROTATE: bool = True
    STATIC_FILENAME: str = "access.log"
    SUBDIR: str = ""
    SYMLINK: bool = False
    SYMLINK_NAME: str = "access.log"

    KNOWN_ONLY: bool = False
    KNOWN_HOSTS: List[str] = Field(default_factory=list)
    IGNORE_WWW: bool = False

    MAX_HANDLES: int = Field(default=100, gt=0)
    FLUSH: bool = True

    ACCOUNTING: bool = False
    DATABASE_URL: Optional[str] = None
    FLUSH_INTERVAL: float = Field(default=60.0, gt=0)
    LOG_FORMAT: Optional[str] = None

    USER: Optional[str] = None
    GROUP: Optional[str] = None
    CHROOT: Optional[Path] = None

    LOG_LEVEL: str = "INFO"

    @field_validator("TEMPLATE", "STATIC_FILENAME")
    @classmethod
    def _check_template(cls, value: str) -> str:
        # Formatting errors must surface here, never mid-stream.
        try:
            rendered = datetime.now().strftime(value)
        except (ValueError, UnicodeError) as exc:
            raise ValueError(f"invalid filename template {value!r}: {exc}") from exc
        if not rendered.strip():
            raise ValueError(f"filename template {value!r} renders to an empty name")
        if Path(rendered).is_absolute():
            raise ValueError(f"filename template {value!r} must render to a relative path")
        return value

    @field_validator("SYMLINK_NAME")
    @classmethod
    def _check_symlink_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError(f"symlink name {value!r} must be a plain file name")
        return value

    @field_validator("LOG_FORMAT")
    @classmethod
    def _check_log_format(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"unsupported log format {value!r}, expected one of {', '.join(LOG_FORMATS)}")
        return value

    @field_validator("KNOWN_HOSTS")
    @classmethod
    def _normalize_known_hosts(cls, value: List[str]) -> List[str]:
        return [name.lower() for name in value]

    @model_validator(mode="after")
    def _check_accounting(self) -> "Settings":
        if self.ACCOUNTING and not self.DATABASE_URL:
            raise ValueError("traffic accounting requires DATABASE_URL")
        return self


def get_settings(**overrides) -> Settings:
    """Build the settings once at startup; ``overrides`` win over the environment."""
    load_dotenv(dotenv_path=env_path)
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
