"""Core configuration.

What lives here:
- `AppSettings`: tool settings read from env vars (pydantic-settings).
- `SetupInformation`: console credentials, read from the environment first and
  from a JSON file (`env/dev.json`) as a fallback.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationError

SETUP_ENV_VARS = {
    "api_key": "IAM_API_KEY",
    "identity_url": "IAM_IDENTITY_URL",
    "service_url": "IBP_SERVICE_INSTANCE_URL",
}


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no extra dependencies)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "ibp-provision"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "ibp-provision"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ibp-provision"
    return Path.home() / ".config" / "ibp-provision"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


class AppSettings(BaseSettings):
    """Central tool configuration.

    Poll defaults mirror what a freshly created CA needs: five seconds per
    `/cainfo` request and ten minutes overall.
    """

    model_config = SettingsConfigDict(
        env_prefix="IBP_PROVISION_",
        extra="ignore",
        case_sensitive=False,
        # Project first (dev), then the per-user config.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    poll_request_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for each health check request (seconds).",
    )
    poll_deadline_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Overall budget for waiting on a component (seconds).",
    )
    poll_retry_delay_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Pause after a timed out health check before the next one.",
    )
    poll_retry_transport_errors: bool = Field(
        default=False,
        description="Retry non-timeout transport errors until the deadline.",
    )
    insecure_skip_tls_verify: bool = Field(
        default=False,
        description="Disable TLS certificate validation. Test environments only.",
    )

    http_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for console and CA API requests (seconds).",
    )
    user_agent: str = Field(
        default="ibp-provision/0.1",
        min_length=1,
        description="User-Agent for console and CA requests.",
    )

    setup_file: Path = Field(
        default=Path("env") / "dev.json",
        description="JSON fallback for the console credentials.",
    )
    cert_path: Path = Field(
        default=Path(".tlsca.pem"),
        description="Where the CA TLS certificate is written during provisioning.",
    )
    msp_directory: Path = Field(
        default=Path("msp"),
        description="Local MSP directory removed during cleanup.",
    )

    log_level: str = Field(default="INFO", description="Root log level for the CLI.")


class SetupInformation(BaseModel):
    """Console credentials and location."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., min_length=1, alias="IAM_API_KEY")
    identity_url: str = Field(..., min_length=1, alias="IAM_IDENTITY_URL")
    service_url: str = Field(..., min_length=1, alias="IBP_SERVICE_INSTANCE_URL")


def setup_info_from_env(environ: dict[str, str] | None = None) -> SetupInformation | None:
    """Read the credentials from env vars; None unless all three are set."""

    env = os.environ if environ is None else environ
    values = {field: (env.get(var) or "").strip() for field, var in SETUP_ENV_VARS.items()}
    if not all(values.values()):
        return None
    return SetupInformation(**values)


def setup_info_from_file(path: Path) -> SetupInformation:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"problem reading setup variables file {path}: {exc}") from exc
    try:
        return SetupInformation.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"problem parsing setup variables file {path}: {exc}") from exc


def load_setup_information(
    settings: AppSettings | None = None,
    *,
    environ: dict[str, str] | None = None,
) -> SetupInformation:
    """Environment first, then `settings.setup_file`."""

    settings = settings or AppSettings()
    info = setup_info_from_env(environ)
    if info is not None:
        return info
    return setup_info_from_file(settings.setup_file)
