"""Configuration models and environment variable parsing for the vCD migration tool."""

import json
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

# Load environment variables from .env file if it exists
load_dotenv()

SUPPORTED_API_VERSIONS = ("27.0", "29.0")


class VcdEndpointConfig(BaseModel):
    """Connection settings for one vCloud Director endpoint."""

    host: str = Field(..., description="vCD host name or IP address")
    username: str = Field(..., description="Login user name (without @org)")
    org: str = Field(default="System", description="Login organization")
    password: SecretStr | None = Field(
        default=None, description="Login password (prompted when absent)"
    )
    api_version: str = Field(default="29.0", description="vCD API version")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")
    timeout: float = Field(
        default=60.0, gt=0, le=600.0, description="REST call timeout in seconds"
    )

    @field_validator("host")
    def validate_host(cls, v: str) -> str:
        """Strip scheme and trailing slashes from the host."""
        host = v.strip()
        for scheme in ("https://", "http://"):
            if host.startswith(scheme):
                host = host[len(scheme) :]
        host = host.rstrip("/")
        if not host:
            raise ValueError("Host cannot be empty")
        return host

    @field_validator("username")
    def validate_username(cls, v: str) -> str:
        """Validate that user name is not empty."""
        if not v or v.strip() == "":
            raise ValueError("Username cannot be empty")
        return v.strip()

    @field_validator("api_version")
    def validate_api_version(cls, v: str) -> str:
        """Only the API versions with a locator implementation are accepted."""
        if v not in SUPPORTED_API_VERSIONS:
            raise ValueError(
                f"API version must be one of: {', '.join(SUPPORTED_API_VERSIONS)}"
            )
        return v

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"

    @property
    def login(self) -> str:
        return f"{self.username}@{self.org}"


class ReadinessConfig(BaseModel):
    """Bounded polling policy used after creating gateways and networks."""

    poll_interval: float = Field(
        default=5.0, ge=0.0, le=300.0, description="Seconds between readiness polls"
    )
    max_attempts: int = Field(
        default=120, ge=1, le=10000, description="Maximum readiness polls"
    )
    max_elapsed: float | None = Field(
        default=None, gt=0, description="Maximum seconds spent polling (optional)"
    )
    backoff: Literal["fixed", "exponential"] = Field(
        default="fixed", description="Wait strategy between polls"
    )
    max_interval: float = Field(
        default=60.0, ge=0.0, description="Upper bound of exponential backoff"
    )
    settle_delay: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="Seconds to wait after an object reports ready",
    )


class ProviderSelection(BaseModel):
    """Operator choices for provider resources that cannot be discovered singly."""

    provider_vdc: str | None = Field(default=None, description="Target provider VDC")
    vcenter: str | None = Field(default=None, description="Target vCenter name")
    portgroup: str | None = Field(default=None, description="Target portgroup name")


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (json or text)")
    file: Path | None = Field(
        default=None, description="Append a human-readable run log to this file"
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v.lower() not in {"json", "text"}:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class Config(BaseModel):
    """Main configuration class for the vCD migration tool."""

    source: VcdEndpointConfig | None = None
    target: VcdEndpointConfig
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    provider: ProviderSelection = Field(default_factory=ProviderSelection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    default_user_password: SecretStr | None = Field(
        default=None, description="Password given to every migrated user"
    )

    model_config = {"validate_assignment": True}

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables.

        Returns:
            Config instance populated from environment variables.

        Raises:
            ValueError: If required environment variables are missing.
        """
        target = _endpoint_from_env("VCD_TARGET")
        if target is None:
            raise ValueError(
                "VCD_TARGET_HOST and VCD_TARGET_USER environment variables are required"
            )

        max_elapsed = os.getenv("VCD_POLL_MAX_ELAPSED")
        readiness = ReadinessConfig(
            poll_interval=float(os.getenv("VCD_POLL_INTERVAL", "5.0")),
            max_attempts=int(os.getenv("VCD_POLL_MAX_ATTEMPTS", "120")),
            backoff=os.getenv("VCD_POLL_BACKOFF", "fixed"),
            settle_delay=float(os.getenv("VCD_SETTLE_DELAY", "30.0")),
            max_elapsed=float(max_elapsed) if max_elapsed else None,
        )

        log_file = os.getenv("LOG_FILE")
        default_password = os.getenv("VCD_DEFAULT_USER_PASSWORD")

        return cls(
            source=_endpoint_from_env("VCD_SOURCE"),
            target=target,
            readiness=readiness,
            provider=ProviderSelection(
                provider_vdc=os.getenv("VCD_PROVIDER_VDC"),
                vcenter=os.getenv("VCD_VCENTER"),
                portgroup=os.getenv("VCD_PORTGROUP"),
            ),
            logging=LoggingConfig(
                level=os.getenv("LOG_LEVEL", "INFO"),
                format=os.getenv("LOG_FORMAT", "text"),
                file=Path(log_file) if log_file else None,
            ),
            default_user_password=default_password or None,
        )

    @classmethod
    def from_file(cls, config_path: Path) -> "Config":
        """Create configuration from a YAML or JSON file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config instance populated from the file

        Raises:
            ValueError: If the file format is unsupported or required fields are missing
            FileNotFoundError: If the configuration file doesn't exist
        """
        import yaml

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        file_extension = config_path.suffix.lower()

        try:
            if file_extension == ".json":
                with open(config_path) as f:
                    config_data = json.load(f)
            elif file_extension in [".yaml", ".yml"]:
                with open(config_path) as f:
                    config_data = yaml.safe_load(f)
            else:
                raise ValueError(
                    f"Unsupported configuration file format: {file_extension}. Supported formats: .json, .yaml, .yml"
                )

            return cls(**config_data)

        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}") from e
        except Exception as e:
            raise ValueError(f"Failed to load configuration file: {e}") from e


def _endpoint_from_env(prefix: str) -> VcdEndpointConfig | None:
    host = os.getenv(f"{prefix}_HOST")
    username = os.getenv(f"{prefix}_USER")
    if not host or not username:
        return None

    password = os.getenv(f"{prefix}_PASSWORD")
    return VcdEndpointConfig(
        host=host,
        username=username,
        org=os.getenv(f"{prefix}_ORG", "System"),
        password=password or None,
        api_version=os.getenv(f"{prefix}_API_VERSION", "29.0"),
        verify_ssl=os.getenv(f"{prefix}_VERIFY_SSL", "true").lower()
        not in ("0", "false", "no"),
    )
