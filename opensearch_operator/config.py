"""Operator settings.

Settings come from an optional YAML file and can be overridden through
``OPENSEARCH_OPERATOR_*`` environment variables, e.g.
``OPENSEARCH_OPERATOR_WORKERS=4``.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from opensearch_operator.exceptions import ConfigurationError
from opensearch_operator.logging_config import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "OPENSEARCH_OPERATOR_"


class OperatorConfig(BaseModel):
    """Operator configuration."""

    namespace: str | None = None  # None watches every namespace
    workers: int = 2
    plan_workers: int = 4
    resync_seconds: float = 300.0
    poll_seconds: float = 30.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    drain_timeout_seconds: float = 600.0
    drain_poll_seconds: float = 10.0
    admin_scheme: str = "https"
    verify_tls: bool = False
    request_timeout_seconds: float = 10.0

    @field_validator("workers", "plan_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("worker counts must be at least 1")
        return v

    @field_validator(
        "resync_seconds",
        "poll_seconds",
        "backoff_base_seconds",
        "backoff_max_seconds",
        "drain_timeout_seconds",
        "drain_poll_seconds",
        "request_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("admin_scheme")
    @classmethod
    def validate_admin_scheme(cls, v: str) -> str:
        allowed = ["http", "https"]
        if v not in allowed:
            raise ValueError(f"admin_scheme must be one of {allowed}, got '{v}'")
        return v

    def save(self, path: str) -> None:
        """Save configuration to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path | None = None, environ: dict[str, str] | None = None) -> "OperatorConfig":
        """Load configuration from a YAML file and the environment.

        Args:
            path: Optional YAML file; missing keys keep their defaults
            environ: Environment to read overrides from (defaults to os.environ)

        Raises:
            ConfigurationError: If the file cannot be read or a value is invalid
        """
        data: dict = {}
        if path is not None:
            path = Path(path)
            if not path.exists():
                raise ConfigurationError(
                    f"Configuration file not found: {path}",
                    f"Expected location: {path.absolute()}",
                )
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}", str(e))
            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration in {path} must be a mapping")

        environ = os.environ if environ is None else environ
        for key, value in environ.items():
            if key.startswith(ENV_PREFIX):
                field = key[len(ENV_PREFIX) :].lower()
                if field in cls.model_fields:
                    data[field] = value
                    logger.debug(f"Config override from environment: {field}")

        try:
            return cls(**data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError("Invalid operator configuration", problems)
