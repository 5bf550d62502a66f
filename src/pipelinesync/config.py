"""Configuration loader for pipelinesync.

Settings that are not secrets (vault location, secret names, Azure DevOps
organizations, retry policy) can be overridden from a YAML file. Every value
has a default, so running without a file is the normal case.

Example:
    settings = load_settings()
    print(f"Vault: {settings.vault.url}")
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pipelinesync.constants import (
    CONFIG_FILE_NAME,
    DEFAULT_BUG_ORGANIZATION,
    DEFAULT_BUG_PROJECT,
    DEFAULT_BUILD_ORGANIZATION,
    DEFAULT_BUILD_PROJECT,
    DEFAULT_BUILDS_PER_BRANCH,
    DEFAULT_UPDATE_MAX_ATTEMPTS,
    DEFAULT_UPDATE_RETRY_DELAY_SECONDS,
    DEFAULT_VAULT_URL,
    SECRET_DB_CONNECTION_STRING,
    SECRET_PROJECT_PAT,
    SECRET_TRACKING_SERVICE_PAT,
)
from pipelinesync.exceptions import ConfigError


class SecretNames(BaseModel):
    """Names of the three secrets read at startup."""

    model_config = ConfigDict(extra="forbid")

    tracking_service_pat: str = Field(
        default=SECRET_TRACKING_SERVICE_PAT, description="Secret holding the build service PAT"
    )
    project_pat: str = Field(
        default=SECRET_PROJECT_PAT, description="Secret holding the bug project PAT"
    )
    db_connection_string: str = Field(
        default=SECRET_DB_CONNECTION_STRING, description="Secret holding the database location"
    )


class VaultSettings(BaseModel):
    """Key Vault location and secret names."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(default=DEFAULT_VAULT_URL, description="Key Vault URL")
    secret_names: SecretNames = Field(default_factory=SecretNames)


class DevOpsSettings(BaseModel):
    """Where builds are read from and where bugs are queried."""

    model_config = ConfigDict(extra="forbid")

    build_organization: str = Field(default=DEFAULT_BUILD_ORGANIZATION)
    build_project: str = Field(default=DEFAULT_BUILD_PROJECT)
    bug_organization: str = Field(default=DEFAULT_BUG_ORGANIZATION)
    bug_project: str = Field(default=DEFAULT_BUG_PROJECT)
    definitions: list[int] = Field(
        default_factory=list,
        description="Build definition ids to sync (empty means all)",
    )
    builds_per_branch: int = Field(
        default=DEFAULT_BUILDS_PER_BRANCH,
        ge=1,
        le=500,
        description="Most recent builds fetched per branch",
    )


class RetrySettings(BaseModel):
    """Retry policy for a failing batch update.

    The default of a single attempt fails fast: the first failure ends the
    process.
    """

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=DEFAULT_UPDATE_MAX_ATTEMPTS, ge=1, le=20)
    delay_seconds: float = Field(default=DEFAULT_UPDATE_RETRY_DELAY_SECONDS, ge=0)


class SyncSettings(BaseModel):
    """Root configuration for pipelinesync."""

    model_config = ConfigDict(extra="forbid")

    vault: VaultSettings = Field(default_factory=VaultSettings)
    devops: DevOpsSettings = Field(default_factory=DevOpsSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


# Pattern to match ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values.

    Supports both ${VAR_NAME} and $VAR_NAME syntax.
    If the env var is not set, the placeholder is left unchanged.
    """
    if isinstance(value, str):

        def replace_env_var(match: re.Match[str]) -> str:
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]

    else:
        return value


def find_config_file() -> Path | None:
    """Search for .pipelinesync.yaml in current and parent directories.

    Returns:
        Path to the config file if found, None otherwise.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_file = directory / CONFIG_FILE_NAME
        if config_file.exists():
            return config_file

    return None


def load_settings(config_path: Path | None = None) -> SyncSettings:
    """Load settings from a YAML file.

    Args:
        config_path: Path to config file. If None, searches for
            .pipelinesync.yaml in the current directory and its parents.

    Returns:
        Loaded settings, or defaults when no file exists.

    Raises:
        ConfigError: If an explicitly given file is missing, or the YAML
            is malformed or fails validation.
    """
    if config_path is not None and not config_path.exists():
        raise ConfigError("Config file not found", {"path": str(config_path)})

    if config_path is None:
        config_path = find_config_file()

    if config_path is None:
        return SyncSettings()

    try:
        with open(config_path) as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError("Invalid YAML", {"path": str(config_path), "error": str(e)}) from e

    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping", {"path": str(config_path)})

    data = expand_env_vars(data)

    try:
        return SyncSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            "Invalid configuration",
            {"path": str(config_path), "errors": e.error_count()},
        ) from e
