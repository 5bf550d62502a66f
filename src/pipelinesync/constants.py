"""Constants and configuration defaults for pipelinesync.

This module contains all magic values, default configurations, and constants
used throughout the application. Import from here instead of hardcoding values.
"""

from typing import Final

# =============================================================================
# VERSION
# =============================================================================
VERSION: Final[str] = "0.1.0"

# =============================================================================
# EXIT CODES
# =============================================================================
EXIT_OK: Final[int] = 0
EXIT_INVALID_INPUT: Final[int] = 1
EXIT_FAILURE: Final[int] = 2

# =============================================================================
# KEY VAULT
# =============================================================================
DEFAULT_VAULT_URL: Final[str] = "https://edgebuildkv.vault.azure.net/"
KEY_VAULT_API_VERSION: Final[str] = "7.4"
KEY_VAULT_RESOURCE: Final[str] = "https://vault.azure.net"

SECRET_TRACKING_SERVICE_PAT: Final[str] = "TestDashboardVstsPat"
SECRET_PROJECT_PAT: Final[str] = "iotedgeDevOpsProjectPAT"
SECRET_DB_CONNECTION_STRING: Final[str] = "TestDashboardDbConnectionString"

# =============================================================================
# MANAGED IDENTITY
# =============================================================================
IMDS_TOKEN_URL: Final[str] = "http://169.254.169.254/metadata/identity/oauth2/token"
IMDS_API_VERSION: Final[str] = "2018-02-01"
APP_SERVICE_IDENTITY_API_VERSION: Final[str] = "2019-08-01"
IDENTITY_ENDPOINT_ENV: Final[str] = "IDENTITY_ENDPOINT"
IDENTITY_HEADER_ENV: Final[str] = "IDENTITY_HEADER"

# =============================================================================
# AZURE DEVOPS
# =============================================================================
DEVOPS_BASE_URL: Final[str] = "https://dev.azure.com"
DEVOPS_API_VERSION: Final[str] = "6.0"
DEFAULT_BUILD_ORGANIZATION: Final[str] = "msazure"
DEFAULT_BUILD_PROJECT: Final[str] = "One"
DEFAULT_BUG_ORGANIZATION: Final[str] = "msazure"
DEFAULT_BUG_PROJECT: Final[str] = "One"
DEFAULT_BUILDS_PER_BRANCH: Final[int] = 10

# =============================================================================
# BUG QUERIES
# =============================================================================
BUG_AREA_PATHS: Final[tuple[str, ...]] = (
    "One\\IoT\\Platform\\IoTEdge",
    "One\\IoT\\Platform\\IoTEdge\\Runtime",
    "One\\IoT\\Platform\\IoTEdge\\Modules",
    "One\\IoT\\Platform\\IoTEdge\\Test",
)
BUG_PRIORITIES: Final[tuple[int, ...]] = (0, 1, 2, 3)

# =============================================================================
# HTTP CLIENT DEFAULTS
# =============================================================================
DEFAULT_HTTP_TIMEOUT_SECONDS: Final[float] = 30.0

# =============================================================================
# RETRY DEFAULTS
# =============================================================================
DEFAULT_UPDATE_MAX_ATTEMPTS: Final[int] = 1
DEFAULT_UPDATE_RETRY_DELAY_SECONDS: Final[float] = 30.0

# =============================================================================
# CONFIG FILE
# =============================================================================
CONFIG_FILE_NAME: Final[str] = ".pipelinesync.yaml"

# =============================================================================
# LOGGING
# =============================================================================
LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
