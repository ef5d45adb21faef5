"""
Async Python client for the automation cloud job API.

Use ``create_client_sdk`` from a backend holding a service token, or
``create_end_user_sdk`` from an end-user session bound to one job.
"""

from .api import ApiClient
from .config import ClientConfig, resolve_client_config
from .jobs import JobSnapshot, JobState, JobTracker, Subscription, TrackerState
from .sdk import EndUserSdk, create_client_sdk, create_end_user_sdk
from .utils.errors import (
    ApiError,
    AutomationCloudError,
    ClientError,
    ConfigurationError,
    ParseError,
    ServerError,
)
from .vault import VaultClient

__all__ = [
    "ApiClient",
    "ApiError",
    "AutomationCloudError",
    "ClientConfig",
    "ClientError",
    "ConfigurationError",
    "EndUserSdk",
    "JobSnapshot",
    "JobState",
    "JobTracker",
    "ParseError",
    "ServerError",
    "Subscription",
    "TrackerState",
    "VaultClient",
    "create_client_sdk",
    "create_end_user_sdk",
    "resolve_client_config",
]
