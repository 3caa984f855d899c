# utils/azure_auth.py
import logging
import os
from functools import lru_cache

from azure.identity import DefaultAzureCredential, ManagedIdentityCredential
from azure.identity.aio import DefaultAzureCredential as AsyncDefaultAzureCredential
from azure.identity.aio import ManagedIdentityCredential as AsyncManagedIdentityCredential

logging.getLogger("azure.identity").setLevel(logging.WARNING)

# Only env + MI in deployed environments; CLI credential is allowed locally.
_PROD_EXCLUDES = dict(
    exclude_environment_credential=False,
    exclude_managed_identity_credential=False,
    exclude_workload_identity_credential=True,
    exclude_shared_token_cache_credential=True,
    exclude_visual_studio_code_credential=True,
    exclude_cli_credential=True,
    exclude_powershell_credential=True,
    exclude_interactive_browser_credential=True,
)

_LOCAL_EXCLUDES = dict(
    _PROD_EXCLUDES,
    exclude_managed_identity_credential=True,
    exclude_cli_credential=False,
)


def _using_managed_identity() -> bool:
    """Check if running with Managed Identity (Azure hosted environment)."""
    return bool(
        os.getenv("AZURE_CLIENT_ID") or os.getenv("MSI_ENDPOINT") or os.getenv("IDENTITY_ENDPOINT")
    )


def _is_local_dev() -> bool:
    """
    Check if running in local development mode.

    Detection priority:
    1. ENVIRONMENT env var: anything but "prod", "production", "staging" = local dev
    2. Azure hosting signals: WEBSITE_SITE_NAME, CONTAINER_APP_NAME = production
    """
    env = os.getenv("ENVIRONMENT", "").lower()

    if env not in ("prod", "production", "staging"):
        return True

    is_azure_hosted = bool(
        os.getenv("WEBSITE_SITE_NAME")  # App Service
        or os.getenv("CONTAINER_APP_NAME")  # Container Apps
        or os.getenv("FUNCTIONS_WORKER_RUNTIME")  # Functions
    )

    return not is_azure_hosted


@lru_cache(maxsize=1)
def get_credential():
    """
    Get the synchronous Azure credential (used for Redis AAD tokens).

    - Managed Identity: Used when AZURE_CLIENT_ID/MSI_ENDPOINT/IDENTITY_ENDPOINT is set
    - Local Dev: Uses CLI credential (requires `az login`)
    - Production: Uses only environment + managed identity credentials
    """
    if _using_managed_identity():
        return ManagedIdentityCredential(client_id=os.getenv("AZURE_CLIENT_ID"))
    return DefaultAzureCredential(**(_LOCAL_EXCLUDES if _is_local_dev() else _PROD_EXCLUDES))


def get_async_credential():
    """
    Get an asyncio Azure credential for the agent runtime client.

    Not cached: aio credentials own a transport bound to the running loop,
    so the caller closes it together with the client.
    """
    if _using_managed_identity():
        return AsyncManagedIdentityCredential(client_id=os.getenv("AZURE_CLIENT_ID"))
    return AsyncDefaultAzureCredential(
        **(_LOCAL_EXCLUDES if _is_local_dev() else _PROD_EXCLUDES)
    )
