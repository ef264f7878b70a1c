"""Settings for fireway runs.

Names a deployment may need to change (history collection, service
account to impersonate, secret names holding the search endpoint and API
key) are fields here, read from ``FIREWAY_*`` environment
variables or a ``.env`` file.

Examples:
    >>> from fireway.settings import get_settings
    >>> settings = get_settings()
    >>> settings.history_collection
    'fireway'

Tags:
    settings, configuration, pydantic, environment, fireway
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirewaySettings(BaseSettings):
    """Configuration for the migration engine and its collaborators.

    Fields
    ──────
    history_collection     : Collection holding one document per applied migration
    service_account        : Principal to impersonate, ``{project_id}`` is substituted
    token_lifetime         : Impersonated token lifetime in seconds
    scopes                 : OAuth scopes requested for the impersonated token
    search_endpoint_secret : Secret holding the search endpoint URL
    search_api_key_secret  : Secret holding the search API key
    local_search_projects  : Projects that talk to ``local_search_endpoint`` instead
    search_timeout         : Search client request timeout in seconds
    grace_period           : Seconds to wait for late asynchronous errors
    emulator_host          : ``FIRESTORE_EMULATOR_HOST``; skips impersonation when set
    """

    model_config = SettingsConfigDict(
        env_prefix="FIREWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── History ──────────────────────────────────────────────────
    history_collection: str = "fireway"

    # ── Credentials ──────────────────────────────────────────────
    service_account: str = "main-service-account@{project_id}.iam.gserviceaccount.com"
    token_lifetime: int = Field(default=15 * 60, gt=0)
    scopes: list[str] = Field(
        default_factory=lambda: ["https://www.googleapis.com/auth/cloud-platform"]
    )

    # ── Search index ─────────────────────────────────────────────
    search_endpoint_secret: str = "akeneo_elasticsearch_endpoint"
    search_api_key_secret: str = "akeneo_elasticsearch_api_key"
    local_search_projects: list[str] = Field(default_factory=lambda: ["akeneo-syndication"])
    local_search_endpoint: str = "http://localhost:9200"
    search_timeout: float = Field(default=10 * 60, gt=0)

    # ── Pending work ─────────────────────────────────────────────
    grace_period: float = Field(default=0.01, ge=0)

    # ── Emulator ─────────────────────────────────────────────────
    emulator_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FIRESTORE_EMULATOR_HOST", "FIREWAY_EMULATOR_HOST"),
    )

    def principal_for(self, project_id: str) -> str:
        """Return the service account to impersonate for *project_id*."""
        return self.service_account.format(project_id=project_id)


@lru_cache(maxsize=1)
def get_settings() -> FirewaySettings:
    """Load and cache settings from the environment."""
    return FirewaySettings()


__all__ = ["FirewaySettings", "get_settings"]
