"""Backend clients handed to migrations.

Credentials come from Application Default Credentials impersonating the
project's service account (``FirewaySettings.service_account``), so an
operator only needs ``roles/iam.serviceAccountTokenCreator`` on it. With
``FIRESTORE_EMULATOR_HOST`` set no token is fetched up front.

Clients the engine builds are released when the run ends; a Firebase app
supplied by the caller is left alone.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import firebase_admin
import google.auth
from elasticsearch import AsyncElasticsearch
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials as firebase_credentials
from google.auth import impersonated_credentials
from google.auth.transport.requests import Request
from google.cloud import firestore, secretmanager

from fireway.logging import get_logger
from fireway.settings import FirewaySettings

logger = get_logger(__name__)


@dataclass
class Collaborators:
    """Connected clients for one run.

    Attributes:
        firestore: Raw ``firestore.AsyncClient``; the pipeline wraps it
        search: Search index client
        secrets: Secret Manager client
        auth: Firebase Auth client
        app: Firebase app backing ``auth``
    """

    firestore: Any
    search: Any = None
    secrets: Any = None
    auth: Any = None
    app: Any = None
    closers: list[Callable[[], Any]] = field(default_factory=list)

    async def aclose(self) -> None:
        """Release what the engine created, newest first."""
        while self.closers:
            result = self.closers.pop()()
            if inspect.isawaitable(result):
                await result


class ImpersonatedCredential(firebase_credentials.Base):
    """Firebase Admin credential backed by impersonated Google credentials."""

    def __init__(self, credentials: Any) -> None:
        self._g_credential = credentials

    def get_credential(self) -> Any:
        return self._g_credential


def impersonate(project_id: str, settings: FirewaySettings) -> Any:
    source, _ = google.auth.default(scopes=settings.scopes)
    return impersonated_credentials.Credentials(
        source_credentials=source,
        target_principal=settings.principal_for(project_id),
        target_scopes=settings.scopes,
        delegates=[],
        lifetime=settings.token_lifetime,
    )


async def access_secret(client: Any, project_id: str, name: str) -> str:
    """Return the latest version of secret *name* as text."""
    response = await client.access_secret_version(
        name=f"projects/{project_id}/secrets/{name}/versions/latest"
    )
    return response.payload.data.decode("utf-8")


async def create_search_client(
    project_id: str, secrets: Any, settings: FirewaySettings
) -> AsyncElasticsearch:
    if project_id in settings.local_search_projects:
        return AsyncElasticsearch(settings.local_search_endpoint)

    endpoint = await access_secret(secrets, project_id, settings.search_endpoint_secret)
    api_key = await access_secret(secrets, project_id, settings.search_api_key_secret)
    return AsyncElasticsearch(
        endpoint.strip(),
        api_key=api_key.strip(),
        request_timeout=settings.search_timeout,
    )


async def create_collaborators(
    project_id: str,
    settings: FirewaySettings,
    *,
    app: Any = None,
) -> Collaborators:
    """Build every backend client a run needs for *project_id*."""
    target = impersonate(project_id, settings)
    collaborators = Collaborators(firestore=None)

    try:
        if app is None:
            credential = None
            if not settings.emulator_host:
                await asyncio.to_thread(target.refresh, Request())
                credential = ImpersonatedCredential(target)
            app = firebase_admin.initialize_app(
                credential,
                options={"projectId": project_id},
                name=f"fireway-{uuid.uuid4().hex}",
            )
            collaborators.closers.append(lambda: firebase_admin.delete_app(app))
        collaborators.app = app
        collaborators.auth = firebase_auth.Client(app)

        collaborators.secrets = secretmanager.SecretManagerServiceAsyncClient(credentials=target)
        collaborators.search = await create_search_client(project_id, collaborators.secrets, settings)
        collaborators.closers.append(collaborators.search.close)

        collaborators.firestore = firestore.AsyncClient(project=project_id, credentials=target)
    except BaseException:
        await collaborators.aclose()
        raise

    logger.debug("clients.created", project_id=project_id, emulator=bool(settings.emulator_host))
    return collaborators


__all__ = [
    "Collaborators",
    "ImpersonatedCredential",
    "access_secret",
    "create_collaborators",
    "create_search_client",
    "impersonate",
]
