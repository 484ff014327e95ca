"""
FcmPushClient — Firebase Cloud Messaging sender (HTTP v1 API).

Access tokens come from a service account through google-auth and are
refreshed in a worker thread when they expire. Sends are never retried.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from facility_ingest.errors import NotificationError

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_ENDPOINT = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


def _error_detail(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
    except (ValueError, AttributeError):
        return response.text[:200]
    for detail in error.get("details") or []:
        if detail.get("errorCode"):
            return detail["errorCode"]
    return error.get("status") or error.get("message") or response.text[:200]


class FcmPushClient:
    def __init__(
        self,
        credentials: Optional[Any],
        project_id: str = "",
        endpoint: str = FCM_ENDPOINT,
        timeout: float = 5.0,
    ):
        self._credentials = credentials
        self._project_id = project_id or getattr(credentials, "project_id", None) or ""
        self._endpoint = endpoint
        self._client = httpx.AsyncClient(timeout=timeout)
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_service_account_file(
        cls, path: str, project_id: str = "", endpoint: str = FCM_ENDPOINT, timeout: float = 5.0
    ) -> "FcmPushClient":
        credentials = None
        if path:
            credentials = service_account.Credentials.from_service_account_file(
                path, scopes=[FCM_SCOPE]
            )
        return cls(credentials, project_id, endpoint, timeout)

    @property
    def configured(self) -> bool:
        return self._credentials is not None and bool(self._project_id)

    @property
    def url(self) -> str:
        return self._endpoint.format(project_id=self._project_id)

    async def _access_token(self) -> str:
        async with self._token_lock:
            if not self._credentials.valid:
                await asyncio.to_thread(self._credentials.refresh, Request())
        return self._credentials.token

    async def send(self, token: str, title: str, body: str) -> None:
        """Push one notification to ``token``. Raises NotificationError on failure."""
        if not self.configured:
            logger.warning(f"FCM credentials not configured, notification not sent: {title}")
            raise NotificationError(token, "FCM credentials not configured")

        try:
            access_token = await self._access_token()
        except GoogleAuthError as e:
            raise NotificationError(token, f"credential refresh failed: {e}") from e

        payload = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
            }
        }
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = await self._client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationError(token, str(e)) from e

        if response.status_code != 200:
            raise NotificationError(token, f"HTTP {response.status_code}: {_error_detail(response)}")
        logger.info(f"Notification sent to: {token[:12]}...")

    async def close(self) -> None:
        await self._client.aclose()
