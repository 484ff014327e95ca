import json

import httpx
import pytest
from google.auth.exceptions import RefreshError

from facility_ingest.errors import NotificationError
from facility_ingest.notifications.push import FcmPushClient

SEND_URL = "https://fcm.googleapis.com/v1/projects/facility-prod/messages:send"


class FakeCredentials:
    """Stands in for google.oauth2 service-account credentials."""

    def __init__(self, valid=True, project_id="facility-prod", error=None):
        self.valid = valid
        self.token = "access-1" if valid else None
        self.project_id = project_id
        self.error = error
        self.refreshes = 0

    def refresh(self, request):
        if self.error:
            raise self.error
        self.refreshes += 1
        self.token = f"access-{self.refreshes + 1}"
        self.valid = True


def make_client(handler, credentials=None, project_id=""):
    client = FcmPushClient(credentials or FakeCredentials(), project_id=project_id)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def ok(request):
    return httpx.Response(200, json={"name": "projects/facility-prod/messages/1"})


@pytest.mark.asyncio
async def test_send_posts_v1_message():
    requests = []

    def handler(request):
        requests.append(request)
        return ok(request)

    client = make_client(handler)
    await client.send("tok-alice-0000000", "Odor Alert", "Bad odor detected.")
    await client.close()

    [request] = requests
    assert str(request.url) == SEND_URL
    assert request.headers["Authorization"] == "Bearer access-1"
    assert json.loads(request.content) == {
        "message": {
            "token": "tok-alice-0000000",
            "notification": {"title": "Odor Alert", "body": "Bad odor detected."},
        }
    }


@pytest.mark.asyncio
async def test_expired_credentials_are_refreshed_before_sending():
    credentials = FakeCredentials(valid=False)
    requests = []

    def handler(request):
        requests.append(request)
        return ok(request)

    client = make_client(handler, credentials)
    await client.send("tok-1", "t", "b")
    await client.send("tok-2", "t", "b")

    assert credentials.refreshes == 1
    assert [r.headers["Authorization"] for r in requests] == ["Bearer access-2"] * 2


@pytest.mark.asyncio
async def test_explicit_project_id_overrides_credentials():
    requests = []

    def handler(request):
        requests.append(request)
        return ok(request)

    client = make_client(handler, FakeCredentials(project_id="other"), project_id="facility-prod")
    await client.send("tok", "t", "b")

    assert str(requests[0].url) == SEND_URL


@pytest.mark.asyncio
async def test_unregistered_token_raises():
    error = {
        "error": {
            "code": 404,
            "status": "NOT_FOUND",
            "details": [{"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError",
                         "errorCode": "UNREGISTERED"}],
        }
    }
    client = make_client(lambda request: httpx.Response(404, json=error))

    with pytest.raises(NotificationError, match="HTTP 404: UNREGISTERED"):
        await client.send("tok-stale", "t", "b")


@pytest.mark.asyncio
async def test_non_json_error_body_raises():
    client = make_client(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(NotificationError, match="HTTP 502: bad gateway"):
        await client.send("tok", "t", "b")


@pytest.mark.asyncio
async def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    client = make_client(handler)
    with pytest.raises(NotificationError, match="boom"):
        await client.send("tok", "t", "b")


@pytest.mark.asyncio
async def test_refresh_failure_raises_without_sending():
    calls = []
    credentials = FakeCredentials(valid=False, error=RefreshError("invalid_grant"))
    client = make_client(lambda request: calls.append(request), credentials)

    with pytest.raises(NotificationError, match="invalid_grant"):
        await client.send("tok", "t", "b")
    assert calls == []


@pytest.mark.asyncio
async def test_missing_credentials_fail_without_sending():
    calls = []
    client = FcmPushClient.from_service_account_file("")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: calls.append(r)))

    assert not client.configured
    with pytest.raises(NotificationError, match="not configured"):
        await client.send("tok", "t", "b")
    assert calls == []
