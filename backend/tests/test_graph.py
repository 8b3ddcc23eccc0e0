from __future__ import annotations

from typing import Any

import pytest
import requests

from field_archive.core.config import Settings
from field_archive.core.errors import ConfigurationError, RemoteUnavailable
from field_archive.ingest.types import RemoteItem
from field_archive.integrations.graph import GRAPH_BASE, GraphDriveClient

TOKEN_URL = "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"
SITE_URL = f"{GRAPH_BASE}/sites/contoso.sharepoint.com:/sites/FieldOffice"
DRIVES_URL = f"{GRAPH_BASE}/sites/site-1/drives"
DELTA_URL = f"{GRAPH_BASE}/drives/drive-1/root:/FSA%20-%20State%20Committee:/delta"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = "" if payload is None else str(payload)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeSession:
    def __init__(self, routes: dict[str, Any]) -> None:
        self.routes = routes
        self.calls: list[dict[str, Any]] = []

    def _respond(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.routes[url]
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, **kwargs)


class Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def _routes(**extra: Any) -> dict[str, Any]:
    routes: dict[str, Any] = {
        TOKEN_URL: FakeResponse(payload={"access_token": "tok-1", "expires_in": 3600}),
        SITE_URL: FakeResponse(payload={"id": "site-1"}),
        DRIVES_URL: FakeResponse(
            payload={"value": [{"id": "drive-0", "name": "Site Assets"}, {"id": "drive-1", "name": "Documents"}]}
        ),
    }
    routes.update(extra)
    return routes


def _client(session: FakeSession, clock: Clock | None = None) -> GraphDriveClient:
    return GraphDriveClient(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret",
        site_url="https://contoso.sharepoint.com/sites/FieldOffice",
        timeout=12.5,
        session=session,  # type: ignore[arg-type]
        clock=clock or Clock(),
    )


def test_resolve_drive_falls_back_to_documents_library() -> None:
    session = FakeSession(_routes())
    client = _client(session)

    assert client.resolve_drive() == ("site-1", "drive-1")

    token_call = session.calls[0]
    assert token_call["method"] == "POST"
    assert token_call["data"]["grant_type"] == "client_credentials"
    assert token_call["data"]["scope"] == "https://graph.microsoft.com/.default"
    assert session.calls[1]["headers"] == {"Authorization": "Bearer tok-1"}


def test_every_request_carries_timeout() -> None:
    session = FakeSession(_routes(**{DELTA_URL: FakeResponse(payload={"value": [], "@odata.deltaLink": "d1"})}))
    client = _client(session)

    client.resolve_drive()
    client.list_changes(None)

    assert session.calls
    assert all(call["timeout"] == 12.5 for call in session.calls)


def test_token_is_cached_until_refresh_margin() -> None:
    session = FakeSession(
        _routes(
            **{
                TOKEN_URL: [
                    FakeResponse(payload={"access_token": "tok-1", "expires_in": 3600}),
                    FakeResponse(payload={"access_token": "tok-2", "expires_in": 3600}),
                ],
                DRIVES_URL: FakeResponse(payload={"value": [{"id": "drive-1", "name": "Shared Documents"}]}),
            }
        )
    )
    clock = Clock()
    client = _client(session, clock)

    client.resolve_drive()
    clock.now += 3000
    client.resolve_drive()
    token_calls = [call for call in session.calls if call["url"] == TOKEN_URL]
    assert len(token_calls) == 1

    clock.now += 400
    client.resolve_drive()
    token_calls = [call for call in session.calls if call["url"] == TOKEN_URL]
    assert len(token_calls) == 2
    assert session.calls[-1]["headers"] == {"Authorization": "Bearer tok-2"}


def test_list_changes_follows_next_links() -> None:
    page_two = "https://graph.microsoft.com/v1.0/drives/drive-1/delta?token=page2"
    session = FakeSession(
        _routes(
            **{
                DELTA_URL: FakeResponse(
                    payload={
                        "value": [
                            {
                                "id": "abc123",
                                "name": "receipt.jpg",
                                "size": 2048,
                                "file": {"mimeType": "image/jpeg"},
                                "lastModifiedDateTime": "2026-03-02T10:15:00Z",
                                "parentReference": {"path": "/drives/drive-1/root:/FSA - State Committee"},
                                "@microsoft.graph.downloadUrl": "https://download.example/abc123",
                            },
                            {"id": "folder-1", "name": "Receipts", "folder": {"childCount": 2}},
                        ],
                        "@odata.nextLink": page_two,
                    }
                ),
                page_two: FakeResponse(
                    payload={
                        "value": [{"id": "gone", "name": "old.pdf", "file": {}, "deleted": {"state": "deleted"}}],
                        "@odata.deltaLink": "https://graph.microsoft.com/v1.0/drives/drive-1/delta?token=next",
                    }
                ),
            }
        )
    )
    client = _client(session)

    page = client.list_changes(None)

    assert [entry.id for entry in page.entries] == ["abc123", "folder-1", "gone"]
    receipt, folder, gone = page.entries
    assert receipt.is_file and receipt.size == 2048
    assert receipt.download_url == "https://download.example/abc123"
    assert receipt.modified_at is not None and receipt.modified_at.year == 2026
    assert not folder.is_file
    assert gone.deleted
    assert page.next_cursor.endswith("token=next")


def test_list_changes_resumes_from_cursor() -> None:
    cursor = "https://graph.microsoft.com/v1.0/drives/drive-1/delta?token=prev"
    session = FakeSession(_routes(**{cursor: FakeResponse(payload={"value": []})}))
    client = _client(session)

    page = client.list_changes(cursor)

    assert page.entries == []
    assert page.next_cursor == cursor
    assert SITE_URL not in [call["url"] for call in session.calls]


@pytest.mark.parametrize(
    "failure",
    [
        FakeResponse(status_code=503, payload={"error": "unavailable"}),
        FakeResponse(status_code=200, payload=None),
        requests.ConnectionError("connection reset"),
    ],
)
def test_failures_surface_as_remote_unavailable(failure) -> None:
    session = FakeSession(_routes(**{SITE_URL: failure}))
    with pytest.raises(RemoteUnavailable) as excinfo:
        _client(session).resolve_drive()
    assert excinfo.value.provider == "graph"


def test_token_refusal_surfaces_as_remote_unavailable() -> None:
    session = FakeSession(_routes(**{TOKEN_URL: FakeResponse(status_code=401, payload={"error": "invalid_client"})}))
    with pytest.raises(RemoteUnavailable, match="401"):
        _client(session).resolve_drive()


def test_missing_library_is_reported() -> None:
    session = FakeSession(_routes(**{DRIVES_URL: FakeResponse(payload={"value": [{"id": "x", "name": "Other"}]})}))
    client = _client(session)
    with pytest.raises(RemoteUnavailable, match="Shared Documents"):
        client.resolve_drive()
    assert client.test_connection()["connected"] is False


def test_download_uses_preauthenticated_url_without_bearer() -> None:
    download_url = "https://download.example/abc123"
    session = FakeSession(_routes(**{download_url: FakeResponse(content=b"\xff\xd8\xffdata")}))
    item = RemoteItem(id="abc123", name="receipt.jpg", download_url=download_url)

    assert _client(session).download(item) == b"\xff\xd8\xffdata"
    assert session.calls[-1]["headers"] == {}
    assert all(call["url"] != TOKEN_URL for call in session.calls)


def test_download_falls_back_to_content_endpoint() -> None:
    content_url = f"{GRAPH_BASE}/drives/drive-1/items/abc123/content"
    session = FakeSession(_routes(**{content_url: FakeResponse(content=b"%PDF-1.7")}))

    data = _client(session).download(RemoteItem(id="abc123", name="scan.pdf"))

    assert data == b"%PDF-1.7"
    assert session.calls[-1]["headers"] == {"Authorization": "Bearer tok-1"}


def test_from_settings_requires_credentials(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        GraphDriveClient.from_settings(Settings(db_path=tmp_path / "a.db"))

    client = GraphDriveClient.from_settings(
        Settings(
            db_path=tmp_path / "a.db",
            graph_tenant_id="t",
            graph_client_id="c",
            graph_client_secret="s",
            sharepoint_site_url="https://contoso.sharepoint.com/sites/FieldOffice",
            request_timeout_seconds=30,
        )
    )
    assert client.timeout == 30
    assert client.watch_folder == "FSA - State Committee"
