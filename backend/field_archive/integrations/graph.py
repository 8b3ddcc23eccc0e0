"""Microsoft Graph client for SharePoint/Teams document libraries."""

from __future__ import annotations

import time
from typing import Any, Callable
from urllib.parse import quote, urlparse

import requests

from field_archive.core.config import Settings
from field_archive.core.errors import ConfigurationError, RemoteUnavailable
from field_archive.core.logging import get_logger
from field_archive.ingest.types import ChangePage, RemoteItem
from field_archive.utils.time import parse_iso

logger = get_logger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
# refresh tokens this many seconds before they expire
TOKEN_REFRESH_MARGIN = 300

_PROVIDER = "graph"


class GraphDriveClient:
    """Remote drive backed by a SharePoint document library.

    Authenticates with the OAuth2 client-credentials flow and lists changes
    under the watch folder with the ``delta`` API. The cursor handed back to
    callers is the ``@odata.deltaLink`` URL. Every call carries ``timeout``.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        site_url: str,
        library: str = "Shared Documents",
        watch_folder: str = "FSA - State Committee",
        timeout: float = 60.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.site_url = site_url
        self.library = library
        self.watch_folder = watch_folder
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock
        self._access_token: str | None = None
        self._expires_at = 0.0
        self._site_id: str | None = None
        self._drive_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphDriveClient":
        if not settings.graph_configured:
            raise ConfigurationError("Microsoft Graph credentials not configured", provider=_PROVIDER)
        return cls(
            tenant_id=settings.graph_tenant_id or "",
            client_id=settings.graph_client_id or "",
            client_secret=settings.graph_client_secret or "",
            site_url=settings.sharepoint_site_url or "",
            library=settings.sharepoint_library,
            watch_folder=settings.sharepoint_watch_folder,
            timeout=settings.request_timeout_seconds,
        )

    # RemoteDrive ------------------------------------------------------

    def resolve_drive(self) -> tuple[str, str]:
        parsed = urlparse(self.site_url)
        if not parsed.hostname:
            raise RemoteUnavailable(f"Invalid SharePoint site URL: {self.site_url!r}", provider=_PROVIDER)
        site = self._get_json(f"/sites/{parsed.hostname}:{parsed.path or '/'}")
        site_id = _require(site, "id")
        drives = self._get_json(f"/sites/{site_id}/drives")
        for drive in drives.get("value", []):
            if drive.get("name") in (self.library, "Documents"):
                self._site_id, self._drive_id = site_id, drive["id"]
                return site_id, drive["id"]
        raise RemoteUnavailable(f'Drive "{self.library}" not found', provider=_PROVIDER)

    def list_changes(self, cursor: str | None) -> ChangePage:
        if cursor:
            url = cursor
        else:
            drive_id = self._ensure_drive()
            url = f"/drives/{drive_id}/root:/{quote(self.watch_folder, safe='/')}:/delta"
        entries: list[RemoteItem] = []
        pages = 0
        while True:
            data = self._get_json(url)
            pages += 1
            entries.extend(_to_remote_item(raw) for raw in data.get("value", []))
            next_link = data.get("@odata.nextLink")
            if not next_link:
                break
            url = next_link
        delta_link = data.get("@odata.deltaLink")
        logger.debug("Delta listing returned %s entries over %s pages", len(entries), pages)
        return ChangePage(entries=entries, next_cursor=delta_link or cursor)

    def download(self, item: RemoteItem) -> bytes:
        if item.download_url:
            # pre-authenticated URL; sending the bearer token is rejected
            return self._get_bytes(item.download_url, authenticated=False)
        drive_id = self._ensure_drive()
        return self._get_bytes(f"/drives/{drive_id}/items/{item.id}/content")

    def test_connection(self) -> dict[str, Any]:
        try:
            site_id, drive_id = self.resolve_drive()
        except RemoteUnavailable as exc:
            return {"connected": False, "error": str(exc)}
        return {
            "connected": True,
            "site_id": site_id,
            "drive_id": drive_id,
            "message": "Successfully connected to Microsoft Graph",
        }

    # HTTP helpers -----------------------------------------------------

    def _ensure_drive(self) -> str:
        if self._drive_id is not None:
            return self._drive_id
        _, drive_id = self.resolve_drive()
        return drive_id

    def _token(self) -> str:
        if self._access_token and self._clock() < self._expires_at - TOKEN_REFRESH_MARGIN:
            return self._access_token
        url = TOKEN_URL_TEMPLATE.format(tenant=self.tenant_id)
        try:
            resp = self.session.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": GRAPH_SCOPE,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteUnavailable(f"Token request failed: {exc}", provider=_PROVIDER) from exc
        if not resp.ok:
            raise RemoteUnavailable(
                f"Token request failed ({resp.status_code}): {resp.text[:500]}", provider=_PROVIDER
            )
        try:
            payload = resp.json()
            self._access_token = payload["access_token"]
            self._expires_at = self._clock() + float(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as exc:
            raise RemoteUnavailable(f"Malformed token response: {exc}", provider=_PROVIDER) from exc
        return self._access_token

    def _request(self, endpoint: str, authenticated: bool = True) -> requests.Response:
        url = endpoint if endpoint.startswith("http") else f"{GRAPH_BASE}{endpoint}"
        headers = {"Authorization": f"Bearer {self._token()}"} if authenticated else {}
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemoteUnavailable(f"Graph request failed: {exc}", provider=_PROVIDER) from exc
        if not resp.ok:
            raise RemoteUnavailable(
                f"Graph API error ({resp.status_code}): {resp.text[:500]}", provider=_PROVIDER
            )
        return resp

    def _get_json(self, endpoint: str) -> dict[str, Any]:
        resp = self._request(endpoint)
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteUnavailable(f"Malformed Graph response: {exc}", provider=_PROVIDER) from exc
        if not isinstance(data, dict):
            raise RemoteUnavailable("Malformed Graph response: expected an object", provider=_PROVIDER)
        return data

    def _get_bytes(self, endpoint: str, authenticated: bool = True) -> bytes:
        return self._request(endpoint, authenticated=authenticated).content


def _require(payload: dict[str, Any], key: str) -> Any:
    try:
        return payload[key]
    except KeyError:
        raise RemoteUnavailable(f"Malformed Graph response: missing {key!r}", provider=_PROVIDER) from None


def _to_remote_item(raw: dict[str, Any]) -> RemoteItem:
    parent = raw.get("parentReference") or {}
    return RemoteItem(
        id=_require(raw, "id"),
        name=raw.get("name", ""),
        size=int(raw.get("size") or 0),
        modified_at=parse_iso(raw.get("lastModifiedDateTime")),
        parent_path=parent.get("path"),
        is_file="file" in raw,
        download_url=raw.get("@microsoft.graph.downloadUrl"),
        deleted="deleted" in raw,
    )


__all__ = ["GraphDriveClient", "GRAPH_BASE"]
