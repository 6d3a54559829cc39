"""Breadth-first enumeration of a OneDrive folder tree via Microsoft Graph children listings."""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Set
from urllib.parse import quote

import httpx

from peoplemap.config import Settings
from peoplemap.http import HttpClients, truncate
from peoplemap.sync.models import DriveFolder
from peoplemap.timeutil import parse_iso_utc, utc_now

log = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
PAGE_SIZE = 200
# Folder picker stops paging after this many pages
MAX_FOLDER_PAGES = 20


class GraphError(Exception):
    """Non-2xx response from Microsoft Graph."""

    def __init__(self, status_code: int, code: Optional[str], message: str) -> None:
        super().__init__(f"Graph request failed with status {status_code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GraphError":
        code = None
        message = truncate(response.text, 300)
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            err = data["error"]
            code = err.get("code")
            message = truncate(str(err.get("message") or code or message), 300)
        return cls(response.status_code, code, message)


@dataclass(frozen=True)
class RemoteFile:
    """File entry from a children listing. download_url is pre-authenticated and short-lived."""

    item_id: str
    file_name: str
    download_url: str
    etag: Optional[str]
    size_bytes: Optional[int]
    last_modified_utc: datetime


def parse_drive_item(item: Dict[str, Any]) -> Optional[RemoteFile]:
    """Return RemoteFile for a downloadable file entry; None for folders, tombstones and incomplete entries."""
    if "deleted" in item or "file" not in item:
        return None
    item_id = item.get("id")
    name = item.get("name")
    url = item.get("@microsoft.graph.downloadUrl")
    if not all(isinstance(v, str) and v.strip() for v in (item_id, name, url)):
        return None
    size = item.get("size")
    etag = item.get("eTag")
    return RemoteFile(
        item_id=item_id,
        file_name=name,
        download_url=url,
        etag=etag if isinstance(etag, str) else None,
        size_bytes=size if isinstance(size, int) and not isinstance(size, bool) else None,
        last_modified_utc=parse_iso_utc(item.get("lastModifiedDateTime")) or utc_now(),
    )


def encode_drive_path(path: str) -> str:
    """Percent-encode each segment of a drive path; keeps the separators."""
    return "/".join(quote(p, safe="") for p in path.split("/") if p)


def drive_resource(settings: Settings) -> str:
    if settings.onedrive_drive_id:
        return f"drives/{quote(settings.onedrive_drive_id, safe='')}"
    return "me/drive"


def item_children_url(settings: Settings, item_id: str) -> str:
    return f"{GRAPH_BASE}/{drive_resource(settings)}/items/{quote(item_id, safe='')}/children?$top={PAGE_SIZE}"


def path_children_url(settings: Settings, path: str) -> str:
    encoded = encode_drive_path(path)
    if not encoded:
        return f"{GRAPH_BASE}/{drive_resource(settings)}/root/children?$top={PAGE_SIZE}"
    return f"{GRAPH_BASE}/{drive_resource(settings)}/root:/{encoded}:/children?$top={PAGE_SIZE}"


def root_children_url(settings: Settings) -> str:
    """Seed listing: configured folder item id wins over folder path."""
    if settings.onedrive_folder_item_id:
        return item_children_url(settings, settings.onedrive_folder_item_id)
    return path_children_url(settings, settings.onedrive_folder_path)


class DriveCrawler:
    """Walks the configured folder tree one children page at a time."""

    def __init__(self, http: HttpClients) -> None:
        self._http = http

    async def _get_page(self, client: httpx.AsyncClient, url: str, access_token: str) -> Dict[str, Any]:
        r = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})
        if not r.is_success:
            log.warning("Graph request failed status=%s body=%s", r.status_code, truncate(r.text, 400))
            raise GraphError.from_response(r)
        data = r.json()
        return data if isinstance(data, dict) else {}

    async def iter_files(
        self,
        access_token: str,
        settings: Settings,
        should_continue: Callable[[], bool] = lambda: True,
    ) -> AsyncIterator[RemoteFile]:
        """
        Yield every file under the configured root. should_continue() is checked before
        each page request; once it returns False the remaining queue is dropped.
        """
        queue: Deque[str] = deque([root_children_url(settings)])
        visited: Set[str] = set()
        pages = 0
        async with self._http.graph() as client:
            while queue:
                if not should_continue():
                    log.info("Crawl stopped early, %d listing(s) left unvisited", len(queue))
                    return
                url = queue.popleft()
                data = await self._get_page(client, url, access_token)
                pages += 1
                for item in data.get("value") or []:
                    if not isinstance(item, dict) or "deleted" in item:
                        continue
                    if "folder" in item:
                        folder_id = item.get("id")
                        if isinstance(folder_id, str) and folder_id and folder_id not in visited:
                            visited.add(folder_id)
                            queue.append(item_children_url(settings, folder_id))
                        continue
                    remote = parse_drive_item(item)
                    if remote is not None:
                        yield remote
                next_link = data.get("@odata.nextLink")
                if isinstance(next_link, str) and next_link:
                    queue.appendleft(next_link)
        log.debug("Crawl finished after %d page(s), %d folder(s)", pages, len(visited))

    async def list_folders(self, access_token: str, settings: Settings, path: str) -> List[DriveFolder]:
        """Direct child folders of path (drive-relative, "/" = root)."""
        parent = "/" + "/".join(p for p in path.replace("\\", "/").split("/") if p)
        url: Optional[str] = path_children_url(settings, parent)
        folders: List[DriveFolder] = []
        pages = 0
        async with self._http.graph() as client:
            while url and pages < MAX_FOLDER_PAGES:
                data = await self._get_page(client, url, access_token)
                pages += 1
                for item in data.get("value") or []:
                    if not isinstance(item, dict) or "folder" not in item or "deleted" in item:
                        continue
                    folder_id = item.get("id")
                    name = item.get("name")
                    if not isinstance(folder_id, str) or not isinstance(name, str):
                        continue
                    child_count = (item.get("folder") or {}).get("childCount")
                    folders.append(
                        DriveFolder(
                            id=folder_id,
                            name=name,
                            path=f"{parent.rstrip('/')}/{name}",
                            child_count=child_count if isinstance(child_count, int) else None,
                        )
                    )
                next_link = data.get("@odata.nextLink")
                url = next_link if isinstance(next_link, str) and next_link else None
        return folders
