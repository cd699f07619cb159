"""
REST clients for the diary backend: the Memory Store and the Media Store.

Also holds the local outbox that keeps creates the backend could not accept,
so an unreachable server never costs the user what they typed.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

load_dotenv()

API_BASE = os.getenv("MID_API_BASE", "http://localhost:3000/api")
API_TOKEN = os.getenv("MID_API_TOKEN")
OUTBOX_PATH = os.getenv("MID_OUTBOX_PATH", str(Path.home() / ".mid" / "outbox.jsonl"))

# Request timeout: (connect_timeout, read_timeout) in seconds
REQUEST_TIMEOUT = (5, 30)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store call failed. status is None when the backend could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def unreachable(self) -> bool:
        return self.status is None or self.status >= 500


class MemoryNotFound(StoreError):
    pass


def _join_tags(tags) -> str:
    if isinstance(tags, str):
        return tags
    return ",".join(tags)


class _RestClient:
    def __init__(self, base_url: str = API_BASE, token: Optional[str] = API_TOKEN,
                 session: Optional[requests.Session] = None, timeout=REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        """Send a request and return the decoded body's 'data' field (or the body)."""
        url = f"{self.base_url}{path}"
        logger.debug("%s %s params=%s", method, url, kwargs.get("params"))
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning("Request to %s failed: %s", url, e)
            raise StoreError(f"Cannot connect to server at {self.base_url}") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            if not response.ok:
                raise StoreError(response.text or f"Server error: {response.status_code}",
                                 response.status_code)
            raise StoreError("Invalid JSON response from server", response.status_code)

        if not response.ok:
            message = ""
            if isinstance(body, dict):
                message = body.get("error") or body.get("message") or ""
            message = message or f"Request failed: {response.status_code}"
            if response.status_code == 404:
                raise MemoryNotFound(message, 404)
            raise StoreError(message, response.status_code)

        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        return body if isinstance(body, dict) else {"result": body}


class MemoryStore(_RestClient):
    """Memories: create/get/list/update/delete/bulk-delete/search."""

    def create(self, payload: Dict) -> Dict:
        data = self._request("POST", "/memories", json=payload)
        memory = data.get("memory")
        if isinstance(memory, dict):
            return memory
        return {**payload, **data}

    def get(self, memory_id: str) -> Dict:
        data = self._request("GET", f"/memories/{memory_id}")
        memory = data.get("memory")
        if not isinstance(memory, dict):
            raise MemoryNotFound("Memory not found", 404)
        return memory

    def list(self, filters: Optional[Dict] = None) -> List[Dict]:
        params = {}
        for key, value in (filters or {}).items():
            if value in (None, "", []):
                continue
            params[key] = _join_tags(value) if key == "tags" else value
        data = self._request("GET", "/memories", params=params)
        return list(data.get("memories") or [])

    def update(self, memory_id: str, fields: Dict) -> Dict:
        return self._request("PUT", f"/memories/{memory_id}", json=fields)

    def delete(self, memory_id: str) -> Dict:
        return self._request("DELETE", f"/memories/{memory_id}")

    def bulk_delete(self, delete_all: bool = False, category: Optional[str] = None,
                    tags: Optional[List[str]] = None) -> int:
        """Delete every memory matching the filters. Tags match if any one is present."""
        if not delete_all and not category and not tags:
            raise StoreError("Must specify deleteAll=true, category, or tags for bulk delete", 400)
        params = {}
        if delete_all:
            params["deleteAll"] = "true"
        else:
            if category:
                params["category"] = category
            if tags:
                params["tags"] = _join_tags(tags)
        data = self._request("DELETE", "/memories", params=params)
        try:
            return int(data.get("deletedCount") or 0)
        except (TypeError, ValueError):
            logger.warning("Unexpected deletedCount from server: %r", data.get("deletedCount"))
            return 0

    def search(self, query: str, filters: Optional[Dict] = None) -> List[Dict]:
        params = {"q": query}
        for key in ("category", "tags"):
            value = (filters or {}).get(key)
            if value:
                params[key] = _join_tags(value) if key == "tags" else value
        data = self._request("GET", "/search", params=params)
        return list(data.get("memories") or [])


class MediaStore(_RestClient):
    """Image blobs: upload/update/delete."""

    def upload(self, content: bytes, filename: str, description: Optional[str] = None,
               tags: Optional[List[str]] = None, album: Optional[str] = None) -> Dict:
        form = {"tags": json.dumps(tags or [])}
        if description:
            form["description"] = description
        if album:
            form["album"] = album
        data = self._request("POST", "/images", files={"image": (filename, content)}, data=form)
        url = data.get("image_url") or data.get("url") or data.get("path") or data.get("src")
        if url:
            data["image_url"] = url
        return data

    def update(self, image_id: str, fields: Dict) -> Dict:
        return self._request("PUT", f"/images/{image_id}", json=fields)

    def delete(self, image_id: str) -> Dict:
        return self._request("DELETE", f"/images/{image_id}")


class Outbox:
    """Append-only JSON-lines queue of creates that could not reach the backend."""

    def __init__(self, path=OUTBOX_PATH):
        self.path = Path(path).expanduser()

    def append(self, kind: str, payload: Dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps({"kind": kind, "payload": payload}) + "\n")
        logger.info("Queued %s in outbox %s", kind, self.path)

    def pending(self) -> List[Dict]:
        if not self.path.exists():
            return []
        entries = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping unreadable outbox line: %s", line[:80])
        return entries

    def flush(self, memories: MemoryStore, media: Optional[MediaStore] = None) -> Dict:
        """Replay queued creates in order; entries that still fail stay queued."""
        entries = self.pending()
        remaining = []
        sent = 0
        for entry in entries:
            if remaining:
                remaining.append(entry)
                continue
            try:
                self._replay(entry, memories, media)
                sent += 1
            except (StoreError, OSError) as e:
                logger.warning("Outbox replay stopped: %s", e)
                remaining.append(entry)
        self._rewrite(remaining)
        return {"sent": sent, "remaining": len(remaining)}

    def _replay(self, entry: Dict, memories: MemoryStore, media: Optional[MediaStore]) -> None:
        payload = dict(entry.get("payload") or {})
        if entry.get("kind") == "image":
            if media is None:
                raise StoreError("No media store to upload queued image")
            file_path = payload.pop("file_path", None)
            if not file_path:
                raise StoreError("Queued image has no file path")
            path = Path(file_path)
            uploaded = media.upload(path.read_bytes(), path.name, payload.get("description"),
                                    payload.get("tags"), payload.get("album"))
            payload["image_url"] = uploaded.get("image_url")
            payload["image_id"] = uploaded.get("id")
        memories.create(payload)

    def _rewrite(self, entries: List[Dict]) -> None:
        if not entries:
            if self.path.exists():
                self.path.unlink()
            return
        with open(self.path, "w", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry) + "\n")


@dataclass
class Stores:
    memories: MemoryStore
    media: MediaStore
    outbox: Optional[Outbox] = None


def build_stores(base_url: str = API_BASE, token: Optional[str] = API_TOKEN,
                 outbox_path: Optional[str] = OUTBOX_PATH) -> Stores:
    """Clients sharing one HTTP session, plus the outbox when a path is configured."""
    session = requests.Session()
    return Stores(
        memories=MemoryStore(base_url, token, session=session),
        media=MediaStore(base_url, token, session=session),
        outbox=Outbox(outbox_path) if outbox_path else None,
    )
