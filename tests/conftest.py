"""
Shared fixtures: in-memory stand-ins for the REST backend.
"""
import sys
from pathlib import Path

import pytest

# Ensure src is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from store import MemoryNotFound, Outbox, StoreError, Stores


class FakeMemoryStore:
    def __init__(self):
        self.memories = {}
        self.calls = []
        self.next_id = 1
        # Set to a StoreError to make every call fail
        self.fail = None

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail is not None:
            raise self.fail

    def add(self, **memory):
        memory.setdefault("id", str(self.next_id))
        self.next_id += 1
        self.memories[memory["id"]] = memory
        return memory

    def create(self, payload):
        self._call("create", payload)
        return dict(self.add(**dict(payload)))

    def get(self, memory_id):
        self._call("get", memory_id)
        if memory_id not in self.memories:
            raise MemoryNotFound("Memory not found", 404)
        return dict(self.memories[memory_id])

    def list(self, filters=None):
        self._call("list", filters)
        filters = filters or {}
        found = []
        for memory in self.memories.values():
            if filters.get("type") and memory.get("type") != filters["type"]:
                continue
            if filters.get("category") and memory.get("category") != filters["category"]:
                continue
            if filters.get("tags") and not set(filters["tags"]) & set(memory.get("tags") or []):
                continue
            found.append(dict(memory))
        if filters.get("limit"):
            found = found[: filters["limit"]]
        return found

    def update(self, memory_id, fields):
        self._call("update", memory_id, fields)
        if memory_id not in self.memories:
            raise MemoryNotFound("Memory not found", 404)
        self.memories[memory_id].update(fields)
        return {}

    def delete(self, memory_id):
        self._call("delete", memory_id)
        if memory_id not in self.memories:
            raise MemoryNotFound("Memory not found", 404)
        del self.memories[memory_id]
        return {}

    def bulk_delete(self, delete_all=False, category=None, tags=None):
        self._call("bulk_delete", delete_all, category, tags)
        if not delete_all and not category and not tags:
            raise StoreError("Must specify deleteAll=true, category, or tags for bulk delete", 400)
        doomed = []
        for memory_id, memory in self.memories.items():
            if delete_all:
                doomed.append(memory_id)
            elif tags and set(tags) & set(memory.get("tags") or []):
                doomed.append(memory_id)
            elif category and memory.get("category") == category:
                doomed.append(memory_id)
        for memory_id in doomed:
            del self.memories[memory_id]
        return len(doomed)

    def search(self, query, filters=None):
        self._call("search", query, filters)
        return [
            dict(m) for m in self.memories.values()
            if query.lower() in (m.get("content") or m.get("description") or "").lower()
        ]


class FakeMediaStore:
    def __init__(self):
        self.calls = []
        self.fail = None

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail is not None:
            raise self.fail

    def upload(self, content, filename, description=None, tags=None, album=None):
        self._call("upload", content, filename, description, tags, album)
        return {"id": "img-1", "image_url": f"http://localhost/uploads/{filename}"}

    def update(self, image_id, fields):
        self._call("update", image_id, fields)
        return {}

    def delete(self, image_id):
        self._call("delete", image_id)
        return {}


@pytest.fixture
def memory_store():
    return FakeMemoryStore()


@pytest.fixture
def media_store():
    return FakeMediaStore()


@pytest.fixture
def stores(memory_store, media_store, tmp_path):
    return Stores(memories=memory_store, media=media_store, outbox=Outbox(tmp_path / "outbox.jsonl"))


def texts(messages):
    """Message texts only, for compact assertions."""
    return [m.text for m in messages]


@pytest.fixture
def message_texts():
    return texts
