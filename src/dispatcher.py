"""
Top-level dispatch for the diary terminal.

Each input line goes to exactly one place, checked in this order: the pending
confirmation, the active builder, the active editor, and only then the command
parser. At most one of those flows is active at a time; the dispatcher holds it
in a single `flow` attribute.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from builders import BuilderSession, select_file as builder_select_file, start_builder, step_builder
from commands import (
    Clear,
    Command,
    CreateList,
    CreateMemory,
    CreateTable,
    CreateTimeline,
    Delete,
    EditMemory,
    Help,
    Retrieve,
    SavePicture,
    Unknown,
    parse,
)
from confirm import ConfirmationGate, Decision, PendingAction
from editors import EDITORS, EditorSession, start_editor, step_editor, updated_memory
from entries import memory_summary
from flows import CLEAR, SYSTEM, Message, StepResult, mother, system
from store import MemoryNotFound, StoreError, Stores

logger = logging.getLogger(__name__)

HELP_LINES = [
    "═══ CREATE MEMORIES ═══",
    '  create memory: "Your text"',
    '  create memory: #work #ideas "Your text"',
    '  create memory: category: happy "Your text"',
    '  create memory: "Your text" tags: work, ideas category: happy',
    "",
    "═══ CREATE TABLE (Interactive) ═══",
    "  create table - Starts guided table creation",
    "    → Mother asks for: title, columns, rows, tags, category",
    "    → Type 'cancel' to abort at any step",
    "",
    "═══ CREATE LIST (Interactive) ═══",
    "  create list - Starts guided list creation",
    "    → Mother asks for: title, items, tags, category",
    "    → Type 'cancel' to abort at any step",
    "",
    "═══ CREATE TIMELINE (Interactive) ═══",
    "  create timeline - Starts guided timeline creation",
    "    → Mother asks for: title, events, tags, category",
    "    → Type 'cancel' to abort at any step",
    "    → Format for events: TIME - DESCRIPTION (e.g., '9:00 AM - Wake up')",
    "",
    "═══ SAVE IMAGES ═══",
    "  save picture - Asks for an image file to upload",
    '  save picture description: "Beach day" tags: summer, family',
    "",
    "═══ RETRIEVE MEMORIES ═══",
    "  show all - Retrieve all memories and images",
    "  show tags: work - Memories tagged with 'work'",
    "  show tags: work, ideas - Memories with any of these tags",
    "  show #tag1 #tag2 - Hashtag syntax for tags",
    "  show category: happy - All in category 'happy'",
    "  show pictures - All images only",
    "  show all tables - All table memories",
    "  Mother, show happy moments - Natural language retrieval",
    '  search: "beach" - Memories containing text',
    "",
    "═══ EDIT & DELETE ═══",
    '  edit memory #12: "New content" - Update memory text',
    '  edit memory #12 add: "More text" - Append to memory text',
    "  edit memory #12 - For tables/lists/timelines/images: opens interactive editor",
    "  delete memory #12 - Delete single memory",
    "  delete picture #5 - Delete single image",
    "  delete image #5 - Same as delete picture",
    "  delete all - Delete ALL memories (asks for confirmation)",
    "  delete memories tags: work - Delete all tagged 'work'",
    "  delete memories category: happy - Delete in category",
    "",
    "═══ OTHER ═══",
    "  clear - Clear terminal screen",
    "  help - Show this help (what you're reading)",
]


@dataclass
class Building:
    session: BuilderSession


@dataclass
class Editing:
    session: EditorSession


@dataclass
class Confirming:
    gate: ConfirmationGate


ActiveFlow = Optional[Union[Building, Editing, Confirming]]


class Dispatcher:
    """One diary terminal session: routes input lines and owns the active flow."""

    def __init__(self, stores: Stores, username: str = "User"):
        self.stores = stores
        self.username = username
        self.flow: ActiveFlow = None
        self.gate = ConfirmationGate()
        # Memories most recently shown to the user
        self.visible: List[Dict] = []
        self._lock = threading.Lock()
        self._preview_count = 0

        self._handlers = {
            CreateMemory.type: self._create_memory,
            CreateTable.type: lambda command: self._start_builder("table"),
            CreateList.type: lambda command: self._start_builder("list"),
            CreateTimeline.type: lambda command: self._start_builder("timeline"),
            SavePicture.type: self._save_picture,
            EditMemory.type: self._edit_memory,
            Delete.type: self._delete,
            Retrieve.type: self._retrieve,
            Help.type: self._help,
            Clear.type: self._clear,
            Unknown.type: self._unknown,
        }

    def greeting(self) -> List[Message]:
        return [system(f"Welcome, {self.username}. Type 'help' for commands.")]

    @property
    def active(self) -> bool:
        return self.flow is not None

    def awaiting_file(self) -> bool:
        """True while an image builder is waiting for its file."""
        return (
            isinstance(self.flow, Building)
            and self.flow.session.kind == "image"
            and self.flow.session.step == "select"
        )

    def handle(self, line: str) -> List[Message]:
        """Process one input line and return the messages to show, user echo first."""
        text = (line or "").strip()
        if not text:
            return []
        if not self._lock.acquire(blocking=False):
            return [system("Still working on the previous command. Please wait.")]
        try:
            messages = [Message(self.username, text)]
            try:
                messages.extend(self._route(text))
            except StoreError as e:
                logger.error("Unhandled store error: %s", e)
                messages.append(system(f"Error: {e}"))
            return messages
        finally:
            self._lock.release()

    def select_file(self, filename: str, content: bytes, file_path: Optional[str] = None) -> List[Message]:
        """Deliver the file chosen for the waiting image builder."""
        if not self.awaiting_file():
            return [system("No image upload is waiting for a file.")]
        with self._lock:
            result = builder_select_file(self.flow.session, filename, content, file_path)
            self._preview_count += 1
            self.visible.insert(0, {
                "id": f"preview-{self._preview_count}",
                "type": "image",
                "content": filename,
                "description": "",
                "preview": True,
            })
            return result.messages

    # --- Routing ---

    def _route(self, text: str) -> List[Message]:
        flow = self.flow
        if isinstance(flow, Confirming):
            return self._resolve_confirmation(text)
        if isinstance(flow, Building):
            return self._builder_input(flow.session, text)
        if isinstance(flow, Editing):
            return self._editor_input(flow.session, text)

        command = parse(text)
        logger.debug("Parsed %r as %s", text, command.type)
        handler = self._handlers.get(command.type, self._unknown)
        return handler(command)

    def _builder_input(self, session: BuilderSession, text: str) -> List[Message]:
        result = step_builder(session, text, self.stores)
        if result.session is None:
            self.flow = None
            self._drop_previews()
        return result.messages

    def _editor_input(self, session: EditorSession, text: str) -> List[Message]:
        result = step_editor(session, text, self.stores)
        if result.completed:
            self._replace_visible(updated_memory(session))
        if result.session is None:
            self.flow = None
        return result.messages

    def _resolve_confirmation(self, text: str) -> List[Message]:
        result = self.gate.resolve(text)
        if not result.matched:
            return [system("Please type 'yes' or 'no' to confirm.")]
        self.flow = None
        if result.decision is Decision.NO:
            return [mother("Action cancelled.")]
        action = result.action
        if action.type == "delete":
            return self._execute_delete(action.data)
        return self._execute_edit(action.data)

    def _confirm(self, action: PendingAction) -> List[Message]:
        self.gate.request(action)
        self.flow = Confirming(self.gate)
        return [mother(action.prompt)]

    def _begin(self, result: StepResult) -> List[Message]:
        if isinstance(result.session, BuilderSession):
            self.flow = Building(result.session)
        elif isinstance(result.session, EditorSession):
            self.flow = Editing(result.session)
        return result.messages

    # --- Command handlers ---

    def _create_memory(self, command: CreateMemory) -> List[Message]:
        if not command.content:
            return [system('Please provide memory content: create memory: "Your text"')]
        payload = {
            "type": "text",
            "content": command.content,
            "category": command.category,
            "tags": list(command.tags),
        }
        try:
            created = self.stores.memories.create(payload)
        except StoreError as e:
            logger.warning("Creating memory failed: %s", e)
            if e.unreachable and self.stores.outbox is not None:
                try:
                    self.stores.outbox.append("text", payload)
                except OSError as write_error:
                    logger.error("Outbox write failed: %s", write_error)
                    return [system(f"Error: could not save locally: {write_error}")]
                return [mother("Memory saved locally. (Backend unavailable)")]
            return [system(f"Error: {e}")]

        self.visible.insert(0, created)
        message = "Memory created successfully."
        if command.tags:
            message += f" Tags: {', '.join(command.tags)}."
        if command.category:
            message += f" Category: {command.category}."
        return [mother(message)]

    def _start_builder(self, kind: str) -> List[Message]:
        return self._begin(start_builder(kind))

    def _save_picture(self, command: SavePicture) -> List[Message]:
        seed = {"description": command.description, "tags": command.tags}
        return self._begin(start_builder("image", seed=seed))

    def _edit_memory(self, command: EditMemory) -> List[Message]:
        if not command.id:
            return [system("Please specify memory ID: edit memory #12")]
        try:
            memory = self.stores.memories.get(command.id)
        except MemoryNotFound:
            return [system(f"Memory #{command.id} not found.")]
        except StoreError as e:
            return [system(f"Error: {e}")]

        entry_type = memory.get("type") or "text"
        if entry_type in EDITORS:
            prompt = f"Do you want to edit {entry_type} #{memory.get('id', command.id)}? (yes/no)"
            return self._confirm(PendingAction("edit", memory, prompt))

        if not command.updates:
            return [system('Please provide the new content: edit memory #12: "New content"')]
        try:
            self.stores.memories.update(command.id, command.updates)
        except StoreError as e:
            return [system(f"Error: {e}")]
        if "content" in command.updates:
            self._replace_visible({**memory, "content": command.updates["content"]})
        return [mother("Memory updated successfully.")]

    def _execute_edit(self, memory: Dict) -> List[Message]:
        return self._begin(start_editor(memory))

    def _delete(self, command: Delete) -> List[Message]:
        tags = command.filters.get("tags")
        category = command.filters.get("category")
        if command.delete_all:
            prompt = "Are you sure you want to DELETE ALL memories? This cannot be undone! (yes/no)"
        elif tags:
            prompt = f"Are you sure you want to delete all memories with tags: {', '.join(tags)}? (yes/no)"
        elif category:
            prompt = f"Are you sure you want to delete all memories in category: {category}? (yes/no)"
        elif command.id:
            prompt = f"Are you sure you want to delete {command.target} #{command.id}? (yes/no)"
        else:
            return [system(
                "Please specify: delete memory #12, delete all, delete memories tags: work, "
                "or delete memories category: happy"
            )]
        return self._confirm(PendingAction("delete", command, prompt))

    def _execute_delete(self, command: Delete) -> List[Message]:
        memories = self.stores.memories
        tags = command.filters.get("tags")
        category = command.filters.get("category")
        try:
            if command.delete_all:
                count = memories.bulk_delete(delete_all=True)
                self.visible = []
                return [mother(f"All {count} memories deleted successfully.")]

            if tags or category:
                count = memories.bulk_delete(category=category, tags=tags)
                self.visible = [m for m in self.visible if not _matches(m, category, tags)]
                return [mother(f"{count} memories deleted successfully.")]

            if command.target == "memory":
                local = self._find_visible(command.id)
                if local and local.get("type") == "image":
                    self._delete_media(local.get("image_id") or command.id)
                memories.delete(command.id)
            else:
                self.stores.media.delete(command.id)
        except MemoryNotFound:
            return [system(f"{command.target.capitalize()} #{command.id} not found.")]
        except StoreError as e:
            logger.warning("Delete failed: %s", e)
            return [system(f"Error: {e}")]

        self.visible = [
            m for m in self.visible
            if str(m.get("id")) != command.id and str(m.get("image_id")) != command.id
        ]
        return [mother(f"{command.target} #{command.id} deleted successfully.")]

    def _delete_media(self, image_id) -> None:
        try:
            self.stores.media.delete(image_id)
        except StoreError as e:
            # The blob may already be gone
            logger.warning("Failed to delete image %s: %s", image_id, e)

    def _retrieve(self, command: Retrieve) -> List[Message]:
        filters = command.filters
        params = {}
        for key in ("category", "tags", "type", "date"):
            if filters.get(key):
                params[key] = filters[key]
        if filters.get("first"):
            params["limit"] = 1

        try:
            if filters.get("search"):
                found = self.stores.memories.search(filters["search"], params)
            else:
                found = self.stores.memories.list(params)
        except StoreError as e:
            logger.warning("Retrieve failed: %s", e)
            return [system(f"Error: {e}")]

        if not found:
            if filters.get("search"):
                return [mother("No memories found matching your search.")]
            return [mother("No memories found with those filters.")]

        self.visible = list(found)
        if filters.get("search"):
            header = f"Found {len(found)} memories:"
        else:
            described = []
            if filters.get("category"):
                described.append(f"category: {filters['category']}")
            if filters.get("tags"):
                described.append(f"tags: {', '.join(filters['tags'])}")
            desc = f" ({', '.join(described)})" if described else ""
            header = f"Retrieved {len(found)} memories{desc}."
        return [mother(header)] + [system(f"  {memory_summary(m)}") for m in found]

    def _help(self, command: Command) -> List[Message]:
        return [system(line) for line in HELP_LINES]

    def _clear(self, command: Command) -> List[Message]:
        self.visible = []
        return [Message(SYSTEM, "", kind=CLEAR), system("Terminal cleared.")]

    def _unknown(self, command: Command) -> List[Message]:
        text = getattr(command, "text", "")
        return [system(f"Unknown command: \"{text.strip()}\". Type 'help' to see available commands.")]

    # --- Visible list ---

    def _find_visible(self, memory_id) -> Optional[Dict]:
        for memory in self.visible:
            if str(memory.get("id")) == str(memory_id):
                return memory
        return None

    def _replace_visible(self, memory: Dict) -> None:
        for i, existing in enumerate(self.visible):
            if str(existing.get("id")) == str(memory.get("id")):
                self.visible[i] = memory

    def _drop_previews(self) -> None:
        self.visible = [m for m in self.visible if not m.get("preview")]


def _matches(memory: Dict, category: Optional[str], tags: Optional[List[str]]) -> bool:
    """Local mirror of the bulk-delete filter; tags match if any one is present."""
    if tags and set(tags) & set(memory.get("tags") or []):
        return True
    return bool(category) and memory.get("category") == category
