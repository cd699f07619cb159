"""
Guided creation of structured memories (tables, lists, timelines, images).

One engine drives every builder. Each entry type contributes a step table: the
ordered steps, what each step accepts, which steps may be skipped, and which
collect items until 'done'. The engine owns the shared control words (cancel,
exit, skip, done) and the final persist.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from entries import format_event, format_row, format_tags, parse_event, split_csv, split_row
from flows import (
    CANCEL_WORDS,
    DONE,
    SKIP,
    FlowAborted,
    Message,
    StepInvalid,
    StepResult,
    mother,
    system,
)
from store import StoreError, Stores

logger = logging.getLogger(__name__)

SAVE_WORDS = ("save", "yes", "y")


@dataclass
class Step:
    """
    One step of a builder.

    accept(data, text) validates and stores the input, returning echo messages;
    it raises StepInvalid without touching data when the input is rejected.
    """
    name: str
    prompt: Callable[[Dict], List[Message]]
    accept: Callable[[Dict, str], List[Message]]
    skippable: bool = False
    skip_value: Callable[[], object] = lambda: None
    # Repeating steps collect into data[collect] until 'done'
    collect: Optional[str] = None
    empty_error: str = ""
    more_prompt: str = ""


@dataclass
class BuilderSpec:
    kind: str
    label: str
    steps: List[Step]
    new_data: Callable[[], Dict]
    persist: Callable[[Dict, Stores], Dict]
    summary: Callable[[Dict], List[Message]]
    outbox_payload: Callable[[Dict], Optional[Dict]]


@dataclass
class BuilderSession:
    spec: BuilderSpec
    data: Dict
    index: int = 0

    @property
    def step(self) -> str:
        return self.spec.steps[self.index].name

    @property
    def kind(self) -> str:
        return self.spec.kind


# --- Shared steps ---


def _title_step(label: str, text: Optional[str] = None) -> Step:
    def prompt(data):
        return [mother(text or f"Let's create a {label.lower()}! First, what's the title for this {label.lower()}? (or type 'skip')")]

    def accept(data, text):
        data["title"] = text
        return []

    return Step("title", prompt, accept, skippable=True, skip_value=lambda: "")


def _tags_step(label: str, text: Optional[str] = None) -> Step:
    def prompt(data):
        return [mother(text or f"Add tags for this {label.lower()} (comma-separated, or 'skip'):")]

    def accept(data, value):
        data["tags"] = split_csv(value)
        return []

    return Step("tags", prompt, accept, skippable=True, skip_value=list)


def _category_step(label: str) -> Step:
    def prompt(data):
        return [mother(f"Enter a category for this {label.lower()} (or 'skip'):")]

    def accept(data, value):
        data["category"] = value
        return []

    return Step("category", prompt, accept, skippable=True)


def _created_message(label: str, data: Dict) -> Message:
    text = f"{label} created successfully!"
    if data.get("tags"):
        text += f" Tags: {', '.join(data['tags'])}."
    if data.get("category"):
        text += f" Category: {data['category']}."
    return mother(text)


def _structured_payload(kind: str, label: str, data: Dict, fields: List[str]) -> Dict:
    payload = {
        "type": kind,
        "content": data.get("title") or label,
        "tags": list(data.get("tags") or []),
        "category": data.get("category"),
    }
    for name in fields:
        payload[name] = data.get(name)
    return payload


# --- Table ---


def _table_columns_accept(data, text):
    columns = split_csv(text)
    if not columns:
        raise StepInvalid("Please enter at least one column name.")
    data["columns"] = columns
    return [mother(f"Columns: {format_row(columns)}")]


def _table_rows_prompt(data):
    return [
        mother(f"Now enter row data. Each row should have {len(data['columns'])} values separated by commas."),
        mother("Type 'done' when finished adding rows."),
    ]


def _table_rows_accept(data, text):
    values = split_row(text)
    width = len(data["columns"])
    if len(values) != width:
        raise StepInvalid(f"Row should have {width} values (you entered {len(values)}). Try again:")
    data["rows"].append(values)
    return [mother(f"Row {len(data['rows'])} added: {format_row(values)}")]


TABLE = BuilderSpec(
    kind="table",
    label="Table",
    steps=[
        _title_step(
            "Table",
            text="Let's create a table! First, what's the title/heading for this table? (or type 'skip' to skip)",
        ),
        Step(
            "columns",
            lambda data: [mother("Enter column names separated by commas (e.g., Name, Age, City):")],
            _table_columns_accept,
        ),
        Step(
            "rows",
            _table_rows_prompt,
            _table_rows_accept,
            collect="rows",
            empty_error="Please add at least one row of data.",
            more_prompt="Enter next row or type 'done' to finish:",
        ),
        _tags_step("Table"),
        _category_step("Table"),
    ],
    new_data=lambda: {"title": "", "columns": [], "rows": [], "tags": [], "category": None},
    persist=lambda data, stores: stores.memories.create(
        _structured_payload("table", "Table", data, ["columns", "rows"])
    ),
    summary=lambda data: [_created_message("Table", data)],
    outbox_payload=lambda data: _structured_payload("table", "Table", data, ["columns", "rows"]),
)


# --- List ---


def _list_items_accept(data, text):
    data["items"].append(text)
    return [mother(f"  {len(data['items'])}. {text}")]


def _list_summary(data):
    messages = [_created_message("List", data), system(f"── {data.get('title') or 'List'} ──")]
    messages.extend(system(f"  • {item}") for item in data["items"])
    return messages


LIST = BuilderSpec(
    kind="list",
    label="List",
    steps=[
        _title_step("List"),
        Step(
            "items",
            lambda data: [
                mother("Now add your list items. Enter one item at a time."),
                system("Type 'done' when finished adding items."),
            ],
            _list_items_accept,
            collect="items",
            empty_error="Please add at least one item to the list.",
            more_prompt="Add another item or type 'done' to finish:",
        ),
        _tags_step("List"),
        _category_step("List"),
    ],
    new_data=lambda: {"title": "", "items": [], "tags": [], "category": None},
    persist=lambda data, stores: stores.memories.create(_structured_payload("list", "List", data, ["items"])),
    summary=_list_summary,
    outbox_payload=lambda data: _structured_payload("list", "List", data, ["items"]),
)


# --- Timeline ---


def _timeline_events_accept(data, text):
    event = parse_event(text)
    data["events"].append(event)
    display = format_event(event) if event["time"] else f"• {event['description']}"
    return [mother(f"  {len(data['events'])}. {display}")]


def _timeline_summary(data):
    messages = [_created_message("Timeline", data), system(f"── {data.get('title') or 'Timeline'} ──")]
    for event in data["events"]:
        display = format_event(event) if event.get("time") else f"• {event['description']}"
        messages.append(system(f"  {display}"))
    return messages


TIMELINE = BuilderSpec(
    kind="timeline",
    label="Timeline",
    steps=[
        _title_step("Timeline"),
        Step(
            "events",
            lambda data: [
                mother("Now add your timeline events."),
                system("Format: TIME - DESCRIPTION (e.g., '9:00 AM - Wake up' or just 'Morning - Wake up')"),
                system("Type 'done' when finished adding events."),
            ],
            _timeline_events_accept,
            collect="events",
            empty_error="Please add at least one event to the timeline.",
            more_prompt="Add another event or type 'done' to finish:",
        ),
        _tags_step("Timeline"),
        _category_step("Timeline"),
    ],
    new_data=lambda: {"title": "", "events": [], "tags": [], "category": None},
    persist=lambda data, stores: stores.memories.create(
        _structured_payload("timeline", "Timeline", data, ["events"])
    ),
    summary=_timeline_summary,
    outbox_payload=lambda data: _structured_payload("timeline", "Timeline", data, ["events"]),
)


# --- Image ---


def _image_select_accept(data, text):
    raise StepInvalid("Please select an image file to continue.")


def _image_description_accept(data, text):
    data["description"] = text
    return []


def _image_album_accept(data, text):
    data["album"] = text
    return []


def _image_confirm_prompt(data):
    return [
        mother("Ready to upload the image with the following:"),
        system(f"  Description: {data.get('description') or '(none)'}"),
        system(f"  Tags: {format_tags(data.get('tags'))}"),
        system(f"  Album: {data.get('album') or '(none)'}"),
        system("Type 'save' to upload or 'cancel' to abort."),
    ]


def _image_confirm_accept(data, text):
    if text.lower() in SAVE_WORDS:
        return []
    raise FlowAborted("Image upload cancelled.")


def _persist_image(data: Dict, stores: Stores) -> Dict:
    """Upload the blob, then record it as an image memory unless the upload already did."""
    uploaded = stores.media.upload(
        data["file"],
        data.get("filename") or "image",
        description=data.get("description") or None,
        tags=data.get("tags") or [],
        album=data.get("album"),
    )
    if isinstance(uploaded.get("memory"), dict):
        return uploaded["memory"]
    return stores.memories.create(_image_payload(data, uploaded))


def _image_payload(data: Dict, uploaded: Optional[Dict] = None) -> Dict:
    uploaded = uploaded or {}
    description = data.get("description") or ""
    payload = {
        "type": "image",
        "content": description or "Image",
        "description": description,
        "tags": list(data.get("tags") or []),
        "album": data.get("album"),
        "image_url": uploaded.get("image_url"),
        "image_id": uploaded.get("id"),
    }
    return payload


def _image_outbox_payload(data: Dict) -> Optional[Dict]:
    # Only files picked from disk can be replayed later
    if not data.get("file_path"):
        return None
    payload = _image_payload(data)
    payload["file_path"] = data["file_path"]
    return payload


IMAGE = BuilderSpec(
    kind="image",
    label="Image",
    steps=[
        Step("select", lambda data: [system("Select an image file to save.")], _image_select_accept),
        Step(
            "description",
            lambda data: [system("Enter a description for this image (or type 'skip'):")],
            _image_description_accept,
            skippable=True,
            skip_value=lambda: "",
        ),
        _tags_step("Image", text="Add tags (comma-separated) or type 'skip':"),
        Step(
            "album",
            lambda data: [system("Enter an album name (or type 'skip'):")],
            _image_album_accept,
            skippable=True,
        ),
        Step("confirm", _image_confirm_prompt, _image_confirm_accept),
    ],
    new_data=lambda: {"file": None, "filename": None, "file_path": None, "description": "", "tags": [], "album": None},
    persist=_persist_image,
    summary=lambda data: [mother("Image uploaded successfully.")],
    outbox_payload=_image_outbox_payload,
)

BUILDERS = {spec.kind: spec for spec in (TABLE, LIST, TIMELINE, IMAGE)}


# --- Engine ---


def start_builder(kind: str, seed: Optional[Dict] = None) -> StepResult:
    """Open a builder for kind; seed pre-fills fields (e.g. an image description)."""
    spec = BUILDERS[kind]
    data = spec.new_data()
    if seed:
        data.update({k: v for k, v in seed.items() if v not in (None, "", [])})
    session = BuilderSession(spec=spec, data=data)
    return StepResult(session, spec.steps[0].prompt(data))


def step_builder(session: BuilderSession, line: str, stores: Stores) -> StepResult:
    """Consume one input line for the active builder."""
    spec = session.spec
    text = line.strip()
    lower = text.lower()

    if lower in CANCEL_WORDS:
        return StepResult(None, [mother(f"{spec.label} {'upload' if spec.kind == 'image' else 'creation'} cancelled.")])

    step = spec.steps[session.index]

    if step.collect and lower == DONE:
        if not session.data.get(step.collect):
            return StepResult(session, [system(step.empty_error)])
        return _advance(session, [], stores)

    if step.skippable and lower == SKIP:
        session.data[step.name] = step.skip_value()
        return _advance(session, [], stores)

    try:
        messages = step.accept(session.data, text)
    except StepInvalid as e:
        return StepResult(session, [system(str(e))])
    except FlowAborted as e:
        return StepResult(None, [mother(str(e))])

    if step.collect:
        return StepResult(session, messages + [system(step.more_prompt)])
    return _advance(session, messages, stores)


def select_file(session: BuilderSession, filename: str, content: bytes,
                file_path: Optional[str] = None) -> StepResult:
    """Deliver the out-of-band file choice to an image builder waiting at 'select'."""
    if session.kind != "image" or session.step != "select":
        return StepResult(session, [system("No image is waiting for a file.")])
    session.data.update({"file": content, "filename": filename, "file_path": file_path})
    messages = [mother(f"Image selected: {filename}")]
    # A description given with 'save picture' goes straight to confirmation
    if session.data.get("description"):
        session.index = len(session.spec.steps) - 1
    else:
        session.index += 1
    messages.extend(session.spec.steps[session.index].prompt(session.data))
    return StepResult(session, messages)


def _advance(session: BuilderSession, messages: List[Message], stores: Stores) -> StepResult:
    session.index += 1
    if session.index < len(session.spec.steps):
        return StepResult(session, messages + session.spec.steps[session.index].prompt(session.data))
    return _persist(session, messages, stores)


def _persist(session: BuilderSession, messages: List[Message], stores: Stores) -> StepResult:
    spec = session.spec
    try:
        created = spec.persist(session.data, stores)
    except StoreError as e:
        logger.warning("Saving %s failed: %s", spec.kind, e)
        payload = spec.outbox_payload(session.data)
        if e.unreachable and stores.outbox is not None and payload is not None:
            try:
                stores.outbox.append(spec.kind, payload)
            except OSError as write_error:
                logger.error("Outbox write failed: %s", write_error)
                return _park(session, messages + [system(f"Error: could not save locally: {write_error}")], e)
            messages = messages + [mother(f"{spec.label} saved locally. (Backend unavailable)")]
            return StepResult(None, messages, completed=False, error=str(e))
        return _park(session, messages + [system(f"Error: {e}")], e)

    logger.debug("Created %s %s", spec.kind, created.get("id"))
    return StepResult(None, messages + spec.summary(session.data), completed=True)


def _park(session: BuilderSession, messages: List[Message], error: Exception) -> StepResult:
    """Hold a failed entry at its last step so answering it again retries the save."""
    session.index = len(session.spec.steps) - 1
    messages = messages + [
        system(f"Your {session.spec.label.lower()} is kept. Answer again to retry, or type 'cancel' to discard it.")
    ]
    prompt = session.spec.steps[session.index].prompt(session.data)
    return StepResult(session, messages + prompt, completed=False, error=str(error))
