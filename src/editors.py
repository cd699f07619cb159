"""
In-place editing of structured memories.

Every editor is menu driven: the user picks a numbered option, answers one
sub-step, and lands back on the menu. Changes live in a working copy until
'save' is typed at the menu; 'cancel' discards them.

Tables, lists and timelines share one engine parametrized by an ElementSpec
(what a row/item/event is, how to parse and show it). Images get a smaller
menu with description and tags only.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from entries import (
    NONE_LABEL,
    format_event,
    format_row,
    format_tags,
    parse_event,
    reconcile_rows,
    split_csv,
    split_row,
)
from flows import CANCEL_WORDS, CLEAR, DIVIDER, SAVE, Message, StepInvalid, StepResult, mother, system
from store import StoreError, Stores

logger = logging.getLogger(__name__)

REORDER_SPLIT_RE = re.compile(r"\s+to\s+|\s*,\s*|\s+")


@dataclass
class ElementSpec:
    """One kind of repeated element: a table row, a list item, a timeline event."""
    key: str
    singular: str
    plural: str
    parse: Callable[[Dict, str], object]
    render: Callable[[object], str]
    add_prompt: Callable[[Dict], List[Message]]
    edit_prompt: Callable[[Dict, int], List[Message]]
    added: Callable[[int, object], str]
    updated: Callable[[int, object], str]
    # Returns a message when adding is not possible yet
    add_guard: Callable[[Dict], Optional[str]] = lambda data: None


@dataclass
class EditorSpec:
    kind: str
    label: str
    load: Callable[[Dict], Dict]
    payload: Callable[[Dict], Dict]
    menu: List[Tuple[str, Tuple[str, ...], str, str]]
    element: Optional[ElementSpec] = None


@dataclass
class EditorSession:
    spec: EditorSpec
    memory: Dict
    data: Dict
    step: str = "menu"
    index: Optional[int] = None

    @property
    def kind(self) -> str:
        return self.spec.kind

    @property
    def memory_id(self):
        return self.memory.get("id")


# --- Element types ---


def _parse_row(data, text):
    values = split_row(text)
    width = len(data["columns"])
    if len(values) != width:
        raise StepInvalid(f"Row should have {width} values (you entered {len(values)}). Try again:")
    return values


def _parse_item(data, text):
    if not text:
        raise StepInvalid("Please enter some text for this item:")
    return text


def _parse_timeline_event(data, text):
    if not text:
        raise StepInvalid("Please enter the event (TIME - DESCRIPTION or just DESCRIPTION):")
    return parse_event(text)


ROW = ElementSpec(
    key="rows",
    singular="row",
    plural="rows",
    parse=_parse_row,
    render=format_row,
    add_prompt=lambda data: [
        system(f"Enter row values ({len(data['columns'])} values, comma-separated):"),
        system(f"Columns: {format_row(data['columns'])}"),
    ],
    edit_prompt=lambda data, i: [
        mother(f"Current row {i + 1}: {format_row(data['rows'][i])}"),
        system(f"Enter new values ({len(data['columns'])} values, comma-separated):"),
    ],
    added=lambda n, row: f"Row {n} added: {format_row(row)}",
    updated=lambda n, row: f"Row {n} updated: {format_row(row)}",
    add_guard=lambda data: None if data["columns"] else "Please add columns first (option 9).",
)

ITEM = ElementSpec(
    key="items",
    singular="item",
    plural="items",
    parse=_parse_item,
    render=str,
    add_prompt=lambda data: [system("Enter the new item to add:")],
    edit_prompt=lambda data, i: [
        mother(f'Current: "{data["items"][i]}"'),
        system("Enter new text for this item:"),
    ],
    added=lambda n, item: f'Item added: "{item}"',
    updated=lambda n, item: f'Item {n} updated to: "{item}"',
)

EVENT = ElementSpec(
    key="events",
    singular="event",
    plural="events",
    parse=_parse_timeline_event,
    render=format_event,
    add_prompt=lambda data: [system("Enter the new event (TIME - DESCRIPTION or just DESCRIPTION):")],
    edit_prompt=lambda data, i: [
        mother(f'Current: "{format_event(data["events"][i], "-")}"'),
        system("Enter new event (TIME - DESCRIPTION or just DESCRIPTION):"),
    ],
    added=lambda n, event: f'Event added: "{format_event(event)}"',
    updated=lambda n, event: f"Event {n} updated.",
)


def _structured_menu(element: ElementSpec, label: str, extra=()) -> List[Tuple[str, Tuple[str, ...], str, str]]:
    s, p = element.singular, element.plural
    menu = [
        ("1", ("title",), "title", "Title"),
        ("2", ("add", f"add {s}"), "add", f"Add {s}"),
        ("3", ("edit", f"edit {s}"), "select_edit", f"Edit {s}"),
        ("4", ("delete", f"delete {s}"), "select_delete", f"Delete {s}"),
        ("5", ("reorder", f"reorder {p}"), "reorder", f"Reorder {p}"),
        ("6", ("tags",), "tags", "Tags"),
        ("7", ("category",), "category", "Category"),
        ("8", ("view",), "view", f"View current {label.lower()}"),
    ]
    return menu + list(extra)


def _load_common(memory: Dict) -> Dict:
    return {
        "title": memory.get("content") or "",
        "tags": list(memory.get("tags") or []),
        "category": memory.get("category") or None,
    }


def _payload_common(data: Dict) -> Dict:
    return {"content": data["title"], "tags": data["tags"], "category": data["category"]}


TABLE = EditorSpec(
    kind="table",
    label="Table",
    load=lambda memory: {
        **_load_common(memory),
        "columns": list(memory.get("columns") or []),
        "rows": [list(row) for row in memory.get("rows") or []],
    },
    payload=lambda data: {**_payload_common(data), "columns": data["columns"], "rows": data["rows"]},
    menu=_structured_menu(ROW, "Table", extra=[("9", ("columns",), "columns", "Columns")]),
    element=ROW,
)

LIST = EditorSpec(
    kind="list",
    label="List",
    load=lambda memory: {**_load_common(memory), "items": list(memory.get("items") or [])},
    payload=lambda data: {**_payload_common(data), "items": data["items"]},
    menu=_structured_menu(ITEM, "List"),
    element=ITEM,
)

TIMELINE = EditorSpec(
    kind="timeline",
    label="Timeline",
    load=lambda memory: {
        **_load_common(memory),
        "events": [
            {"time": e.get("time") or "", "description": e.get("description") or ""}
            for e in memory.get("events") or []
        ],
    },
    payload=lambda data: {**_payload_common(data), "events": data["events"]},
    menu=_structured_menu(EVENT, "Timeline"),
    element=EVENT,
)

IMAGE = EditorSpec(
    kind="image",
    label="Image",
    load=lambda memory: {
        "description": memory.get("description") or "",
        "tags": list(memory.get("tags") or []),
    },
    payload=lambda data: {"description": data["description"], "tags": data["tags"]},
    menu=[
        ("1", ("description",), "description", "Description"),
        ("2", ("tags",), "tags", "Tags"),
        ("3", ("view",), "view", "View current image"),
    ],
)

EDITORS = {spec.kind: spec for spec in (TABLE, LIST, TIMELINE, IMAGE)}


# --- Engine ---


def start_editor(memory: Dict) -> StepResult:
    """Open the editor for a structured memory with a working copy of its payload."""
    spec = EDITORS[memory.get("type")]
    session = EditorSession(spec=spec, memory=memory, data=spec.load(memory))
    name = memory.get("description") if spec.kind == "image" else memory.get("content")
    messages = [mother(f'Editing {spec.label} #{memory.get("id")}: "{name or "Untitled"}"')]
    return StepResult(session, messages + menu_messages(spec))


def menu_messages(spec: EditorSpec) -> List[Message]:
    messages = [system("What would you like to edit?")]
    messages.extend(system(f"  {number}. {label}") for number, _, _, label in spec.menu)
    messages.append(system("  save - Save changes"))
    messages.append(system("  cancel - Discard changes"))
    return messages


def step_editor(session: EditorSession, line: str, stores: Stores) -> StepResult:
    """Consume one input line for the active editor."""
    spec = session.spec
    text = line.strip()
    lower = text.lower()

    if lower in CANCEL_WORDS:
        return StepResult(None, [mother(f"{spec.label} editing cancelled. No changes saved.")])

    if session.step == "menu":
        if lower == SAVE:
            return _save(session, stores)
        return _choose(session, lower)

    handler = _INPUT_HANDLERS[_action(session)]
    try:
        messages = handler(session, text)
    except StepInvalid as e:
        return StepResult(session, [system(str(e))])
    return StepResult(session, messages)


def _action(session: EditorSession) -> str:
    element = session.spec.element
    if element and session.step.endswith("_" + element.singular):
        return session.step[: -len(element.singular) - 1]
    return session.step


def _enter(session: EditorSession, action: str) -> None:
    element = session.spec.element
    if element and action in ("add", "select_edit", "edit", "select_delete"):
        session.step = f"{action}_{element.singular}"
    else:
        session.step = action


def _back_to_menu(session: EditorSession, messages: List[Message]) -> List[Message]:
    session.step = "menu"
    session.index = None
    return messages + menu_messages(session.spec)


def _choose(session: EditorSession, choice: str) -> StepResult:
    spec = session.spec
    for number, aliases, action, _ in spec.menu:
        if choice == number or choice in aliases:
            return StepResult(session, _MENU_ACTIONS[action](session))
    last = spec.menu[-1][0]
    return StepResult(session, [system(f"Invalid option. Please enter 1-{last}, 'save', or 'cancel'.")])


def _listing(session: EditorSession, verb: str) -> List[Message]:
    element = session.spec.element
    messages = [mother(f"Current {element.plural}:")]
    for i, value in enumerate(session.data[element.key]):
        messages.append(system(f"  {i + 1}. {element.render(value)}"))
    messages.append(system(verb))
    return messages


def _pick(session: EditorSession, text: str) -> int:
    """1-based element number from text; re-prompts with the valid range otherwise."""
    element = session.spec.element
    count = len(session.data[element.key])
    try:
        number = int(text)
    except ValueError:
        number = 0
    if number < 1 or number > count:
        raise StepInvalid(f"Please enter a valid {element.singular} number (1-{count}):")
    return number - 1


# --- Menu choices ---


def _open_title(session):
    _enter(session, "title")
    return [mother(f'Current title: "{session.data["title"] or NONE_LABEL}"'), system("Enter new title:")]


def _open_description(session):
    _enter(session, "description")
    return [
        mother(f'Current description: "{session.data["description"] or NONE_LABEL}"'),
        system("Enter new description:"),
    ]


def _open_columns(session):
    _enter(session, "columns")
    return [
        mother(f"Current columns: {format_row(session.data['columns']) or NONE_LABEL}"),
        system("Enter new column names (comma-separated):"),
    ]


def _open_add(session):
    element = session.spec.element
    blocked = element.add_guard(session.data)
    if blocked:
        return [system(blocked)]
    _enter(session, "add")
    return element.add_prompt(session.data)


def _open_select_edit(session):
    element = session.spec.element
    if not session.data[element.key]:
        return [system(f"No {element.plural} to edit. Add {element.plural} first (option 2).")]
    _enter(session, "select_edit")
    return _listing(session, f"Enter {element.singular} number to edit:")


def _open_select_delete(session):
    element = session.spec.element
    if not session.data[element.key]:
        return [system(f"No {element.plural} to delete.")]
    _enter(session, "select_delete")
    return _listing(session, f"Enter {element.singular} number to delete:")


def _open_reorder(session):
    element = session.spec.element
    if len(session.data[element.key]) < 2:
        return [system(f"Need at least 2 {element.plural} to reorder.")]
    _enter(session, "reorder")
    return _listing(session, "Enter: [from] to [to] (e.g., '3 to 1' or '3, 1'):")


def _open_tags(session):
    _enter(session, "tags")
    return [
        mother(f"Current tags: {format_tags(session.data['tags'])}"),
        system("Enter new tags (comma-separated) or 'clear' to remove all:"),
    ]


def _open_category(session):
    _enter(session, "category")
    return [
        mother(f"Current category: {session.data['category'] or NONE_LABEL}"),
        system("Enter new category or 'clear' to remove:"),
    ]


def preview(session: EditorSession) -> List[Message]:
    """Current working copy as shown by the 'view' option."""
    spec, data = session.spec, session.data
    if spec.element is None:
        return [
            mother(f"{spec.label} #{session.memory_id}:"),
            system(f"  Description: {data['description'] or NONE_LABEL}"),
            system(f"  Tags: {format_tags(data['tags'])}"),
        ]
    element = spec.element
    messages = [mother(f"═══ {spec.label} Preview ═══"), mother(f"Title: {data['title'] or NONE_LABEL}")]
    if spec.kind == "table":
        messages.append(mother(f"Columns: {format_row(data['columns']) or NONE_LABEL}"))
    values = data[element.key]
    if values:
        messages.append(mother(f"{element.plural.capitalize()}:"))
        messages.extend(system(f"  {i + 1}. {element.render(v)}") for i, v in enumerate(values))
    else:
        messages.append(system(f"  (no {element.plural})"))
    messages.append(mother(f"Tags: {format_tags(data['tags'])}"))
    messages.append(mother(f"Category: {data['category'] or NONE_LABEL}"))
    return messages


def _open_view(session):
    return preview(session) + [system(DIVIDER)] + menu_messages(session.spec)


_MENU_ACTIONS = {
    "title": _open_title,
    "description": _open_description,
    "columns": _open_columns,
    "add": _open_add,
    "select_edit": _open_select_edit,
    "select_delete": _open_select_delete,
    "reorder": _open_reorder,
    "tags": _open_tags,
    "category": _open_category,
    "view": _open_view,
}


# --- Sub-step input ---


def _input_title(session, text):
    session.data["title"] = text
    return _back_to_menu(session, [mother(f'Title updated to: "{text}"')])


def _input_description(session, text):
    session.data["description"] = text
    return _back_to_menu(session, [mother(f'Description updated to: "{text}"')])


def _input_columns(session, text):
    columns = split_csv(text)
    if not columns:
        raise StepInvalid("Please enter at least one column name.")
    session.data["columns"] = columns
    session.data["rows"] = reconcile_rows(session.data["rows"], len(columns))
    return _back_to_menu(session, [mother(f"Columns updated: {format_row(columns)}")])


def _input_add(session, text):
    element = session.spec.element
    value = element.parse(session.data, text)
    values = session.data[element.key]
    values.append(value)
    return _back_to_menu(session, [mother(element.added(len(values), value))])


def _input_select_edit(session, text):
    index = _pick(session, text)
    session.index = index
    _enter(session, "edit")
    return session.spec.element.edit_prompt(session.data, index)


def _input_edit(session, text):
    element = session.spec.element
    value = element.parse(session.data, text)
    session.data[element.key][session.index] = value
    return _back_to_menu(session, [mother(element.updated(session.index + 1, value))])


def _input_select_delete(session, text):
    element = session.spec.element
    index = _pick(session, text)
    values = session.data[element.key]
    del values[index]
    message = f"{element.singular.capitalize()} {index + 1} deleted. {len(values)} {element.plural} remaining."
    return _back_to_menu(session, [mother(message)])


def _input_reorder(session, text):
    element = session.spec.element
    values = session.data[element.key]
    parts = REORDER_SPLIT_RE.split(text.strip())
    try:
        source, target = int(parts[0]), int(parts[1])
    except (ValueError, IndexError):
        source = target = 0
    if not (1 <= source <= len(values) and 1 <= target <= len(values)):
        raise StepInvalid("Invalid. Enter two numbers like: 3 to 1 or 3, 1")
    moved = values.pop(source - 1)
    values.insert(target - 1, moved)
    return _back_to_menu(session, [mother(f"Moved {element.singular} {source} to position {target}.")])


def _input_tags(session, text):
    tags = [] if text.lower() == CLEAR else split_csv(text)
    session.data["tags"] = tags
    message = f"Tags updated: {', '.join(tags)}" if tags else "Tags cleared."
    return _back_to_menu(session, [mother(message)])


def _input_category(session, text):
    category = None if text.lower() == CLEAR or not text else text
    session.data["category"] = category
    message = f"Category updated: {category}" if category else "Category cleared."
    return _back_to_menu(session, [mother(message)])


_INPUT_HANDLERS = {
    "title": _input_title,
    "description": _input_description,
    "columns": _input_columns,
    "add": _input_add,
    "select_edit": _input_select_edit,
    "edit": _input_edit,
    "select_delete": _input_select_delete,
    "reorder": _input_reorder,
    "tags": _input_tags,
    "category": _input_category,
}


# --- Save ---


def _save(session: EditorSession, stores: Stores) -> StepResult:
    spec = session.spec
    fields = spec.payload(session.data)
    memory_id = session.memory_id
    try:
        stores.memories.update(memory_id, fields)
        image_id = session.memory.get("image_id")
        if spec.kind == "image" and image_id:
            stores.media.update(image_id, fields)
    except StoreError as e:
        logger.warning("Saving %s #%s failed: %s", spec.kind, memory_id, e)
        return StepResult(session, [system(f"Error saving: {e}")], error=str(e))

    logger.debug("Updated %s #%s", spec.kind, memory_id)
    return StepResult(None, [mother(f"{spec.label} #{memory_id} updated successfully!")], completed=True)


def updated_memory(session: EditorSession) -> Dict:
    """The edited memory as it now stands in the store."""
    return {**session.memory, **session.spec.payload(session.data)}
