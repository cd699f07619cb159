"""
Command parser for the diary terminal.

Turns one line of loosely structured text into a typed command. Parsing is pure
and total: anything that cannot be classified comes back as Unknown.
"""

import re
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional

DELETE_PREFIXES = ("delete all", "delete memory", "delete memories", "delete picture", "delete image")
RETRIEVE_PREFIXES = ("mother,", "show", "bring up", "list", "search")

MOODS = ("happy", "sad", "angry", "excited", "calm", "anxious", "work", "personal", "ideas")

QUOTED_RE = re.compile(r"[\"']([^\"']+)[\"']")
ID_RE = re.compile(r"#([A-Za-z0-9_-]+)")
HASHTAG_RE = re.compile(r"#(\w+)")
CATEGORY_RE = re.compile(r"(?:in\s+)?category\s*:\s*[\"']?(\w+)[\"']?", re.IGNORECASE)
MEMORY_TAGS_RE = re.compile(
    r"(?:with\s+)?tags:\s*(.*?)(?=\s*(?:in\s+)?category:|[\"']|$)", re.IGNORECASE
)
FILTER_TAGS_RE = re.compile(
    r"(?:tagged|tags|tag)\s*:\s*[\"']?([^\"'.]*?)[\"']?(?=\s*(?:in\s+)?category\s*:|[\"'.]|$)",
    re.IGNORECASE,
)
MOOD_RE = re.compile(r"(" + "|".join(MOODS) + r")\s+(?:moments|memories)", re.IGNORECASE)
DATE_RE = re.compile(r"from:\s*([^.]+)", re.IGNORECASE)
SEARCH_RE = re.compile(r"containing:\s*([^.]+)|search:\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
DESCRIPTION_RE = re.compile(r"description:\s*[\"']([^\"']+)[\"']", re.IGNORECASE)


# --- Command variants ---


@dataclass
class Command:
    type: ClassVar[str] = "unknown"


@dataclass
class CreateMemory(Command):
    type: ClassVar[str] = "create_memory"
    content: str = ""
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class CreateTable(Command):
    type: ClassVar[str] = "create_table"
    columns: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)


@dataclass
class CreateList(Command):
    type: ClassVar[str] = "create_list"
    items: List[str] = field(default_factory=list)


@dataclass
class CreateTimeline(Command):
    type: ClassVar[str] = "create_timeline"
    events: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class SavePicture(Command):
    type: ClassVar[str] = "save_picture"
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class EditMemory(Command):
    type: ClassVar[str] = "edit_memory"
    id: Optional[str] = None
    updates: Dict[str, str] = field(default_factory=dict)


@dataclass
class Delete(Command):
    type: ClassVar[str] = "delete"
    target: str = "memory"
    id: Optional[str] = None
    delete_all: bool = False
    filters: Dict[str, object] = field(default_factory=dict)


@dataclass
class Retrieve(Command):
    type: ClassVar[str] = "retrieve"
    filters: Dict[str, object] = field(default_factory=dict)


@dataclass
class Help(Command):
    type: ClassVar[str] = "help"


@dataclass
class Clear(Command):
    type: ClassVar[str] = "clear"


@dataclass
class Unknown(Command):
    type: ClassVar[str] = "unknown"
    text: str = ""


# --- Field extraction ---


def split_tag_list(raw: str) -> List[str]:
    """Split a comma-separated tag clause, dropping empty entries and stray quotes."""
    return [t.strip().strip("\"'") for t in raw.split(",") if t.strip().strip("\"'")]


def extract_quoted(text: str) -> Optional[str]:
    """Return the first quoted substring ("..." or '...'), if any."""
    match = QUOTED_RE.search(text)
    return match.group(1) if match else None


def extract_memory_content(text: str) -> str:
    """Content for create memory: first quoted text, else everything after the colon."""
    quoted = extract_quoted(text)
    if quoted is not None:
        return quoted
    match = re.search(r"create memory\s*:\s*(.+)", text, re.IGNORECASE)
    if not match:
        return ""
    content = match.group(1).strip()
    content = re.sub(r"\s*(?:with\s+)?tags:\s*[^\"]+", "", content, flags=re.IGNORECASE).strip()
    content = re.sub(r"\s*(?:in\s+)?category:\s*\w+", "", content, flags=re.IGNORECASE).strip()
    return content


def extract_category(text: str) -> Optional[str]:
    match = CATEGORY_RE.search(text)
    return match.group(1) if match else None


def extract_hashtags(text: str) -> List[str]:
    return HASHTAG_RE.findall(text)


def extract_memory_tags(text: str) -> List[str]:
    """Tags for create memory: a tags: clause, falling back to #hashtags."""
    match = MEMORY_TAGS_RE.search(text)
    tags = split_tag_list(match.group(1)) if match else []
    if not tags:
        tags = extract_hashtags(text)
    return tags


def extract_id(text: str) -> Optional[str]:
    """Store-assigned id written as #<id>; ids may be non-numeric document keys."""
    match = ID_RE.search(text)
    return match.group(1) if match else None


def extract_filter_tags(text: str, allow_hashtags: bool = True) -> List[str]:
    """Tags for delete/retrieve: tagged:/tags:/tag: clause, else #hashtags."""
    match = FILTER_TAGS_RE.search(text)
    if match:
        return split_tag_list(match.group(1))
    if allow_hashtags:
        return extract_hashtags(text)
    return []


def extract_edit_updates(text: str) -> Dict[str, str]:
    updates = {}
    if "add:" in text:
        match = re.search(r"add:\s*[\"']([^\"']+)[\"']", text)
        if match:
            updates["add"] = match.group(1)
        return updates
    quoted = extract_quoted(text)
    if quoted is not None:
        updates["content"] = quoted
        return updates
    match = re.search(r":\s*(.+)$", text)
    if match:
        updates["content"] = match.group(1).strip()
    return updates


def extract_date(text: str) -> Optional[str]:
    match = DATE_RE.search(text)
    return match.group(1).strip() if match else None


def extract_search(text: str) -> Optional[str]:
    match = SEARCH_RE.search(text)
    if not match:
        return None
    return (match.group(1) or match.group(2)).strip()


# --- Variant parsers ---


def parse_create_memory(text: str) -> CreateMemory:
    return CreateMemory(
        content=extract_memory_content(text),
        category=extract_category(text),
        tags=extract_memory_tags(text),
    )


def _bullet_lines(text: str) -> List[str]:
    lines = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith("-") or stripped.startswith("•"):
            lines.append(re.sub(r"^[-•]\s*", "", stripped).strip())
    return lines


def parse_create_table(text: str) -> CreateTable:
    """Inline table syntax: a 'columns: a, b' line followed by '- x, y' row lines."""
    command = CreateTable()
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.lower().startswith("columns:"):
            command.columns = [c.strip() for c in stripped[len("columns:"):].split(",")]
    command.rows = [[v.strip() for v in row.split(",")] for row in _bullet_lines(text)]
    return command


def parse_create_list(text: str) -> CreateList:
    return CreateList(items=_bullet_lines(text))


def parse_create_timeline(text: str) -> CreateTimeline:
    events = []
    for line in _bullet_lines(text):
        match = re.match(r"^(\d{1,2}:\d{2})\s+(.+)", line)
        if match:
            events.append({"time": match.group(1), "description": match.group(2)})
        else:
            events.append({"time": "", "description": line})
    return CreateTimeline(events=events)


def parse_save_picture(text: str) -> SavePicture:
    match = DESCRIPTION_RE.search(text)
    tags = []
    tags_match = re.search(r"tags:\s*([^\"']+)", text, re.IGNORECASE)
    if tags_match:
        tags = split_tag_list(tags_match.group(1))
    return SavePicture(description=match.group(1) if match else None, tags=tags)


def parse_edit_memory(text: str) -> EditMemory:
    return EditMemory(id=extract_id(text), updates=extract_edit_updates(text))


def parse_delete(text: str) -> Delete:
    lower = text.lower()
    memory_id = extract_id(text)
    target = re.search(r"(memory|picture|image)", lower)

    command = Delete(
        target=target.group(1) if target else "memory",
        id=memory_id,
        delete_all="delete all" in lower,
    )
    # A #token is the id when one is present, so hashtags only count as tags without it
    tags = extract_filter_tags(text, allow_hashtags=memory_id is None)
    if tags:
        command.filters["tags"] = tags
    category = extract_category(text)
    if category:
        command.filters["category"] = category
    return command


def parse_retrieve(text: str) -> Retrieve:
    lower = text.lower()
    filters = {}

    tags = extract_filter_tags(text)
    if tags:
        filters["tags"] = tags

    category = extract_category(text)
    if category:
        filters["category"] = category
    else:
        mood = MOOD_RE.search(text)
        if mood:
            filters["category"] = mood.group(1).lower()

    date = extract_date(text)
    if date:
        filters["date"] = date

    search = extract_search(text)
    if search:
        filters["search"] = search

    if "first memory" in lower:
        filters["first"] = True
    if "all tables" in lower:
        filters["type"] = "table"
    if "pictures" in lower or "images" in lower:
        filters["type"] = "image"

    return Retrieve(filters=filters)


def parse(text: str) -> Command:
    """Classify one input line. Never raises."""
    raw = text or ""
    cmd = raw.strip().lower()
    if not cmd:
        return Unknown(text=raw)

    if cmd.startswith("create memory"):
        return parse_create_memory(raw)
    if cmd.startswith("create table"):
        return parse_create_table(raw)
    if cmd.startswith("create list"):
        return parse_create_list(raw)
    if cmd.startswith("create timeline"):
        return parse_create_timeline(raw)
    if cmd.startswith("save picture") or cmd.startswith("save image"):
        return parse_save_picture(raw)
    if cmd.startswith("edit memory") or cmd.startswith("update memory"):
        return parse_edit_memory(raw)
    if cmd.startswith(DELETE_PREFIXES):
        return parse_delete(raw)
    if cmd.startswith(RETRIEVE_PREFIXES):
        return parse_retrieve(raw)
    if cmd in ("help", "?"):
        return Help()
    if cmd in ("clear", "cls"):
        return Clear()

    # Mistyped commands (first word is a keyword) and free text both end here
    return Unknown(text=raw)
