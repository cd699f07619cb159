"""
Tests for the menu-driven editors.
"""
import sys
from pathlib import Path

import pytest

# Ensure src is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from editors import start_editor, step_editor
from store import StoreError


@pytest.fixture
def table_memory(memory_store):
    return memory_store.add(
        id="t1", type="table", content="Scores", columns=["Name", "Age"], rows=[["Bob", "30"]],
        tags=["fun"], category="work",
    )


@pytest.fixture
def list_memory(memory_store):
    return memory_store.add(id="l1", type="list", content="Groceries", items=["milk", "eggs", "bread"], tags=[])


@pytest.fixture
def timeline_memory(memory_store):
    return memory_store.add(
        id="tl1", type="timeline", content="Day", events=[{"time": "9:00", "description": "Run"}],
    )


def feed(session, lines, stores):
    result = None
    for line in lines:
        result = step_editor(session, line, stores)
    return result


def test_start_shows_menu(table_memory, message_texts):
    result = start_editor(table_memory)
    texts = message_texts(result.messages)
    assert texts[0] == 'Editing Table #t1: "Scores"'
    assert "  9. Columns" in texts
    assert result.session.step == "menu"


def test_working_copy_is_separate(table_memory, stores):
    session = start_editor(table_memory).session
    feed(session, ["2", "Ann, 41"], stores)
    assert table_memory["rows"] == [["Bob", "30"]]
    assert session.data["rows"] == [["Bob", "30"], ["Ann", "41"]]


def test_columns_growing_pads_rows(table_memory, stores):
    session = start_editor(table_memory).session
    feed(session, ["9", "Name, Age, City"], stores)
    assert session.data["rows"] == [["Bob", "30", ""]]
    assert session.step == "menu"


def test_columns_shrinking_truncates_rows(table_memory, stores):
    session = start_editor(table_memory).session
    feed(session, ["columns", "Name"], stores)
    assert session.data["rows"] == [["Bob"]]


def test_add_row_wrong_width_reprompts(table_memory, stores, message_texts):
    session = start_editor(table_memory).session
    result = feed(session, ["2", "Ann"], stores)
    assert session.step == "add_row"
    assert message_texts(result.messages) == ["Row should have 2 values (you entered 1). Try again:"]


def test_edit_row_out_of_range(table_memory, stores, message_texts):
    session = start_editor(table_memory).session
    result = feed(session, ["3", "7"], stores)
    assert session.step == "select_edit_row"
    assert message_texts(result.messages) == ["Please enter a valid row number (1-1):"]
    result = feed(session, ["abc"], stores)
    assert message_texts(result.messages) == ["Please enter a valid row number (1-1):"]


def test_edit_row(table_memory, stores):
    session = start_editor(table_memory).session
    feed(session, ["3", "1", "Bobby, 31"], stores)
    assert session.data["rows"] == [["Bobby", "31"]]
    assert session.step == "menu"


def test_delete_only_row_leaves_valid_empty_state(table_memory, stores, message_texts):
    session = start_editor(table_memory).session
    feed(session, ["4", "1"], stores)
    assert session.data["rows"] == []
    result = feed(session, ["8"], stores)
    assert "  (no rows)" in message_texts(result.messages)
    result = feed(session, ["3"], stores)
    assert message_texts(result.messages) == ["No rows to edit. Add rows first (option 2)."]


def test_reorder_moves_not_swaps(list_memory, stores, message_texts):
    session = start_editor(list_memory).session
    result = feed(session, ["5", "3 to 1"], stores)
    assert session.data["items"] == ["bread", "milk", "eggs"]
    assert message_texts(result.messages)[0] == "Moved item 3 to position 1."


@pytest.mark.parametrize("answer", ["1, 3", "1 3"])
def test_reorder_separators(list_memory, stores, answer):
    session = start_editor(list_memory).session
    feed(session, ["reorder", answer], stores)
    assert session.data["items"] == ["eggs", "bread", "milk"]


def test_reorder_invalid(list_memory, stores, message_texts):
    session = start_editor(list_memory).session
    result = feed(session, ["5", "9 to 1"], stores)
    assert session.step == "reorder"
    assert message_texts(result.messages) == ["Invalid. Enter two numbers like: 3 to 1 or 3, 1"]


def test_reorder_needs_two(timeline_memory, stores, message_texts):
    session = start_editor(timeline_memory).session
    result = feed(session, ["5"], stores)
    assert message_texts(result.messages) == ["Need at least 2 events to reorder."]
    assert session.step == "menu"


def test_timeline_add_event(timeline_memory, stores):
    session = start_editor(timeline_memory).session
    feed(session, ["add", "12:30 PM - Lunch"], stores)
    assert session.data["events"][-1] == {"time": "12:30 PM", "description": "Lunch"}


def test_tags_and_category_clear(table_memory, stores):
    session = start_editor(table_memory).session
    feed(session, ["6", "clear", "7", "clear"], stores)
    assert session.data["tags"] == []
    assert session.data["category"] is None


def test_invalid_menu_option(list_memory, stores, message_texts):
    session = start_editor(list_memory).session
    result = feed(session, ["42"], stores)
    assert message_texts(result.messages) == ["Invalid option. Please enter 1-8, 'save', or 'cancel'."]


def test_save_only_at_menu(list_memory, stores):
    session = start_editor(list_memory).session
    feed(session, ["2", "save"], stores)
    assert session.data["items"][-1] == "save"
    assert stores.memories.calls == []


def test_save_persists(table_memory, stores, memory_store, message_texts):
    session = start_editor(table_memory).session
    result = feed(session, ["1", "New scores", "save"], stores)
    assert result.session is None
    assert result.completed
    assert message_texts(result.messages) == ["Table #t1 updated successfully!"]
    assert memory_store.memories["t1"]["content"] == "New scores"


def test_save_failure_stays_at_menu(list_memory, stores, memory_store, message_texts):
    session = start_editor(list_memory).session
    memory_store.fail = StoreError("Server error: 503", 503)
    result = feed(session, ["save"], stores)
    assert result.session is session
    assert session.step == "menu"
    assert message_texts(result.messages) == ["Error saving: Server error: 503"]


def test_cancel_discards(list_memory, stores, message_texts):
    session = start_editor(list_memory).session
    result = feed(session, ["2", "cheese", "cancel"], stores)
    assert result.session is None
    assert message_texts(result.messages) == ["List editing cancelled. No changes saved."]
    assert stores.memories.calls == []


def test_image_editor(memory_store, stores, media_store, message_texts):
    memory = memory_store.add(id="i1", type="image", description="Beach", tags=["summer"], image_id="img-9")
    session = start_editor(memory).session
    result = feed(session, ["3"], stores)
    assert "  Description: Beach" in message_texts(result.messages)
    feed(session, ["1", "Sunset", "2", "evening, sea", "save"], stores)
    assert memory_store.memories["i1"]["description"] == "Sunset"
    assert media_store.calls == [("update", "img-9", {"description": "Sunset", "tags": ["evening", "sea"]})]
