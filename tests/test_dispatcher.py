"""
Tests for the top-level dispatcher: routing priority, command handlers, confirmation.
"""
import sys
from pathlib import Path

import pytest

# Ensure src is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from dispatcher import Building, Confirming, Dispatcher, Editing
from flows import CLEAR
from store import Outbox, StoreError


@pytest.fixture
def dispatcher(stores):
    return Dispatcher(stores, username="Ripley")


def replies(messages):
    """Texts after the echoed user line."""
    return [m.text for m in messages[1:]]


def test_blank_lines_ignored(dispatcher):
    assert dispatcher.handle("") == []
    assert dispatcher.handle("   ") == []
    assert dispatcher.flow is None


def test_user_line_is_echoed_first(dispatcher):
    messages = dispatcher.handle("help")
    assert messages[0].speaker == "Ripley"
    assert messages[0].text == "help"


def test_unknown_command(dispatcher):
    assert replies(dispatcher.handle("hello there")) == [
        "Unknown command: \"hello there\". Type 'help' to see available commands."
    ]


def test_create_memory(dispatcher, memory_store):
    out = replies(dispatcher.handle('create memory: "A" tags: x, y category: happy'))
    assert out == ["Memory created successfully. Tags: x, y. Category: happy."]
    created = list(memory_store.memories.values())[0]
    assert created["content"] == "A"
    assert created["type"] == "text"


def test_create_memory_requires_content(dispatcher, memory_store):
    out = replies(dispatcher.handle("create memory"))
    assert out == ['Please provide memory content: create memory: "Your text"']
    assert memory_store.calls == []


def test_create_memory_backend_down_goes_to_outbox(dispatcher, memory_store, stores):
    memory_store.fail = StoreError("Cannot connect to server")
    out = replies(dispatcher.handle('create memory: "A"'))
    assert out == ["Memory saved locally. (Backend unavailable)"]
    assert stores.outbox.pending()[0]["payload"]["content"] == "A"


def test_create_memory_outbox_write_failure_is_reported(memory_store, stores, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    stores.outbox = Outbox(blocker / "outbox.jsonl")
    dispatcher = Dispatcher(stores, username="Ripley")
    memory_store.fail = StoreError("Cannot connect to server")
    out = replies(dispatcher.handle('create memory: "A"'))
    assert len(out) == 1
    assert out[0].startswith("Error: could not save locally:")
    assert dispatcher.flow is None


def test_delete_without_target_is_rejected(dispatcher):
    out = replies(dispatcher.handle("delete memories"))
    assert out[0].startswith("Please specify: delete memory #12")
    assert dispatcher.flow is None


def test_delete_single_confirmed_once(dispatcher, memory_store):
    memory_store.add(id="5", type="text", content="x")
    out = replies(dispatcher.handle("delete memory #5"))
    assert out == ["Are you sure you want to delete memory #5? (yes/no)"]
    assert isinstance(dispatcher.flow, Confirming)

    assert replies(dispatcher.handle("maybe")) == ["Please type 'yes' or 'no' to confirm."]
    assert isinstance(dispatcher.flow, Confirming)

    assert replies(dispatcher.handle("y")) == ["memory #5 deleted successfully."]
    assert dispatcher.flow is None
    deletes = [c for c in memory_store.calls if c[0] == "delete"]
    assert deletes == [("delete", "5")]


def test_delete_declined(dispatcher, memory_store):
    memory_store.add(id="5", type="text", content="x")
    dispatcher.handle("delete memory #5")
    assert replies(dispatcher.handle("no")) == ["Action cancelled."]
    assert "5" in memory_store.memories


def test_gate_consumes_commands(dispatcher, memory_store):
    dispatcher.handle("delete all")
    out = replies(dispatcher.handle("delete memory #1"))
    assert out == ["Please type 'yes' or 'no' to confirm."]
    assert not any(c[0] in ("delete", "bulk_delete") for c in memory_store.calls)


def test_delete_all(dispatcher, memory_store):
    memory_store.add(type="text", content="a")
    memory_store.add(type="text", content="b")
    dispatcher.handle("delete all")
    assert replies(dispatcher.handle("yes")) == ["All 2 memories deleted successfully."]


def test_delete_by_tags_any_match(dispatcher, memory_store):
    memory_store.add(type="text", content="a", tags=["work"])
    memory_store.add(type="text", content="b", tags=["ideas"])
    memory_store.add(type="text", content="c", tags=["home"])
    prompt = replies(dispatcher.handle("delete memories tags: work, ideas"))
    assert prompt == ["Are you sure you want to delete all memories with tags: work, ideas? (yes/no)"]
    assert replies(dispatcher.handle("y")) == ["2 memories deleted successfully."]
    assert [m["content"] for m in memory_store.memories.values()] == ["c"]


def test_delete_visible_image_memory_removes_media(dispatcher, memory_store, media_store):
    memory_store.add(id="9", type="image", description="Beach", image_id="img-9")
    dispatcher.handle("show pictures")
    dispatcher.handle("delete memory #9")
    dispatcher.handle("yes")
    assert ("delete", "img-9") in media_store.calls
    assert "9" not in memory_store.memories


def test_retrieve_lists_and_keeps_visible(dispatcher, memory_store):
    memory_store.add(id="1", type="text", content="Rainy walk", category="calm")
    memory_store.add(id="2", type="list", content="Groceries", category="home")
    out = replies(dispatcher.handle("show category: calm"))
    assert out == ["Retrieved 1 memories (category: calm).", "  #1 [text] Rainy walk"]
    assert [m["id"] for m in dispatcher.visible] == ["1"]


def test_retrieve_first_sets_limit(dispatcher, memory_store):
    dispatcher.handle("show my first memory")
    assert ("list", {"limit": 1}) in memory_store.calls


def test_retrieve_search(dispatcher, memory_store):
    memory_store.add(id="1", type="text", content="Beach day")
    out = replies(dispatcher.handle('search: "beach"'))
    assert out == ["Found 1 memories:", "  #1 [text] Beach day"]


def test_retrieve_nothing(dispatcher):
    assert replies(dispatcher.handle("show all")) == ["No memories found with those filters."]


def test_retrieve_store_error(dispatcher, memory_store):
    memory_store.fail = StoreError("Cannot connect to server")
    assert replies(dispatcher.handle("show all")) == ["Error: Cannot connect to server"]


def test_clear(dispatcher, memory_store):
    memory_store.add(type="text", content="a")
    dispatcher.handle("show all")
    messages = dispatcher.handle("clear")
    assert messages[1].kind == CLEAR
    assert messages[2].text == "Terminal cleared."
    assert dispatcher.visible == []


def test_help(dispatcher):
    out = replies(dispatcher.handle("?"))
    assert "═══ CREATE MEMORIES ═══" in out


# --- Edit ---


def test_edit_requires_id(dispatcher):
    assert replies(dispatcher.handle("edit memory")) == ["Please specify memory ID: edit memory #12"]


def test_edit_missing_memory(dispatcher):
    assert replies(dispatcher.handle('edit memory #77: "x"')) == ["Memory #77 not found."]


def test_edit_text_memory_updates_directly(dispatcher, memory_store):
    memory_store.add(id="3", type="text", content="old")
    out = replies(dispatcher.handle('edit memory #3: "new"'))
    assert out == ["Memory updated successfully."]
    assert memory_store.memories["3"]["content"] == "new"
    assert dispatcher.flow is None


def test_edit_text_memory_append(dispatcher, memory_store):
    memory_store.add(id="3", type="text", content="old")
    dispatcher.handle('edit memory #3 add: "more"')
    assert ("update", "3", {"add": "more"}) in memory_store.calls


def test_edit_structured_memory_confirms_then_opens_editor(dispatcher, memory_store):
    memory_store.add(id="t1", type="table", content="Scores", columns=["A"], rows=[["1"]])
    out = replies(dispatcher.handle("edit memory #t1"))
    assert out == ["Do you want to edit table #t1? (yes/no)"]
    out = replies(dispatcher.handle("yes"))
    assert out[0] == 'Editing Table #t1: "Scores"'
    assert isinstance(dispatcher.flow, Editing)

    dispatcher.handle("1")
    dispatcher.handle("Better scores")
    assert replies(dispatcher.handle("save")) == ["Table #t1 updated successfully!"]
    assert dispatcher.flow is None
    assert memory_store.memories["t1"]["content"] == "Better scores"


# --- Builders through the dispatcher ---


def test_builder_owns_input(dispatcher, memory_store):
    dispatcher.handle("create list")
    assert isinstance(dispatcher.flow, Building)
    dispatcher.handle("skip")
    dispatcher.handle("delete all")
    assert isinstance(dispatcher.flow, Building)
    assert dispatcher.flow.session.data["items"] == ["delete all"]
    assert not any(c[0] == "bulk_delete" for c in memory_store.calls)


def test_editor_owns_input(dispatcher, memory_store):
    memory_store.add(id="t1", type="table", content="Scores", columns=["A"], rows=[["1"]])
    dispatcher.handle("edit memory #t1")
    dispatcher.handle("yes")
    assert isinstance(dispatcher.flow, Editing)
    memory_store.calls.clear()

    out = replies(dispatcher.handle("delete all"))
    assert out == ["Invalid option. Please enter 1-9, 'save', or 'cancel'."]
    assert isinstance(dispatcher.flow, Editing)
    assert not dispatcher.gate.armed
    assert memory_store.calls == []
    assert "t1" in memory_store.memories


def test_confirmation_owns_input(dispatcher, memory_store):
    memory_store.add(id="5", type="text", content="x")
    dispatcher.handle("delete memory #5")
    out = replies(dispatcher.handle("create table"))
    assert out == ["Please type 'yes' or 'no' to confirm."]
    assert isinstance(dispatcher.flow, Confirming)
    assert "5" in memory_store.memories

    assert replies(dispatcher.handle("yes")) == ["memory #5 deleted successfully."]
    assert dispatcher.flow is None


def test_failed_builder_save_keeps_flow(dispatcher, memory_store):
    dispatcher.handle("create table")
    for line in ["Scores", "Name, Age", "Bob, 30", "done", "skip"]:
        dispatcher.handle(line)
    memory_store.fail = StoreError("Token expired", 401)
    out = replies(dispatcher.handle("skip"))
    assert out[0] == "Error: Token expired"
    assert isinstance(dispatcher.flow, Building)
    assert dispatcher.flow.session.data["rows"] == [["Bob", "30"]]

    memory_store.fail = None
    dispatcher.handle("skip")
    assert dispatcher.flow is None
    assert list(memory_store.memories.values())[0]["rows"] == [["Bob", "30"]]


def test_double_cancel_falls_through_to_parser(dispatcher):
    dispatcher.handle("create table")
    assert replies(dispatcher.handle("cancel")) == ["Table creation cancelled."]
    assert dispatcher.flow is None
    assert replies(dispatcher.handle("cancel")) == [
        "Unknown command: \"cancel\". Type 'help' to see available commands."
    ]


def test_image_builder_with_preview(dispatcher, memory_store, media_store):
    dispatcher.handle('save picture description: "Beach" tags: summer')
    assert dispatcher.awaiting_file()
    dispatcher.select_file("beach.png", b"x")
    assert dispatcher.visible[0]["preview"] is True
    assert not dispatcher.awaiting_file()
    out = replies(dispatcher.handle("save"))
    assert out == ["Image uploaded successfully."]
    assert dispatcher.flow is None
    assert dispatcher.visible == []
    assert media_store.calls[0][0] == "upload"


def test_image_cancel_removes_preview(dispatcher):
    dispatcher.handle("save picture")
    dispatcher.select_file("a.png", b"x")
    dispatcher.handle("cancel")
    assert dispatcher.visible == []


def test_select_file_without_builder(dispatcher):
    assert [m.text for m in dispatcher.select_file("a.png", b"x")] == ["No image upload is waiting for a file."]


def test_busy_dispatcher_refuses_input(dispatcher):
    dispatcher._lock.acquire()
    try:
        out = dispatcher.handle("help")
    finally:
        dispatcher._lock.release()
    assert [m.text for m in out] == ["Still working on the previous command. Please wait."]
