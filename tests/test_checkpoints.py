"""Tests for turngraph.memory.checkpoints and turngraph.memory.schema."""

from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from turngraph.memory.checkpoints import CheckpointStore
from turngraph.memory.models import BookingResult, Checkpoint, CheckpointMetadata, PendingWrite
from turngraph.memory.schema import (
    CHECKPOINT_SCHEMA_VERSION,
    migrate_channel_values,
    project_channel_values,
    restore_channel_values,
)


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(tmp_path / "checkpoints.db")


def _cp(cid, parent=None, **values):
    return Checkpoint(id=cid, ts="2024-01-01T00:00:00+00:00", channel_values=values, parent_checkpoint_id=parent)


def _age(store, cid, days):
    old = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    with store._get_conn() as conn:
        conn.execute("UPDATE checkpoints SET created_at = ? WHERE checkpoint_id = ?", (old, cid))
        conn.commit()


# --- Store ---

def test_put_and_get_latest(store):
    assert store.is_ready()
    assert store.put("th1", _cp("a"), CheckpointMetadata(source="initialize"))
    assert store.put("th1", _cp("b", parent="a"), CheckpointMetadata(source="finalize", step=1))

    latest = store.get_latest("th1")
    assert latest.checkpoint.id == "b"
    assert latest.parent_checkpoint_id == "a"
    assert latest.metadata.source == "finalize"
    assert latest.created_at is not None
    assert store.get_latest("other") is None


def test_upsert_overwrites_and_refreshes(store):
    store.put("th1", _cp("a", final_response="v1"))
    store.put("th1", _cp("b"))
    store.put("th1", _cp("a", final_response="v2"))

    latest = store.get_latest("th1")
    assert latest.checkpoint.id == "a"
    assert latest.checkpoint.channel_values["final_response"] == "v2"
    assert len(store.list("th1")) == 2


def test_list_newest_first_with_limit(store):
    for cid in ("a", "b", "c"):
        store.put("th1", _cp(cid))
    assert [t.checkpoint.id for t in store.list("th1")] == ["c", "b", "a"]
    assert [t.checkpoint.id for t in store.list("th1", limit=2)] == ["c", "b"]
    assert store.get("th1", "b").checkpoint.id == "b"


def test_namespaces_are_isolated(tmp_path):
    store = CheckpointStore(tmp_path / "cp.db", namespace="prod")
    store.put("th1", _cp("a"))
    store.put("th1", _cp("b"), checkpoint_ns="staging")
    assert store.get_latest("th1").checkpoint.id == "a"
    assert store.get_latest("th1", checkpoint_ns="staging").checkpoint.id == "b"


def test_writes(store):
    store.put("th1", _cp("a"))
    writes = [PendingWrite(channel="final_response", value="hola"), PendingWrite(channel="tokens_used", value=3)]
    assert store.put_writes("th1", "a", writes, task_id="greeting")
    assert store.list_writes("th1", "a") == writes


def test_delete_thread(store):
    store.put("th1", _cp("a"))
    store.put("th1", _cp("b"))
    store.put_writes("th1", "a", [PendingWrite(channel="x", value=1)], task_id="t")
    store.put("th2", _cp("c"))

    assert store.delete_thread("th1") == 2
    assert store.get_latest("th1") is None
    assert store.list_writes("th1", "a") == []
    assert store.get_latest("th2") is not None


def test_cleanup_older_than(store):
    store.put("th1", _cp("old"))
    store.put("th1", _cp("new"))
    store.put_writes("th1", "old", [PendingWrite(channel="x", value=1)], task_id="t")
    _age(store, "old", days=10)

    assert store.cleanup_older_than(timedelta(days=7)) == 1
    assert [t.checkpoint.id for t in store.list("th1")] == ["new"]
    assert store.list_writes("th1", "old") == []


def test_active_threads_and_stats(store):
    store.put("th1", _cp("a"))
    store.put("th2", _cp("b"))
    store.put("th2", _cp("c"))
    store.put("th3", _cp("d"))
    _age(store, "d", days=3)

    active = store.get_active_threads()
    assert [t.thread_id for t in active] == ["th2", "th1"]
    assert active[0].last_checkpoint_id == "c"
    assert len(store.get_active_threads(limit=1)) == 1

    stats = store.get_stats()
    assert stats.total_checkpoints == 4
    assert stats.total_threads == 3
    assert stats.oldest_checkpoint < stats.newest_checkpoint
    assert stats.storage_bytes > 0


def test_unavailable_store_is_noop(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    store = CheckpointStore(blocker / "checkpoints.db")

    assert store.is_ready() is False
    assert store.put("th1", _cp("a")) is False
    assert store.get_latest("th1") is None
    assert store.list("th1") == []
    assert store.get_active_threads() == []
    assert store.cleanup_older_than(timedelta(days=1)) == 0
    assert store.delete_thread("th1") == 0
    assert store.get_stats().total_checkpoints == 0


def test_shutdown(store):
    store.shutdown()
    assert store.is_ready() is False
    assert store.put("th1", _cp("a")) is False


# --- Schema ---

def test_project_excludes_context(tenant, business):
    state = {
        "messages": [HumanMessage(content="hola"), AIMessage(content="¡Hola!")],
        "tenant": tenant,
        "business_context": business,
        "control": {"iteration_count": 1, "max_iterations": 5},
        "final_response": "¡Hola!",
        "booking_result": BookingResult(success=True, appointment_id="apt-1"),
        "resumed": True,
    }
    values = project_channel_values(state)
    assert values["schema_version"] == CHECKPOINT_SCHEMA_VERSION
    assert "tenant" not in values and "business_context" not in values and "resumed" not in values
    assert values["booking_result"]["appointment_id"] == "apt-1"

    restored = restore_channel_values(values)
    assert [type(m) for m in restored["messages"]] == [HumanMessage, AIMessage]
    assert restored["messages"][1].content == "¡Hola!"
    assert restored["booking_result"].appointment_id == "apt-1"
    assert restored["control"]["iteration_count"] == 1


def test_migrate_v1_payload():
    v1 = {
        "agent_trace": [{"agent_name": "greeting", "timestamp": "2024-01-01T00:00:00"}],
        "control": {"iteration_count": 2},
    }
    migrated = migrate_channel_values(v1)
    assert migrated["schema_version"] == CHECKPOINT_SCHEMA_VERSION
    assert migrated["agent_trace"][0]["started_at"] == "2024-01-01T00:00:00"
    assert "timestamp" not in migrated["agent_trace"][0]
    assert migrated["control"] == {"max_iterations": 5, "iteration_count": 2}
    # input untouched
    assert "timestamp" in v1["agent_trace"][0]


def test_restore_drops_malformed_fields():
    values = {
        "schema_version": 2,
        "messages": [
            {"type": "human", "data": {"content": "hola"}},
            {"nonsense": True},
        ],
        "score_change": "not a number",
        "final_response": "ok",
        "detected_signals": "garbage",
        "unknown_field": 1,
    }
    restored = restore_channel_values(values)
    assert [m.content for m in restored["messages"]] == ["hola"]
    assert "score_change" not in restored
    assert "detected_signals" not in restored
    assert "unknown_field" not in restored
    assert restored["final_response"] == "ok"


def test_unreadable_schema_version_is_treated_as_v1():
    values = {
        "schema_version": "not-a-version",
        "agent_trace": [{"agent_name": "greeting", "timestamp": "2024-01-01T00:00:00"}],
        "control": {"iteration_count": 1},
    }
    restored = restore_channel_values(values)
    assert restored["agent_trace"][0]["started_at"] == "2024-01-01T00:00:00"
    assert restored["control"] == {"max_iterations": 5, "iteration_count": 1}

    numeric_string = migrate_channel_values({"schema_version": "2", "control": {"iteration_count": 1}})
    assert numeric_string["control"] == {"iteration_count": 1}


def test_v1_trace_of_wrong_type_is_dropped():
    restored = restore_channel_values({"agent_trace": 5, "final_response": "ok"})
    assert restored["agent_trace"] == []
    assert restored["final_response"] == "ok"


def test_restore_drops_malformed_control_flags():
    values = {
        "schema_version": 2,
        "control": {
            "iteration_count": 2,
            "max_iterations": "5",
            "should_escalate": "no",
            "response_ready": False,
            "escalation_reason": None,
            "unexpected": 1,
        },
    }
    restored = restore_channel_values(values)
    assert restored["control"] == {
        "iteration_count": 2,
        "response_ready": False,
        "escalation_reason": None,
    }

    assert restore_channel_values({"schema_version": 2, "control": "broken"})["control"] == {}
