import json
from pathlib import Path

from firehub_agent.agent.transcript import TranscriptStore, parse_transcript, project_id_for

from fakes import write_transcript


def _user(uuid: str, text: str, ts: str = "2026-01-01T00:00:00Z") -> dict:
    return {
        "type": "user",
        "uuid": uuid,
        "timestamp": ts,
        "message": {"role": "user", "content": [{"type": "text", "text": text}]},
    }


def _assistant(uuid: str, msg_id: str, *blocks: dict, ts: str = "2026-01-01T00:00:01Z") -> dict:
    return {
        "type": "assistant",
        "uuid": uuid,
        "timestamp": ts,
        "message": {"id": msg_id, "role": "assistant", "content": list(blocks)},
    }


def _tool_result(uuid: str) -> dict:
    return {
        "type": "user",
        "uuid": uuid,
        "timestamp": "2026-01-01T00:00:02Z",
        "message": {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}],
        },
    }


def test_project_id_replaces_slashes(workdir: Path) -> None:
    assert project_id_for(workdir) == "-srv-firehub-ai-agent"


def test_path_for_uses_project_folder(tmp_path: Path, transcripts: TranscriptStore) -> None:
    assert transcripts.path_for("abc") == tmp_path / "-srv-firehub-ai-agent" / "abc.jsonl"


def test_path_for_rejects_path_like_ids(transcripts: TranscriptStore) -> None:
    assert transcripts.path_for("../secret") is None
    assert transcripts.path_for("a/b") is None
    assert transcripts.path_for("") is None
    assert transcripts.read("../secret") == []


def test_read_missing_file_returns_empty(transcripts: TranscriptStore) -> None:
    assert transcripts.read("nope") == []


def test_tool_results_excluded_and_assistant_fragments_merged(
    transcripts: TranscriptStore,
) -> None:
    """One user text, one tool_result entry and a two-line assistant reply give two messages."""
    write_transcript(
        transcripts.path_for("s1"),
        [
            _user("u1", "Run this"),
            _tool_result("u2"),
            _assistant("a1", "msg_1", {"type": "text", "text": "Do"}),
            _assistant("a2", "msg_1", {"type": "text", "text": "ne"}),
        ],
    )

    messages = transcripts.read("s1")

    assert [(m.role, m.content) for m in messages] == [("user", "Run this"), ("assistant", "Done")]
    assert messages[1].id == "a1"
    assert messages[1].timestamp == "2026-01-01T00:00:01Z"


def test_new_assistant_message_id_flushes_previous() -> None:
    raw = "\n".join(
        json.dumps(e)
        for e in [
            _assistant("a1", "msg_1", {"type": "text", "text": "first"}),
            _assistant("a2", "msg_2", {"type": "tool_use", "name": "x", "input": {}}),
            _assistant("a3", "msg_3", {"type": "text", "text": "second"}),
        ]
    )
    messages = parse_transcript(raw)
    # msg_2 carried no text and is dropped.
    assert [m.content for m in messages] == ["first", "second"]


def test_meta_synthetic_and_invalid_lines_skipped() -> None:
    meta = _user("m1", "caveat")
    meta["isMeta"] = True
    synthetic = _assistant("s1", "msg_s", {"type": "text", "text": "No response requested."})
    synthetic["message"]["model"] = "<synthetic>"
    raw = "\n".join(
        [
            "not json",
            '{"type": "summary", "summary": "x"}',
            json.dumps(meta),
            json.dumps(synthetic),
            json.dumps(_user("u1", "hello")),
            "",
        ]
    )
    messages = parse_transcript(raw)
    assert [(m.id, m.content) for m in messages] == [("u1", "hello")]


def test_missing_uuid_and_timestamp_are_filled() -> None:
    raw = '{"type": "user", "message": {"content": [{"type": "text", "text": "hi"}]}}'
    (message,) = parse_transcript(raw)
    assert message.id
    assert message.timestamp
    assert message.to_dict()["content"] == "hi"
