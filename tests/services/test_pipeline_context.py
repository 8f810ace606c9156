"""Tests for request context helpers: file paths, replay windows and model tags."""

from __future__ import annotations

import pytest

from conftest import PROJECT_FILES, make_messages
from schemas.platflow import ChatMessage, FileEntry, PlatflowRequest
from services.credentials import RequestCredentials
from services.pipeline.context import (
    CONTINUE_PROMPT,
    GenerationRequest,
    PipelineContext,
    compute_message_slice_id,
    extract_model_selection,
    get_file_paths,
    is_ignored_path,
    last_user_message,
    select_replay_messages,
    strip_model_tags,
)


@pytest.mark.parametrize(
    "count,window,expected",
    [(5, 3, 2), (2, 3, 0), (3, 3, 0), (0, 3, 0), (10, 1, 9)],
)
def test_compute_message_slice_id(count, window, expected):
    assert compute_message_slice_id(count, window) == expected


@pytest.mark.parametrize(
    "path,ignored",
    [
        ("/home/project/node_modules/react/index.js", True),
        ("/home/project/packages/ui/node_modules/x.js", True),
        ("/home/project/.git/HEAD", True),
        ("/home/project/dist/bundle.js", True),
        ("/home/project/package-lock.json", True),
        ("/home/project/pnpm-lock.yaml", True),
        ("/home/project/debug.log", True),
        ("/home/project/src/App.tsx", False),
        ("/home/project/src/build.ts", False),
    ],
)
def test_is_ignored_path(path, ignored):
    assert is_ignored_path(path) is ignored


def test_get_file_paths_keeps_only_relevant_files():
    files: dict[str, FileEntry | None] = {
        **PROJECT_FILES,
        "/home/project/node_modules/lib.js": FileEntry(content="x"),
        "/home/project/deleted.ts": None,
    }

    assert get_file_paths(files) == [
        "/home/project/src/App.tsx",
        "/home/project/package.json",
    ]
    assert get_file_paths(None) == []


class TestSelectReplayMessages:
    def test_without_summary_everything_is_replayed(self):
        messages = make_messages(5)
        assert select_replay_messages(messages, None, 2) == messages

    def test_with_summary_replays_trailing_window(self):
        messages = make_messages(5)
        replay = select_replay_messages(messages, "summary", 2)
        assert [m.id for m in replay] == ["msg-2", "msg-3", "msg-4"]

    def test_with_summary_and_short_conversation_replays_last_message(self):
        messages = make_messages(2)
        replay = select_replay_messages(messages, "summary", 0)
        assert [m.id for m in replay] == ["msg-1"]


class TestModelSelection:
    def test_extracts_and_strips_tags(self):
        content = "[Model: gpt-4o]\n\n[Provider: OpenAI]\n\nBuild a landing page"

        model, provider, cleaned = extract_model_selection(content)

        assert (model, provider, cleaned) == ("gpt-4o", "OpenAI", "Build a landing page")

    def test_untagged_content_is_unchanged(self):
        assert extract_model_selection("hello") == (None, None, "hello")

    def test_strip_model_tags_only_touches_user_turns(self):
        tagged = "[Model: m]\n\nhi"
        user = ChatMessage(role="user", content=tagged)
        assistant = ChatMessage(role="assistant", content=tagged)

        assert strip_model_tags(user).content == "hi"
        assert strip_model_tags(assistant) is assistant

    def test_last_user_message(self):
        messages = make_messages(4)
        assert last_user_message(messages).id == "msg-2"
        assert last_user_message([]) is None


def test_context_from_camel_case_request():
    request = PlatflowRequest.model_validate(
        {
            "messages": [{"id": "m1", "role": "user", "content": "hi"}],
            "files": {
                "/home/project/index.html": {"type": "file", "content": "<html/>"},
                "/home/project/src": {"type": "folder"},
            },
            "promptId": "optimized",
            "contextOptimization": True,
            "builderConfig": {"backendUrl": "https://builder.test", "apiKey": "k"},
        }
    )

    context = PipelineContext.from_request(request, RequestCredentials())

    assert context.prompt_id == "optimized"
    assert context.chat_id == "m1"
    assert context.file_paths == ["/home/project/index.html"]
    assert context.has_builder is True
    assert context.wants_summary is True


def test_context_defaults():
    request = PlatflowRequest.model_validate(
        {"messages": [{"role": "user", "content": "hi"}]}
    )

    context = PipelineContext.from_request(
        request, RequestCredentials(), default_prompt_id="builder"
    )

    assert context.prompt_id == "builder"
    assert context.chat_id == ""
    assert context.has_builder is False
    assert context.wants_summary is False


def test_builder_config_without_url_is_not_a_builder():
    request = PlatflowRequest.model_validate(
        {"messages": [{"role": "user", "content": "hi"}], "builderConfig": {}}
    )
    context = PipelineContext.from_request(request, RequestCredentials())
    assert context.has_builder is False


def test_generation_request_continuation_appends_turns():
    request = GenerationRequest(
        messages=make_messages(5), prompt_id="default", summary="s", message_slice_id=2
    )

    continued = request.continued_with("partial").continued_with("more")

    history = continued.history()
    assert [m.id for m in history[:3]] == ["msg-2", "msg-3", "msg-4"]
    assert [(m.role, m.content) for m in history[3:]] == [
        ("assistant", "partial"),
        ("user", CONTINUE_PROMPT),
        ("assistant", "more"),
        ("user", CONTINUE_PROMPT),
    ]
    assert request.continuation == ()
