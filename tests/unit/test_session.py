from collections.abc import Sequence

import pytest
from langchain_core.messages import BaseMessage

from rag_chat.chat.session import (
    ChatMLTemplate,
    ChatTemplateError,
    ConversationSession,
    role_of,
)


class _FlakyRenderer:
    """ChatML renderer that can be told to fail on the next call."""

    def __init__(self) -> None:
        self.fail_next = False
        self._inner = ChatMLTemplate()

    def render_chat(self, messages: Sequence[BaseMessage], add_generation_prompt: bool) -> str:
        if self.fail_next:
            self.fail_next = False
            raise ChatTemplateError("boom")
        return self._inner.render_chat(messages, add_generation_prompt)


def test_first_delta_contains_system_and_user_turn() -> None:
    session = ConversationSession()
    session.set_system_prompt("S")

    delta = session.begin_turn("Q1")

    assert delta == (
        "<|im_start|>system\nS<|im_end|>\n"
        "<|im_start|>user\nQ1<|im_end|>\n"
        "<|im_start|>assistant\n"
    )


def test_second_delta_excludes_consumed_history() -> None:
    session = ConversationSession()
    session.set_system_prompt("S")
    session.begin_turn("Q1")
    session.end_turn("A1")

    delta = session.begin_turn("Q2")

    assert "system" not in delta
    assert "Q1" not in delta
    assert "A1" not in delta
    assert delta == "<|im_start|>user\nQ2<|im_end|>\n<|im_start|>assistant\n"


def test_cursor_tracks_rendered_transcript_without_marker() -> None:
    session = ConversationSession()
    session.set_system_prompt("S")
    assert session.cursor == 0

    session.begin_turn("Q1")
    assert session.cursor == 0
    session.end_turn("A1")

    full = ChatMLTemplate().render_chat(session.messages, False)
    assert session.cursor == len(full)
    assert [role_of(m) for m in session.messages] == ["system", "user", "assistant"]


def test_end_turn_failure_leaves_cursor_unchanged() -> None:
    renderer = _FlakyRenderer()
    session = ConversationSession(renderer)
    session.begin_turn("Q1")
    session.end_turn("A1")
    before = session.cursor

    session.begin_turn("Q2")
    renderer.fail_next = True
    with pytest.raises(ChatTemplateError):
        session.end_turn("A2")

    assert session.cursor == before


def test_begin_turn_failure_withdraws_user_message() -> None:
    renderer = _FlakyRenderer()
    session = ConversationSession(renderer)
    session.set_system_prompt("S")
    renderer.fail_next = True

    with pytest.raises(ChatTemplateError):
        session.begin_turn("Q1")

    assert [role_of(m) for m in session.messages] == ["system"]
    assert not session.pending


def test_abort_turn_drops_pending_question() -> None:
    session = ConversationSession()
    session.begin_turn("Q1")

    session.abort_turn()

    assert session.messages == []
    assert session.begin_turn("Q1 again") == (
        "<|im_start|>user\nQ1 again<|im_end|>\n<|im_start|>assistant\n"
    )


def test_begin_turn_twice_without_end_is_rejected() -> None:
    session = ConversationSession()
    session.begin_turn("Q1")

    with pytest.raises(RuntimeError):
        session.begin_turn("Q2")


def test_reset_keeps_system_prompt_and_rewinds_cursor() -> None:
    session = ConversationSession()
    session.set_system_prompt("S")
    session.begin_turn("Q1")
    session.end_turn("A1")

    session.reset()

    assert session.cursor == 0
    assert [role_of(m) for m in session.messages] == ["system"]
    assert session.begin_turn("Q2").startswith("<|im_start|>system\nS")


def test_second_system_prompt_is_appended() -> None:
    session = ConversationSession()
    session.set_system_prompt("S1")
    session.set_system_prompt("S2")

    assert [m.content for m in session.messages] == ["S1", "S2"]
