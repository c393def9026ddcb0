"""Multi-turn chat history with incremental prompt deltas."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

_ROLE_BY_TYPE = {"system": "system", "human": "user", "ai": "assistant"}


class ChatTemplateError(RuntimeError):
    pass


def role_of(message: BaseMessage) -> str:
    """Map a langchain message to its chat-template role."""

    role = _ROLE_BY_TYPE.get(message.type)
    if role is None:
        raise ChatTemplateError(f"Unsupported message type: {message.type}")
    return role


class ChatRenderer(Protocol):
    """Anything that can format a transcript for the generation engine."""

    def render_chat(
        self, messages: Sequence[BaseMessage], add_generation_prompt: bool
    ) -> str:
        """Render the messages, optionally ending with the assistant marker."""


class ChatMLTemplate:
    """ChatML formatting: `<|im_start|>role\\ncontent<|im_end|>\\n` per message."""

    start = "<|im_start|>"
    end = "<|im_end|>"

    def render_chat(
        self, messages: Sequence[BaseMessage], add_generation_prompt: bool
    ) -> str:
        parts: list[str] = []
        for message in messages:
            if not isinstance(message.content, str):
                raise ChatTemplateError("Only plain-text message content can be rendered")
            parts.append(f"{self.start}{role_of(message)}\n{message.content}{self.end}\n")
        if add_generation_prompt:
            parts.append(f"{self.start}assistant\n")
        return "".join(parts)


class ConversationSession:
    """Ordered chat history plus a cursor into the rendered transcript.

    The whole transcript is re-rendered on every turn and only the suffix
    past `cursor` is handed out, so earlier turns are never sent twice. The
    cursor only moves in `end_turn`, to the length of the transcript
    rendered without the generation marker, and only moves forward.
    """

    def __init__(self, renderer: ChatRenderer | None = None) -> None:
        self._renderer: ChatRenderer = renderer or ChatMLTemplate()
        self._messages: list[BaseMessage] = []
        self._cursor = 0
        self._pending = False

    @property
    def messages(self) -> list[BaseMessage]:
        return list(self._messages)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def pending(self) -> bool:
        """True between `begin_turn` and `end_turn`/`abort_turn`."""
        return self._pending

    def set_system_prompt(self, text: str) -> None:
        """Append a system message. Later calls append another one."""
        self._messages.append(SystemMessage(content=text))

    def begin_turn(self, user_text: str) -> str:
        """Append the user message and return the not-yet-sent prompt suffix.

        Raises:
            ChatTemplateError: rendering failed; the user message is withdrawn.
        """

        if self._pending:
            raise RuntimeError("begin_turn called while a turn is still open")

        self._messages.append(HumanMessage(content=user_text))
        try:
            rendered = self._renderer.render_chat(self._messages, True)
        except ChatTemplateError:
            self._messages.pop()
            raise
        except Exception as exc:
            self._messages.pop()
            raise ChatTemplateError(f"failed to apply the chat template: {exc}") from exc

        self._pending = True
        return rendered[self._cursor :]

    def end_turn(self, assistant_text: str) -> None:
        """Record the assistant answer and mark the transcript as consumed.

        Raises:
            ChatTemplateError: rendering failed; the cursor is left unchanged.
        """

        self._messages.append(AIMessage(content=assistant_text))
        self._pending = False
        try:
            rendered = self._renderer.render_chat(self._messages, False)
        except ChatTemplateError:
            raise
        except Exception as exc:
            raise ChatTemplateError(f"failed to apply the chat template: {exc}") from exc

        self._cursor = max(self._cursor, len(rendered))

    def abort_turn(self) -> None:
        """Withdraw the open user message after a failed generation."""

        if not self._pending:
            return
        self._messages.pop()
        self._pending = False

    def reset(self) -> None:
        """Forget all turns; system messages stay, the cursor restarts at 0."""

        self._messages = [m for m in self._messages if isinstance(m, SystemMessage)]
        self._cursor = 0
        self._pending = False
