"""Deterministic fallback engine when no language model is available."""

from __future__ import annotations

import re
from collections.abc import Sequence

from langchain_core.messages import BaseMessage

from rag_chat.chat.session import ChatMLTemplate

_PIECE_PATTERN = re.compile(r"\S+\s*|\s+")
_BULLET_PATTERN = re.compile(r"^- \[[^\]]+\] (?P<body>.+)$", flags=re.MULTILINE)
_NO_ANSWER = "I could not find an answer in the indexed documents."

_EOG_ID = 0
_BOS_ID = 1
_BLOCKED = -1.0e9


class ExtractiveEngine:
    """Engine that answers with the first retrieved context bullet.

    It satisfies the `GenerationEngine` contract with a word-piece vocabulary
    that grows as text is tokenized and is dropped with the sequence memory.
    When a prompt batch is decoded, the answer is planned from the first
    `- [file] text` line in it; each later decode step puts all probability
    mass on the next planned piece, then on the end-of-generation token.
    Useful for offline runs and tests; it keeps the same streaming and
    context-window behaviour as a real model.
    """

    def __init__(self, *, context_size: int = 4096, max_answer_words: int = 60) -> None:
        self._n_ctx = context_size
        self.max_answer_words = max_answer_words
        self._template = ChatMLTemplate()
        self._pieces: list[str] = ["", ""]
        self._ids: dict[str, int] = {}
        self._memory: list[int] = []
        self._plan: list[int] | None = None
        self._plan_pos = 0

    @property
    def n_ctx(self) -> int:
        return self._n_ctx

    @property
    def vocab_size(self) -> int:
        return len(self._pieces)

    def clear_memory(self) -> None:
        # Token ids only need to outlive one sequence.
        self._pieces = ["", ""]
        self._ids = {}
        self._memory.clear()
        self._plan = None
        self._plan_pos = 0

    def n_ctx_used(self) -> int:
        return len(self._memory)

    def tokenize(self, text: str, add_special: bool) -> list[int]:
        tokens = [_BOS_ID] if add_special else []
        tokens.extend(self._piece_id(piece) for piece in _PIECE_PATTERN.findall(text))
        return tokens

    def decode(self, tokens: Sequence[int]) -> list[float]:
        if not tokens:
            raise ValueError("empty batch")
        self._memory.extend(tokens)
        if len(tokens) > 1 or self._plan is None:
            self._plan = self._plan_answer(tokens)
            self._plan_pos = 0

        logits = [_BLOCKED] * len(self._pieces)
        if self._plan_pos < len(self._plan):
            logits[self._plan[self._plan_pos]] = 0.0
            self._plan_pos += 1
        else:
            logits[_EOG_ID] = 0.0
        return logits

    def is_eog(self, token: int) -> bool:
        return token == _EOG_ID

    def token_to_piece(self, token: int) -> str:
        if token < 0 or token >= len(self._pieces):
            raise ValueError(f"unknown token id: {token}")
        return self._pieces[token]

    def render_chat(
        self, messages: Sequence[BaseMessage], add_generation_prompt: bool
    ) -> str:
        return self._template.render_chat(messages, add_generation_prompt)

    def _piece_id(self, piece: str) -> int:
        token = self._ids.get(piece)
        if token is None:
            token = len(self._pieces)
            self._pieces.append(piece)
            self._ids[piece] = token
        return token

    def _plan_answer(self, tokens: Sequence[int]) -> list[int]:
        prompt = "".join(self._pieces[token] for token in tokens)
        match = _BULLET_PATTERN.search(prompt)
        answer = match.group("body").strip() if match else _NO_ANSWER
        words = answer.split()[: self.max_answer_words]
        return self.tokenize(" ".join(words), add_special=False)
