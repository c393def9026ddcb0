"""Token-by-token generation over a stateful engine.

One call walks Start -> Tokenizing -> Decoding -> (Sampling <-> Decoding)
and ends Completed (end-of-generation token) or Failed (exception). Running
out of context window is a failure for the turn; the prompt is never
truncated to make room.
"""

from __future__ import annotations

import math
import random
from collections.abc import Callable, Iterator, Sequence
from typing import Protocol, TypeVar

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field

from rag_chat.config import GenerationConfig

INT32_MAX = 2**31 - 1

T = TypeVar("T")


class GenerationError(RuntimeError):
    pass


class ContextOverflowError(GenerationError):
    pass


class SamplingParams(BaseModel):
    """Sampler chain settings; `seed=None` draws from system entropy."""

    model_config = ConfigDict(frozen=True)

    min_p: float = Field(default=0.05, ge=0.0, le=1.0)
    temperature: float = Field(default=0.3, ge=0.0)
    seed: int | None = None

    @classmethod
    def from_config(cls, config: GenerationConfig) -> "SamplingParams":
        return cls(min_p=config.min_p, temperature=config.temperature, seed=config.seed)


class GenerationEngine(Protocol):
    """Stateful inference backend driven by `GenerationLoop`.

    `decode` appends tokens to the engine's sequence memory and returns the
    logits for the position after the last token. `n_ctx_used` is the number
    of positions currently held in that memory.
    """

    @property
    def n_ctx(self) -> int: ...

    def clear_memory(self) -> None: ...

    def n_ctx_used(self) -> int: ...

    def tokenize(self, text: str, add_special: bool) -> list[int]: ...

    def decode(self, tokens: Sequence[int]) -> Sequence[float]: ...

    def is_eog(self, token: int) -> bool: ...

    def token_to_piece(self, token: int) -> str: ...

    def render_chat(
        self, messages: Sequence[BaseMessage], add_generation_prompt: bool
    ) -> str: ...


class SamplerChain:
    """min-p filter -> temperature -> categorical draw."""

    def __init__(self, params: SamplingParams | None = None) -> None:
        self.params = params or SamplingParams()
        self._rng = random.Random(self.params.seed)

    def sample(self, logits: Sequence[float]) -> int:
        if not logits:
            raise GenerationError("engine returned no logits")

        best = max((logit for logit in logits if not math.isnan(logit)), default=math.nan)
        if not math.isfinite(best):
            raise GenerationError("no candidate token")

        if self.params.min_p > 0.0:
            # p_i / p_max == exp(l_i - l_max)
            cutoff = best + math.log(self.params.min_p)
            candidates = [i for i, logit in enumerate(logits) if logit >= cutoff]
        else:
            candidates = [i for i, logit in enumerate(logits) if not math.isnan(logit)]

        if self.params.temperature <= 0.0:
            return max(candidates, key=lambda i: logits[i])

        scaled = [logits[i] / self.params.temperature for i in candidates]
        top = max(scaled)
        weights = [math.exp(value - top) for value in scaled]
        return self._rng.choices(candidates, weights=weights, k=1)[0]


def _engine_call(action: str, call: Callable[[], T]) -> T:
    try:
        return call()
    except GenerationError:
        raise
    except Exception as exc:
        raise GenerationError(f"failed to {action}: {exc}") from exc


class GenerationLoop:
    """Drives one engine through prompt decoding and token sampling."""

    def __init__(
        self,
        engine: GenerationEngine,
        params: SamplingParams | None = None,
        *,
        reset_memory: bool = True,
    ) -> None:
        self.engine = engine
        self.sampler = SamplerChain(params)
        self.reset_memory = reset_memory

    def stream(self, prompt: str) -> Iterator[str]:
        """Yield generated text pieces until end-of-generation.

        The iterator is lazy and single-use. Nothing touches the engine until
        the first piece is requested.

        Raises:
            ContextOverflowError: the next decode would exceed `n_ctx`.
            GenerationError: any engine call or the sampling step failed.
        """

        engine = self.engine
        if self.reset_memory:
            _engine_call("clear the engine memory", engine.clear_memory)

        add_special = _engine_call("read the context usage", engine.n_ctx_used) == 0
        tokens = _engine_call("tokenize the prompt", lambda: engine.tokenize(prompt, add_special))
        if len(tokens) > INT32_MAX:
            raise GenerationError("tokenized prompt exceeds the int32 token limit")
        if not tokens:
            raise GenerationError("prompt produced no tokens")

        n_ctx = _engine_call("read the context size", lambda: engine.n_ctx)
        batch: list[int] = list(tokens)
        while True:
            used = _engine_call("read the context usage", engine.n_ctx_used)
            if used + len(batch) > n_ctx:
                raise ContextOverflowError(
                    f"context size exceeded: {used} + {len(batch)} > {n_ctx}"
                )

            logits = _engine_call("decode", lambda: engine.decode(batch))
            token = _engine_call("sample the next token", lambda: self.sampler.sample(logits))
            if _engine_call("check for end of generation", lambda: engine.is_eog(token)):
                return

            piece = _engine_call(
                f"convert token {token} to text", lambda: engine.token_to_piece(token)
            )
            yield piece
            batch = [token]

    def run(self, prompt: str, on_token: Callable[[str], None] | None = None) -> str:
        """Drain `stream`, forwarding each piece to `on_token`; return the text."""

        pieces: list[str] = []
        for piece in self.stream(prompt):
            if on_token is not None:
                on_token(piece)
            pieces.append(piece)
        return "".join(pieces)
