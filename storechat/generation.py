"""Answer generation using OpenAI chat completions.

Provides:
- TokenUsage: prompt/completion/total counts reported at the end of a stream
- trim_history: keep the most recent conversation turns
- ChatGenerator: streams an answer for a prepared message list

The generator treats the model output as opaque text deltas; prompts are built
by storechat.rag.prompts.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Union

from openai import OpenAI

from storechat.config import settings

logger = logging.getLogger(__name__)

Message = Dict[str, str]


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


def trim_history(history: Sequence[Message], max_turns: int) -> List[Message]:
    """Return the last `max_turns` user/assistant messages."""
    turns = [m for m in history if m.get("role") in ("user", "assistant") and m.get("content")]
    return turns[-max_turns:] if max_turns > 0 else []


class ChatGenerator:
    """Streaming chat completion client."""

    def __init__(
        self,
        client: OpenAI,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.client = client
        self.model = model or settings.OPENAI_CHAT_MODEL
        self.temperature = settings.GENERATION_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.MAX_OUTPUT_TOKENS
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS

    def stream(self, messages: List[Message]) -> Iterator[Union[str, TokenUsage]]:
        """Stream an answer for the given messages.

        Args:
            messages: System message, prior turns and the latest user turn.

        Yields:
            str text deltas as they arrive, then exactly one TokenUsage.

        Raises:
            openai.OpenAIError: On API failure or timeout.
        """
        stream = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
            stream_options={"include_usage": True},
            timeout=self.timeout_seconds,
        )
        usage = None
        for chunk in stream:
            if chunk.usage is not None:
                usage = chunk.usage
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta
        if usage is None:
            logger.warning("Chat stream ended without usage accounting (model=%s)", self.model)
            yield TokenUsage()
            return
        yield TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )
