# =============================================================================
# AI Client — OpenAI-Compatible Chat Completions (Batch + Streaming)
# =============================================================================
#
# Two operations against one text-generation endpoint:
#
#   summarize(text) -> str
#       Non-streaming completion with our own retry loop. The delay before
#       attempt k (k >= 1) is k² × backoff_unit. The sleep is a plain
#       awaitable, so any enclosing deadline (asyncio.timeout) cancels it.
#       Exhausting the attempts raises ONE AIServiceError naming the last
#       cause.
#
#   stream_query(question, text, deadline) -> AnswerStream
#       Streaming completion. A producer task reads the upstream stream and
#       pushes every non-empty content delta, in order, onto a bounded
#       ChunkChannel that the caller drains. No retries: a mid-stream
#       failure ends that answer.
#
# DESIGN DECISION: The openai SDK over raw HTTP. It speaks the exact
# request shape ({model, messages, stream}) and decodes the server-sent
# frames incrementally. The SDK's built-in retries are disabled
# (max_retries=0) so the retry policy above is the only one in play.
#
# ARCHITECTURE:
#   AIClient
#   ├── summarize()        — batch, retry + k² backoff
#   ├── stream_query()     — returns AnswerStream (producer task + channel)
#   └── from_settings()    — builds AsyncOpenAI from config
#   AnswerStream           — async context manager; exit cancels & joins
#   ChunkChannel           — bounded queue, producer-closed
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.errors import AIServiceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that explains legal documents in plain "
    "language for people without legal training."
)

SUMMARY_INSTRUCTIONS = """Summarise the following legal document in clear, simple language. Cover:

1. What the document is for
2. Who the parties are
3. The key terms and conditions
4. The rights and obligations of each party
5. Any deadlines or important dates

Document text:
{document}

Write the summary in plain, non-technical language:"""

QUERY_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions about legal "
    "documents in plain language."
)

QUERY_INSTRUCTIONS = """Answer the user's question using the legal document below. Use simple, easy-to-understand language. If the document does not answer the question, say so clearly.

Document:
{document}

Question: {question}

Answer:"""


@dataclass
class ChatMessage:
    """One chat message in the request body."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def build_summary_messages(document_text: str) -> list[ChatMessage]:
    return [
        ChatMessage("system", SUMMARY_SYSTEM_PROMPT),
        ChatMessage("user", SUMMARY_INSTRUCTIONS.format(document=document_text)),
    ]


def build_query_messages(question: str, document_text: str) -> list[ChatMessage]:
    return [
        ChatMessage("system", QUERY_SYSTEM_PROMPT),
        ChatMessage(
            "user",
            QUERY_INSTRUCTIONS.format(document=document_text, question=question),
        ),
    ]


# ---------------------------------------------------------------------------
# Chunk Channel
# ---------------------------------------------------------------------------

_CLOSED = object()


@dataclass(frozen=True)
class _ErrorChunk:
    text: str


class ChunkChannel:
    """
    Bounded FIFO of answer chunks between one producer and one consumer.

    Only the producer closes it. receive() returns None after a normal
    close and raises TimeoutError after a deadline close. A chunk sent
    with send_error() is delivered like any other, and sets `error` once
    the consumer has received it.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.timed_out = False
        self.error: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, chunk: str) -> None:
        if self._closed:
            raise RuntimeError("send on closed chunk channel")
        await self._queue.put(chunk)

    async def send_error(self, text: str) -> None:
        if self._closed:
            raise RuntimeError("send on closed chunk channel")
        await self._queue.put(_ErrorChunk(text))

    def close(self, timed_out: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        self.timed_out = timed_out
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass  # receive() sees closed + empty once the buffer drains

    async def receive(self) -> str | None:
        if self._closed and self._queue.empty():
            return self._end()
        item = await self._queue.get()
        if item is _CLOSED:
            return self._end()
        if isinstance(item, _ErrorChunk):
            self.error = item.text
            return item.text
        return item

    def _end(self) -> None:
        if self.timed_out:
            raise TimeoutError("answer stream deadline exceeded")
        return None


class AnswerStream:
    """
    One streamed answer: the producer task plus the channel it fills.

    Use as an async context manager. Leaving the block cancels the producer
    if it is still running and waits for it to finish, which also closes
    the upstream HTTP response.
    """

    def __init__(
        self,
        produce: Callable[[ChunkChannel], Awaitable[None]],
        maxsize: int = 100,
    ) -> None:
        self.channel = ChunkChannel(maxsize=maxsize)
        self._produce = produce
        self._task: asyncio.Task | None = None

    async def __aenter__(self) -> AnswerStream:
        self._task = asyncio.create_task(self._produce(self.channel))
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def error(self) -> str | None:
        """Text of the upstream error chunk, once it has been received."""
        return self.channel.error

    @property
    def producer_done(self) -> bool:
        return self._task is not None and self._task.done()

    async def next_chunk(self) -> str | None:
        """Next chunk, or None at end of stream. TimeoutError on deadline."""
        return await self.channel.receive()

    async def aclose(self) -> None:
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.error("Answer producer crashed: %s", task.exception())
        self.channel.close()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AIClient:
    """Client for the summary and query calls against one model endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str | None = None,
        max_retries: int | None = None,
        backoff_unit: float | None = None,
        stream_buffer_size: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._model = model or settings.ai_model
        self._max_retries = (
            settings.ai_max_retries if max_retries is None else max_retries
        )
        self._backoff_unit = (
            settings.ai_backoff_unit_seconds if backoff_unit is None else backoff_unit
        )
        self._stream_buffer_size = stream_buffer_size or settings.ai_stream_buffer_size
        self._sleep = sleep

    @classmethod
    def from_settings(cls) -> AIClient:
        base_url = f"{settings.ai_endpoint.rstrip('/')}/v1"
        client = AsyncOpenAI(
            api_key=settings.ai_api_key,
            base_url=base_url,
            timeout=settings.ai_timeout_seconds,
            max_retries=0,
        )
        logger.info(
            "Initialized AIClient (model=%s, base_url=%s, max_retries=%d)",
            settings.ai_model, base_url, settings.ai_max_retries,
        )
        return cls(client)

    @property
    def model(self) -> str:
        return self._model

    @property
    def max_attempts(self) -> int:
        return self._max_retries + 1

    def backoff_delay(self, attempt: int) -> float:
        """Delay before `attempt` (0-based); attempt k waits k² units."""
        return attempt * attempt * self._backoff_unit

    async def aclose(self) -> None:
        await self._client.close()

    # -----------------------------------------------------------------------
    # Batch: summary generation
    # -----------------------------------------------------------------------

    async def summarize(self, document_text: str) -> str:
        """
        Generate a plain-language summary of a document.

        Retries transport errors, non-success statuses and empty choice
        lists. Raises AIServiceError once every attempt has failed.
        """
        messages = [m.to_dict() for m in build_summary_messages(document_text)]
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Summary attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt, self.max_attempts, last_error, delay,
                )
                await self._sleep(delay)

            try:
                response = await self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                    stream=False,
                )
            except openai.APIError as exc:
                last_error = exc
                continue

            if not response.choices:
                last_error = AIServiceError("no response choices received")
                continue

            content = response.choices[0].message.content or ""
            return content.strip()

        raise AIServiceError(
            f"failed to generate summary after {self.max_attempts} attempts",
            details=str(last_error),
        ) from last_error

    # -----------------------------------------------------------------------
    # Streaming: question answering
    # -----------------------------------------------------------------------

    def stream_query(
        self,
        question: str,
        document_text: str,
        deadline: float | None = None,
    ) -> AnswerStream:
        """
        Start a streamed answer.

        Args:
            deadline: absolute event-loop time (loop.time()) after which the
                producer stops and closes the channel as timed out.
        """
        messages = [
            m.to_dict() for m in build_query_messages(question, document_text)
        ]

        async def produce(channel: ChunkChannel) -> None:
            await self._produce_answer(messages, deadline, channel)

        return AnswerStream(produce, maxsize=self._stream_buffer_size)

    async def _produce_answer(
        self,
        messages: list[dict[str, str]],
        deadline: float | None,
        channel: ChunkChannel,
    ) -> None:
        stream = None
        deadline_cm = asyncio.timeout_at(deadline)
        try:
            async with deadline_cm:
                stream = await self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                    stream=True,
                )
                async for frame in stream:
                    if not frame.choices:
                        continue
                    content = frame.choices[0].delta.content
                    if content:
                        await channel.send(content)
        except TimeoutError as exc:
            if deadline_cm.expired():
                logger.warning("Answer stream reached its deadline; producer stopped")
                channel.close(timed_out=True)
            else:
                await self._send_error(channel, exc)
        except Exception as exc:
            await self._send_error(channel, exc)
        finally:
            if stream is not None:
                await stream.close()
            channel.close()

    async def _send_error(self, channel: ChunkChannel, exc: Exception) -> None:
        logger.error("Answer stream failed: %s", exc)
        await channel.send_error(f"Error: {exc}")
