# =============================================================================
# Streaming Query Proxy — AI Answer Chunks → Server-Sent Events
# =============================================================================
#
# Bridges one AnswerStream to one client connection. Every request gets a
# single deadline (default 2 minutes) shared by the producer and by this
# consumer loop:
#
#   chunk arrives        → event "message", data = chunk
#   upstream fails       → one last "message" carrying "Error: <cause>",
#                          flagged as upstream_error (not part of the frame)
#   producer closes      → stream ends cleanly
#   deadline passes      → event "error", data = "Request timeout"; stop
#   client disconnects   → generator is closed; the AnswerStream context
#                          cancels and joins the producer on the way out
#
# DESIGN DECISION: The wait for each chunk is bounded with
# asyncio.wait_for(remaining) instead of wrapping the whole generator in
# asyncio.timeout(). A timeout scope must not span a `yield`: the caller's
# code would run inside it and could be cancelled by our deadline.
#
# Frame format (text/event-stream):
#   event: message
#   data: <line 1>
#   data: <line 2>
#   <blank line>
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass

from app.config import settings
from app.errors import AIServiceError
from app.services.llm import AIClient

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "message"
ERROR_EVENT = "error"
TIMEOUT_MESSAGE = "Request timeout"


@dataclass(frozen=True)
class StreamEvent:
    """One server-sent event."""

    event: str
    data: str
    upstream_error: bool = False

    def encode(self) -> str:
        data = self.data.replace("\r\n", "\n").replace("\r", "\n")
        lines = [f"event: {self.event}"]
        lines.extend(f"data: {line}" for line in data.split("\n"))
        return "\n".join(lines) + "\n\n"


class StreamingQueryProxy:
    """Turns a streamed AI answer into a bounded sequence of events."""

    def __init__(
        self,
        ai_client: AIClient,
        timeout_seconds: float | None = None,
    ) -> None:
        self._ai_client = ai_client
        self._timeout_seconds = (
            settings.query_timeout_seconds
            if timeout_seconds is None
            else timeout_seconds
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    async def events(
        self,
        question: str,
        document_text: str,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield answer events until the stream ends or the deadline passes.

        At most one error event is produced, and it is always the last.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_seconds
        chunks = 0

        logger.info(
            "Starting answer stream (question=%r, timeout=%.0fs)",
            question[:80], self._timeout_seconds,
        )

        async with self._ai_client.stream_query(
            question, document_text, deadline=deadline,
        ) as stream:
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise TimeoutError
                    chunk = await asyncio.wait_for(stream.next_chunk(), remaining)
                except TimeoutError:
                    logger.warning(
                        "Answer stream timed out after %d chunks", chunks,
                    )
                    yield StreamEvent(ERROR_EVENT, TIMEOUT_MESSAGE)
                    return

                if chunk is None:
                    logger.info("Answer stream finished (%d chunks)", chunks)
                    return

                chunks += 1
                yield StreamEvent(
                    MESSAGE_EVENT, chunk, upstream_error=stream.error is not None,
                )

    async def answer(self, question: str, document_text: str) -> str:
        """
        Collect the whole streamed answer into one string.

        Raises:
            AIServiceError: the stream timed out, or the upstream failed
                and the stream ended with its error chunk.
        """
        parts: list[str] = []
        async with aclosing(self.events(question, document_text)) as events:
            async for event in events:
                if event.event == ERROR_EVENT:
                    raise AIServiceError(
                        "Answer generation did not complete",
                        details=event.data,
                    )
                if event.upstream_error:
                    raise AIServiceError(
                        "Answer generation failed",
                        details=event.data,
                    )
                parts.append(event.data)
        return "".join(parts)
