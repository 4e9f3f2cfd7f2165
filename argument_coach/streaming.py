"""
Streaming Protocol

Server side: the model provider yields cumulative snapshots of one growing
JSON object. A producer task pushes them onto a SnapshotChannel; the response
generator relays display-only partial lines and hands the final snapshot to a
finalizer, which is the only place side effects happen. Each line is one JSON
object followed by "\\n" (application/x-ndjson).

Client side: NdjsonDecoder and read_coach_stream reassemble lines from byte
chunks that may split anywhere, including inside a UTF-8 sequence.
"""

import asyncio
import codecs
import contextlib
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Union,
)

from langchain_core.utils.json import parse_partial_json

from argument_coach.errors import CoachError

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"
PARTIAL_FIELDS = ("assistantText", "nextQuestion")

STREAM_FAILED = "coach_stream_failed"
EMPTY_RESPONSE = "coach_empty_response"

_OPEN_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*")
_CLOSE_FENCE = re.compile(r"\s*```\s*$")


class FrameKind(Enum):
    SNAPSHOT = "snapshot"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class SnapshotFrame:
    """One immutable message on the channel."""
    kind: FrameKind
    text: str = ""
    error: Optional[str] = None


class SnapshotChannel:
    """
    Single-producer, single-consumer channel of SnapshotFrames.

    The producer calls `send` then `close`; the consumer iterates with
    `async for` until the close sentinel arrives.
    """

    _SENTINEL = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: SnapshotFrame) -> None:
        if self._closed:
            raise RuntimeError("SnapshotChannel is closed")
        await self._queue.put(frame)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._SENTINEL)

    def __aiter__(self) -> AsyncIterator[SnapshotFrame]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SnapshotFrame]:
        while True:
            item = await self._queue.get()
            if item is self._SENTINEL:
                return
            yield item


def encode_line(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n"


def extract_partial(snapshot: str) -> Optional[Dict[str, str]]:
    """
    Pull the display fields out of an incomplete JSON snapshot.

    Returns None while nothing displayable has arrived yet.
    """
    text = _CLOSE_FENCE.sub("", _OPEN_FENCE.sub("", snapshot or ""))
    if not text:
        return None
    try:
        parsed = parse_partial_json(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    partial = {key: parsed[key] for key in PARTIAL_FIELDS if isinstance(parsed.get(key), str)}
    return partial or None


Finalizer = Callable[[str], Awaitable[Dict[str, Any]]]
Discard = Callable[[Dict[str, Any]], Awaitable[None]]


class CoachStreamHandler:
    """
    Relays provider snapshots as NDJSON lines and finalizes the last one.

    `finalize` receives the final raw text and returns the terminal payload
    (it coerces and persists). If the consumer is cancelled before the final
    frame, the producer is cancelled too and `finalize` never runs. If it is
    cancelled while `finalize` is running, `finalize` still completes and its
    payload goes to `discard`, which undoes the writes.
    """

    def __init__(
        self,
        snapshots: AsyncIterable[str],
        finalize: Finalizer,
        discard: Optional[Discard] = None,
    ):
        self._snapshots = snapshots
        self._finalize = finalize
        self._discard = discard

    async def _produce(self, channel: SnapshotChannel) -> None:
        last = ""
        try:
            async for snapshot in self._snapshots:
                last = snapshot
                await channel.send(SnapshotFrame(FrameKind.SNAPSHOT, text=snapshot))
            await channel.send(SnapshotFrame(FrameKind.COMPLETE, text=last))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Provider stream failed: %s", e, exc_info=True)
            await channel.send(SnapshotFrame(FrameKind.ERROR, error=STREAM_FAILED))
        finally:
            channel.close()

    async def lines(self) -> AsyncIterator[str]:
        channel = SnapshotChannel()
        producer = asyncio.create_task(self._produce(channel))
        try:
            last_partial: Optional[Dict[str, str]] = None
            async for frame in channel:
                if frame.kind is FrameKind.SNAPSHOT:
                    partial = extract_partial(frame.text)
                    if partial is not None and partial != last_partial:
                        last_partial = partial
                        yield encode_line(partial)
                    continue

                if frame.kind is FrameKind.ERROR:
                    yield encode_line({"error": frame.error or STREAM_FAILED})
                    return

                yield encode_line(await self._terminal_payload(frame.text))
                return
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

    async def _terminal_payload(self, final_text: str) -> Dict[str, Any]:
        if not final_text.strip():
            logger.warning("Provider finished without output")
            return {"error": EMPTY_RESPONSE}
        try:
            return await self._run_finalize(final_text)
        except CoachError as e:
            logger.warning("Turn finalization failed: %s (%s)", e.code, e.message)
            return {"error": e.code}
        except Exception as e:
            logger.error("Turn finalization crashed: %s", e, exc_info=True)
            return {"error": STREAM_FAILED}

    async def _run_finalize(self, final_text: str) -> Dict[str, Any]:
        task = asyncio.ensure_future(self._finalize(final_text))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await self._discard_result(task)
            raise

    async def _discard_result(self, task: "asyncio.Future[Dict[str, Any]]") -> None:
        try:
            payload = await task
        except Exception as e:
            logger.info("Finalization of a cancelled stream failed, nothing to discard: %s", e)
            return
        if self._discard is None:
            logger.warning("Stream cancelled after finalization; result was not delivered")
            return
        logger.info("Stream cancelled after finalization; discarding the undelivered result")
        await self._discard(payload)


# --- Client side -------------------------------------------------------------

class NdjsonDecoder:
    """
    Incremental NDJSON decoder.

    `feed` accepts raw bytes (or already-decoded text), keeps any trailing
    partial line for the next call, and returns the objects of all complete
    lines. Blank and undecodable lines are skipped. `flush` handles a final
    line with no terminating newline.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> List[Dict[str, Any]]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer += text
        *complete, self._buffer = self._buffer.split("\n")
        return self._parse(complete)

    def flush(self) -> List[Dict[str, Any]]:
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        return self._parse([remaining])

    @staticmethod
    def _parse(lines: Iterable[str]) -> List[Dict[str, Any]]:
        objects = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping undecodable stream line: %r", line[:80])
                continue
            if isinstance(obj, dict):
                objects.append(obj)
        return objects


@dataclass
class StreamOutcome:
    partials: List[Dict[str, Any]] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None

    def add(self, obj: Dict[str, Any]) -> None:
        if "error" in obj:
            self.error = str(obj["error"])
        elif "step" in obj:
            # Only the terminal line carries the coerced result
            self.result = obj
        else:
            self.partials.append(obj)


async def read_coach_stream(chunks: AsyncIterable[bytes]) -> StreamOutcome:
    """Consume a coaching-turn byte stream into a StreamOutcome."""
    decoder = NdjsonDecoder()
    outcome = StreamOutcome()
    async for chunk in chunks:
        for obj in decoder.feed(chunk):
            outcome.add(obj)
    for obj in decoder.flush():
        outcome.add(obj)
    return outcome


def decode_coach_stream(chunks: Iterable[bytes]) -> StreamOutcome:
    """Synchronous variant of read_coach_stream."""
    decoder = NdjsonDecoder()
    outcome = StreamOutcome()
    for chunk in chunks:
        for obj in decoder.feed(chunk):
            outcome.add(obj)
    for obj in decoder.flush():
        outcome.add(obj)
    return outcome
