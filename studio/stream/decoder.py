"""Delta decoder: classify one raw stream event into exactly one typed delta."""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from pydantic import TypeAdapter, ValidationError

from studio.core.errors import MalformedEventError
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import RawStreamEvent
from studio.stream.deltas import Delta, StreamEnd

logger = get_logger(__name__)

# Wire `type` -> (envelope field carrying the payload, delta field it maps to).
# `None` as delta field means the envelope field holds the whole payload object.
_PAYLOAD_FIELDS: dict[str, tuple[str, str | None]] = {
    "text-delta": ("content", "content"),
    "code-delta": ("content", "content"),
    "image-delta": ("content", "content"),
    "sheet-delta": ("content", "content"),
    "id": ("content", "content"),
    "title": ("content", "content"),
    "kind": ("content", "content"),
    "clear": ("content", None),
    "finish": ("content", None),
    "suggestion": ("content", "suggestion"),
    "tool-call": ("tool_calls", None),
    "confirmation-request": ("human_in_the_loop", None),
    "confirmation-response": ("human_in_the_loop", None),
}

_DELTA_ADAPTER: TypeAdapter[Delta] = TypeAdapter(Delta)


def _short(text: Any, *, limit: int = 120) -> str:
    compact = " ".join(str(text).split())
    if len(compact) <= limit:
        return compact
    return f"{compact[: max(1, limit - 3)].rstrip()}..."


class DeltaDecoder:
    """Stateless, synchronous parser for the inbound delta protocol."""

    def decode(self, raw: dict[str, Any] | str | bytes) -> Delta:
        """Return one delta for `raw` or raise `MalformedEventError`."""
        payload = self._load(raw)
        try:
            envelope = RawStreamEvent.model_validate(payload)
        except ValidationError as exc:
            raise MalformedEventError(f"bad_envelope:{exc.error_count()}_errors", raw=raw) from exc

        sequence_id = envelope.data.get("id")
        sequence_id = str(sequence_id) if sequence_id is not None else None
        if envelope.event == "end":
            return StreamEnd(sequence_id=sequence_id)

        wire_type = envelope.data.get("type")
        if not isinstance(wire_type, str) or not wire_type:
            raise MalformedEventError("missing_type", raw=raw)
        mapping = _PAYLOAD_FIELDS.get(wire_type)
        if mapping is None:
            raise MalformedEventError(f"unknown_type:{wire_type}", raw=raw)

        source_field, delta_field = mapping
        body: dict[str, Any] = {"type": wire_type, "sequence_id": sequence_id}
        value = envelope.data.get(source_field)
        if delta_field is not None:
            if value is not None:
                body[delta_field] = value
        elif source_field != "content":
            if not isinstance(value, dict):
                raise MalformedEventError(f"missing_{source_field}:{wire_type}", raw=raw)
            body.update(value)
            body["type"] = wire_type
            body["sequence_id"] = sequence_id

        try:
            return _DELTA_ADAPTER.validate_python(body)
        except ValidationError as exc:
            raise MalformedEventError(
                f"invalid_payload:{wire_type}:{exc.errors()[0]['loc']}",
                raw=raw,
            ) from exc

    @staticmethod
    def _load(raw: dict[str, Any] | str | bytes) -> Any:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedEventError("invalid_json", raw=raw) from exc


async def decode_stream(
    source: AsyncIterable[dict[str, Any] | str | bytes],
    decoder: DeltaDecoder | None = None,
) -> AsyncIterator[Delta]:
    """Yield decoded deltas in arrival order, dropping malformed events."""
    decoder = decoder or DeltaDecoder()
    dropped = 0
    async for raw in source:
        try:
            delta = decoder.decode(raw)
        except MalformedEventError as exc:
            dropped += 1
            logger.warning(
                "stream.decode.dropped reason=%s dropped=%s raw=%s",
                exc.reason,
                dropped,
                _short(exc.raw),
            )
            continue
        yield delta
