import json
import math
from typing import Iterable, Optional, Union

from loguru import logger

from analytics_core.core.exceptions import DecodeError, ValidationError
from analytics_core.schemas.events import BatchResult, CanonicalEventRow, SkippedPayload
from analytics_core.services.batch_writer import BatchWriter
from analytics_core.services.normalizer import EventNormalizer, default_normalizer


def _reject_constant(name: str):
    raise ValueError(f"non-finite number {name} is not valid JSON")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number {text} overflows a double")
    return value


def decode_payload(payload: Union[bytes, str], index: int) -> dict:
    """UTF-8 JSON object -> dict, or DecodeError."""
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        document = json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise DecodeError(f"Payload {index} is not valid UTF-8 JSON: {e}", index=index) from e

    if not isinstance(document, dict):
        raise DecodeError(f"Payload {index} is a JSON {type(document).__name__}, expected an object", index=index)
    return document


class StreamBatchConsumer:
    """
    Processes one batch delivered by the stream: decode and normalize every
    payload, skip (and log) the ones that fail, then write the rest with a
    single all-or-nothing insert. A failed insert propagates so the transport
    redelivers the whole batch.
    """

    def __init__(self, writer: BatchWriter, normalizer: EventNormalizer = default_normalizer):
        self.writer = writer
        self.normalizer = normalizer

    async def consume_batch(
            self, raw_payloads: Iterable[Union[bytes, str]], *, timeout: Optional[float] = None
    ) -> BatchResult:
        rows: list[CanonicalEventRow] = []
        skipped: list[SkippedPayload] = []
        received = 0

        for index, payload in enumerate(raw_payloads):
            received += 1
            try:
                rows.append(self.normalizer.normalize(decode_payload(payload, index)))
            except (DecodeError, ValidationError) as e:
                logger.warning(f"Skipping payload {index}: {type(e).__name__}: {e}")
                skipped.append(SkippedPayload(index=index, error_type=type(e).__name__, reason=str(e)))

        if not rows:
            logger.info(f"No valid events in batch of {received} payloads.")
            return BatchResult(received=received, inserted=0, skipped=skipped)

        logger.info(f"Normalized {len(rows)} of {received} payloads.")
        inserted = await self.writer.insert_batch(rows, timeout=timeout)
        return BatchResult(received=received, inserted=inserted, skipped=skipped)
