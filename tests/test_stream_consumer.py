"""Stream batches end to end: decode, normalize, skip bad payloads, one insert."""
import json

import pytest

from analytics_core.core.exceptions import DecodeError, StorageError
from analytics_core.services.batch_writer import BatchWriter
from analytics_core.services.stream_consumer import StreamBatchConsumer, decode_payload


@pytest.fixture
def consumer(duck_storage) -> StreamBatchConsumer:
    return StreamBatchConsumer(BatchWriter(duck_storage))


class TestDecode:
    def test_bytes_and_str(self, raw_event):
        encoded = json.dumps(raw_event)
        assert decode_payload(encoded.encode("utf-8"), 0) == raw_event
        assert decode_payload(encoded, 0) == raw_event

    @pytest.mark.parametrize("payload", [
        b"\xff\xfe{",
        b"{not json",
        b"[1, 2]",
        b"null",
        b'{"value": NaN}',
        b'{"value": -Infinity}',
        b'{"value": 1e999}',
    ])
    def test_rejects(self, payload):
        with pytest.raises(DecodeError) as exc_info:
            decode_payload(payload, 7)
        assert exc_info.value.index == 7


@pytest.mark.asyncio
async def test_bad_payloads_are_skipped(consumer, duck_storage, raw_event, filters):
    missing_project = dict(raw_event)
    del missing_project["projectId"]

    result = await consumer.consume_batch([
        json.dumps(raw_event).encode(),
        b"{broken",
        json.dumps(missing_project).encode(),
    ])

    assert result.received == 3
    assert result.inserted == 1
    assert [(s.index, s.error_type) for s in result.skipped] == [(1, "DecodeError"), (2, "ValidationError")]
    assert (await duck_storage.get_overview(filters)).total_pageviews == 1


@pytest.mark.asyncio
async def test_no_valid_payloads_is_a_no_op(mocker):
    writer = mocker.AsyncMock(spec=BatchWriter)
    consumer = StreamBatchConsumer(writer)

    result = await consumer.consume_batch([b"", b"42"])

    assert result.inserted == 0
    assert len(result.skipped) == 2
    writer.insert_batch.assert_not_called()


@pytest.mark.asyncio
async def test_whole_batch_in_one_insert(mocker, raw_event):
    writer = mocker.AsyncMock(spec=BatchWriter)
    writer.insert_batch.return_value = 3
    consumer = StreamBatchConsumer(writer)

    result = await consumer.consume_batch([json.dumps(raw_event)] * 3, timeout=2.5)

    writer.insert_batch.assert_awaited_once()
    rows = writer.insert_batch.call_args.args[0]
    assert len(rows) == 3
    assert writer.insert_batch.call_args.kwargs == {"timeout": 2.5}
    assert result.inserted == 3


@pytest.mark.asyncio
async def test_insert_failure_propagates(mocker, raw_event):
    storage = mocker.AsyncMock()
    storage.insert_events.side_effect = StorageError("connection lost", operation="insert_events")
    consumer = StreamBatchConsumer(BatchWriter(storage))

    with pytest.raises(StorageError) as exc_info:
        await consumer.consume_batch([json.dumps(raw_event)])

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_non_finite_vital_is_skipped(consumer, duck_storage, filters):
    good = (b'{"projectId": "proj-1", "eventType": "webvital", "timestamp": 1705312800000,'
            b' "properties": {"metric": "LCP", "value": 2400, "rating": "good"}}')
    poisoned = good.replace(b"2400", b"NaN")

    result = await consumer.consume_batch([good, poisoned])

    assert result.inserted == 1
    assert [(s.index, s.error_type) for s in result.skipped] == [(1, "DecodeError")]
    [lcp] = await duck_storage.get_web_vitals(filters)
    assert lcp.p50 == 2400
    assert lcp.good_count == 1
