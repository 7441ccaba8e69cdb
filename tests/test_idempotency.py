import json

import pytest

from analytics_core.services.batch_writer import BatchWriter
from analytics_core.services.normalizer import EventNormalizer
from analytics_core.services.stream_consumer import StreamBatchConsumer


@pytest.fixture
def tracked_event(raw_event) -> dict:
    raw_event["messageId"] = "msg-42"
    return raw_event


def test_message_id_gives_stable_event_id(tracked_event):
    normalizer = EventNormalizer()
    assert normalizer.normalize(tracked_event).event_id == normalizer.normalize(tracked_event).event_id


def test_event_id_depends_on_content(tracked_event):
    normalizer = EventNormalizer()
    first = normalizer.normalize(tracked_event).event_id

    tracked_event["messageId"] = "msg-43"
    assert normalizer.normalize(tracked_event).event_id != first

    tracked_event["messageId"] = "msg-42"
    tracked_event["projectId"] = "proj-2"
    assert normalizer.normalize(tracked_event).event_id != first


@pytest.mark.asyncio
async def test_redelivered_batch_is_not_duplicated(duck_storage, tracked_event, raw_event, filters):
    consumer = StreamBatchConsumer(BatchWriter(duck_storage))
    untracked = dict(raw_event, messageId=None)
    batch = [json.dumps(tracked_event), json.dumps(untracked)]

    await consumer.consume_batch(batch)
    await consumer.consume_batch(batch)

    # only the event without a messageId is written twice
    overview = await duck_storage.get_overview(filters)
    assert overview.total_events == 3
