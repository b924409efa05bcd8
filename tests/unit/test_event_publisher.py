"""Tests for the pypubsub pipeline event publisher."""

import pytest
from pubsub.core import Publisher

from voice2action.models.events import PARSING_COMPLETE, TRANSCRIPTION_COMPLETE, topic_for
from voice2action.services.event_publisher import PipelineEventPublisher


@pytest.fixture
def publisher():
    return PipelineEventPublisher(Publisher())


@pytest.mark.unit
class TestPipelineEventPublisher:

    def test_topic_names(self):
        assert topic_for(PARSING_COMPLETE) == "pipeline.parsing_complete"

    def test_subscribers_receive_events(self, publisher):
        received = []

        def listener(event):
            received.append(event)

        publisher.subscribe(TRANSCRIPTION_COMPLETE, listener)
        event = publisher.publish("cmd-1", TRANSCRIPTION_COMPLETE, {"transcript": "hello"})

        assert received == [event]
        assert event.command_id == "cmd-1"
        assert event.data == {"transcript": "hello"}
        assert publisher.published_count == 1

    def test_only_matching_stage_is_delivered(self, publisher):
        received = []

        def listener(event):
            received.append(event.stage)

        publisher.subscribe(PARSING_COMPLETE, listener)
        publisher.publish("cmd-1", TRANSCRIPTION_COMPLETE)
        publisher.publish("cmd-1", PARSING_COMPLETE)

        assert received == [PARSING_COMPLETE]

    def test_unsubscribe(self, publisher):
        received = []

        def listener(event):
            received.append(event)

        publisher.subscribe(PARSING_COMPLETE, listener)
        publisher.unsubscribe(PARSING_COMPLETE, listener)
        publisher.publish("cmd-1", PARSING_COMPLETE)

        assert received == []

    def test_listener_failure_is_contained(self, publisher):
        def listener(event):
            raise RuntimeError("boom")

        publisher.subscribe(PARSING_COMPLETE, listener)
        event = publisher.publish("cmd-1", PARSING_COMPLETE, {"intent": "x"})

        assert event.stage == PARSING_COMPLETE
        assert publisher.published_count == 0

    def test_publish_copies_data(self, publisher):
        data = {"a": 1}
        event = publisher.publish("cmd-1", PARSING_COMPLETE, data)
        data["b"] = 2
        assert event.data == {"a": 1}
