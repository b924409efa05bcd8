"""Pipeline lifecycle publisher over pypubsub."""

import logging
from typing import Any, Callable, Dict, Optional

from pubsub import pub

from ..models.events import PipelineEvent, topic_for

logger = logging.getLogger(__name__)


class PipelineEventPublisher:
    """Publishes ``PipelineEvent`` payloads to ``pipeline.<stage>`` topics.

    Listeners receive a single ``event`` keyword argument. A listener that
    raises is logged and never fails the pipeline run that published.
    """

    def __init__(self, publisher: Optional[Any] = None):
        """Initialize pipeline event publisher.

        Args:
            publisher: pypubsub Publisher to use, defaults to the global one
        """
        self.publisher = publisher or pub.getDefaultPublisher()
        self.published_count = 0

    def publish(self, command_id: str, stage: str, data: Optional[Dict[str, Any]] = None) -> PipelineEvent:
        """Publish a stage event and return it."""
        event = PipelineEvent(command_id=command_id, stage=stage, data=dict(data or {}))
        try:
            self.publisher.sendMessage(topic_for(stage), event=event)
            self.published_count += 1
            logger.debug(f"Published {stage} for {command_id}")
        except Exception as e:
            logger.error(f"Listener failed handling {stage} for {command_id}: {e}")
        return event

    def subscribe(self, stage: str, listener: Callable[..., None]) -> None:
        """Register ``listener(event=...)`` for one stage."""
        self.publisher.subscribe(listener, topic_for(stage))

    def unsubscribe(self, stage: str, listener: Callable[..., None]) -> None:
        self.publisher.unsubscribe(listener, topic_for(stage))
