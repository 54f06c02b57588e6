import boto3
import json
import logging

from botocore.exceptions import BotoCoreError, ClientError

from grantkeeper.models.events import AuditEvent

logger = logging.getLogger(__name__)

EVENT_SOURCE = "grantkeeper"


class EventBusPublisher:
    """
    Publishes typed audit events to EventBridge.

    Publishing is fire-and-forget: a failed put is logged and never fails the
    operation that produced the event.
    """
    def __init__(self, event_bus_name: str = "default", client=None):
        self.event_bus_name = event_bus_name
        self.client = client or boto3.client("events")

    def __repr__(self):
        return f"EventBusPublisher(bus={self.event_bus_name})"

    def put(self, event: AuditEvent) -> None:
        entry = {
            "Source": EVENT_SOURCE,
            "DetailType": event.event_type,
            "Detail": json.dumps(event.detail(), default=str),
            "EventBusName": self.event_bus_name,
        }
        try:
            resp = self.client.put_events(Entries=[entry])
        except (ClientError, BotoCoreError) as e:
            # Fail-open: auditing must not block access changes
            logger.error(f"Failed to publish {event.event_type} event: {e}")
            return
        if resp.get("FailedEntryCount", 0):
            logger.error(f"EventBridge rejected {event.event_type} event: {resp.get('Entries')}")
        else:
            logger.debug(f"Published {event.event_type} event")
