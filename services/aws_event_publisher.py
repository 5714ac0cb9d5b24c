"""
AWS Event Publisher Service

This sink publishes session events to AWS EventBridge, where rules route them
to downstream observability consumers. The boto3 call is blocking, so it runs
in a worker thread to keep the event loop free.
"""

import asyncio
import boto3
import json
import logging
from typing import Any, Dict
from botocore.exceptions import ClientError, NoCredentialsError

logger = logging.getLogger(__name__)


class EventBridgeEventSink:
    """
    Session event sink backed by AWS EventBridge.

    Each event becomes one EventBridge entry whose DetailType is the event
    name (session.activity, session.response, ...).
    """

    def __init__(
        self,
        region: str = "us-east-1",
        bus_name: str = "default",
        event_source: str = "com.dealcycle.gateway",
        client=None,
    ):
        self.region = region
        self.bus_name = bus_name
        self.event_source = event_source

        if client is not None:
            self.client = client
            return

        try:
            self.client = boto3.client("events", region_name=self.region)

            logger.info(
                f"EventBridge sink initialized: region={self.region}, "
                f"bus={self.bus_name}, source={self.event_source}"
            )
        except NoCredentialsError:
            logger.warning(
                "AWS credentials not found. Session events will be dropped. "
                "Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables."
            )
            self.client = None
        except Exception as e:
            logger.error(f"Failed to initialize EventBridge client: {e}")
            self.client = None

    def _put(self, name: str, payload: Dict[str, Any]) -> str:
        entry = {
            "Source": self.event_source,
            "DetailType": name,
            "Detail": json.dumps(payload, default=str),
            "EventBusName": self.bus_name
        }

        try:
            response = self.client.put_events(Entries=[entry])
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"]["Message"]
            logger.error(
                f"AWS API error publishing event: event={name}, "
                f"error_code={error_code}, error_message={error_message}"
            )
            raise

        if response["FailedEntryCount"] > 0:
            failed_entry = response["Entries"][0]
            error_code = failed_entry.get("ErrorCode", "Unknown")
            error_message = failed_entry.get("ErrorMessage", "Unknown error")
            raise RuntimeError(f"EventBridge put_events failed: {error_code} - {error_message}")

        return response["Entries"][0]["EventId"]

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        if self.client is None:
            logger.debug(f"EventBridge sink disabled, dropping event: event={name}")
            return

        event_id = await asyncio.to_thread(self._put, name, payload)
        logger.debug(f"Event published: event={name}, event_id={event_id}")
