"""
Thin MQTT client — connect/disconnect/subscribe, hand messages to MessageHandler,
and publish config updates back to devices.
"""

import asyncio
import logging
from typing import List, Optional

import paho.mqtt.client as mqtt

from facility_ingest.ingestion.message_handler import MessageHandler

logger = logging.getLogger(__name__)


class MQTTClient:
    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        topics: List[str],
        client_id: str = "",
        username: str = "",
        password: str = "",
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topics = topics

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        self.message_count: int = 0
        self.connected: bool = False

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.handler: Optional[MessageHandler] = None

    async def connect(self, handler: MessageHandler) -> None:
        self.loop = asyncio.get_running_loop()
        self.handler = handler
        self.client.connect(self.broker_host, self.broker_port, 60)
        self.client.loop_start()
        logger.info(f"Connecting to MQTT broker: {self.broker_host}:{self.broker_port}")

    async def disconnect(self) -> None:
        self.client.loop_stop()
        self.client.disconnect()
        logger.info("Disconnected from MQTT broker")

    def publish(self, topic: str, message: str, qos: int = 0, retain: bool = False) -> bool:
        info = self.client.publish(topic, message, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to publish to {topic}: {mqtt.error_string(info.rc)}")
            return False
        logger.info(f"Published config update to {topic}")
        return True

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code == 0:
            self.connected = True
            logger.info("Connected to MQTT broker")
            for topic in self.topics:
                client.subscribe(topic, qos=0)
                logger.info(f"Subscribed to: {topic}")
        else:
            logger.error(f"Connection failed with code {reason_code}")

    def _on_message(self, client, userdata, msg):
        self.message_count += 1
        logger.debug(f"Received: {msg.topic} -> {msg.payload[:200]!r}")
        if self.loop and self.handler:
            future = asyncio.run_coroutine_threadsafe(
                self.handler.handle(msg.topic, msg.payload), self.loop
            )
            future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Error processing message", exc_info=future.exception())

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        self.connected = False
        if reason_code != 0:
            logger.warning(f"Unexpected disconnection ({reason_code}), paho will reconnect")

    def is_connected(self) -> bool:
        return self.connected
