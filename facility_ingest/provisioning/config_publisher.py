"""ConfigChangePublisher — republishes device configs to devices over MQTT.

Follows the device_configs change stream and publishes each inserted or
modified config, retained, to ``update/{company}/{mac_address}`` so a device
receives its latest config when it (re)connects.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from facility_ingest.errors import StoreError
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import Change, DocumentStore

logger = logging.getLogger(__name__)

PUBLISHED_CHANGES = ("insert", "update", "replace")


def update_topic(company: str, mac_address: str) -> str:
    return f"update/{company}/{mac_address}"


class ConfigChangePublisher:
    def __init__(self, store: DocumentStore, transport, retry_delay_sec: float = 5):
        self.store = store
        self.transport = transport
        self.retry_delay_sec = retry_delay_sec
        self._task: Optional[asyncio.Task] = None

    def publish_config(self, config: Dict[str, Any]) -> bool:
        company = config.get("company")
        mac_address = config.get("mac_address")
        if not company or not mac_address:
            logger.debug("Config change without company/mac_address, not published")
            return False
        topic = update_topic(company, mac_address)
        message = json.dumps(config, default=str)
        return self.transport.publish(topic, message, qos=0, retain=True)

    async def handle_change(self, change: Change) -> bool:
        if change.kind not in PUBLISHED_CHANGES or not change.data:
            return False
        return self.publish_config(change.data)

    async def run(self) -> None:
        """Follow the change stream forever, reopening it after failures."""
        prefix = f"{paths.DEVICE_CONFIGS}/"
        while True:
            try:
                async for change in self.store.watch(prefix):
                    await self.handle_change(change)
                logger.warning("Config change stream ended, reopening")
            except StoreError as e:
                logger.error(f"Config change stream failed: {e}")
            await asyncio.sleep(self.retry_delay_sec)

    def start(self) -> None:
        self._task = asyncio.create_task(self.run())
        logger.info("Config change publisher started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
