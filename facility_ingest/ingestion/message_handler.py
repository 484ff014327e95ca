"""
MessageHandler — per-message pipeline for sensor and config topics.

parse -> tenant gate -> sensor engine (+ background notification) | migrator
"""

import asyncio
import logging
from typing import Optional, Set

from facility_ingest.errors import StoreError, TenantGateError
from facility_ingest.ingestion.context import TenantContext, TenantGate
from facility_ingest.ingestion.topic_parser import ConfigEvent, Ignored, SensorEvent, parse_message
from facility_ingest.notifications.fanout import NotificationFanout
from facility_ingest.provisioning.migrator import ReprovisioningMigrator
from facility_ingest.sensors.state_engine import NotificationTrigger, SensorStateEngine

logger = logging.getLogger(__name__)


class MessageHandler:
    def __init__(
        self,
        gate: TenantGate,
        engine: SensorStateEngine,
        fanout: NotificationFanout,
        migrator: ReprovisioningMigrator,
    ):
        self.gate = gate
        self.engine = engine
        self.fanout = fanout
        self.migrator = migrator
        self._notifications: Set[asyncio.Task] = set()

    async def handle(self, topic: str, payload: bytes) -> None:
        message = parse_message(topic, payload)
        if isinstance(message, Ignored):
            logger.debug(f"Ignoring {topic}: {message.reason}")
            return

        try:
            tenant = await self.gate.load(message.company)
        except TenantGateError as e:
            logger.info(f"{e}. Ignoring data.")
            return
        except StoreError as e:
            logger.error(f"Tenant lookup failed for {topic}: {e}")
            return
        except Exception:
            logger.exception(f"Unexpected error loading tenant for {topic}")
            return

        try:
            if isinstance(message, SensorEvent):
                await self._handle_sensor(tenant, message)
            elif isinstance(message, ConfigEvent):
                await self.migrator.apply(tenant, message)
        except StoreError as e:
            logger.error(f"Store error while processing {topic}: {e}")
        except Exception:
            logger.exception(f"Unexpected error while processing {topic}")

    async def _handle_sensor(self, tenant: TenantContext, event: SensorEvent) -> None:
        update = await self.engine.apply(event)
        if update is not None and update.notification is not None:
            self._spawn_notification(tenant, update.notification)

    def _spawn_notification(self, tenant: TenantContext, trigger: NotificationTrigger) -> None:
        task = asyncio.create_task(self._notify(tenant, trigger))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, tenant: TenantContext, trigger: NotificationTrigger) -> None:
        try:
            result = await self.fanout.dispatch(tenant, trigger)
            logger.info(
                f"Notification '{trigger.title}' for {tenant.company_id}: "
                f"{result.sent}/{result.recipients} sent, {result.deleted} reminders cleared"
            )
        except StoreError as e:
            logger.error(f"Notification fan-out failed for {tenant.company_id}: {e}")
        except Exception:
            logger.exception(f"Notification '{trigger.title}' failed for {tenant.company_id}")

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding notification tasks."""
        if self._notifications:
            await asyncio.wait(list(self._notifications), timeout=timeout)
