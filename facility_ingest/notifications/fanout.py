"""
NotificationFanout — turns a notification trigger into push sends.

Recipients are resolved from the store, deduplicated per trigger by
(recipient token, location, gender), and sent concurrently. One failed send
never stops the others. Vacancy reminders are one-shot: every matching
subscription is deleted after the sends, delivered or not.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from facility_ingest.errors import StoreError
from facility_ingest.ingestion.context import TenantContext
from facility_ingest.metering.usage_meter import READ, WRITE, UsageMeter
from facility_ingest.sensors.rules import JANITORS, REMINDERS
from facility_ingest.sensors.state_engine import NotificationTrigger
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import DocumentStore, Snapshot

logger = logging.getLogger(__name__)

JANITOR_ROLE = "janitor"

RecipientKey = Tuple[str, str, str]


@dataclass
class FanoutResult:
    recipients: int = 0
    sent: int = 0
    failed: int = 0
    deleted: int = 0


def dedupe_recipients(
    snapshots: List[Snapshot], token_field: str, location: str, gender: str
) -> List[str]:
    """Unique tokens in first-seen order; documents without a token are skipped."""
    seen: Dict[RecipientKey, str] = {}
    for snap in snapshots:
        token = snap.data.get(token_field)
        if not token:
            continue
        key = (token, snap.data.get("location", location), snap.data.get("gender", gender))
        seen.setdefault(key, token)
    return list(seen.values())


class NotificationFanout:
    def __init__(self, store: DocumentStore, push, meter: UsageMeter):
        self.store = store
        self.push = push
        self.meter = meter

    async def dispatch(self, tenant: TenantContext, trigger: NotificationTrigger) -> FanoutResult:
        if trigger.audience == REMINDERS:
            return await self.notify_vacancy(tenant, trigger)
        if trigger.audience == JANITORS:
            return await self.notify_janitors(tenant, trigger)
        logger.warning(f"Unknown notification audience '{trigger.audience}', skipping")
        return FanoutResult()

    async def notify_vacancy(self, tenant: TenantContext, trigger: NotificationTrigger) -> FanoutResult:
        identity = trigger.identity
        collection = paths.reminder_collection(tenant.company_id)
        subscriptions = await self.store.query(
            collection,
            building=identity.building,
            location=identity.location,
            gender=identity.gender,
        )
        self.meter.record_op(tenant.company_id, READ, len(subscriptions))
        if not subscriptions:
            return FanoutResult()

        tokens = dedupe_recipients(
            subscriptions, "recipient_token", identity.location, identity.gender
        )
        result = await self._send_all(tokens, trigger.title, trigger.body)

        for snap in subscriptions:
            try:
                await self.store.delete(snap.collection, snap.key)
                self.meter.record_op(tenant.company_id, WRITE)
                result.deleted += 1
            except StoreError as e:
                logger.error(f"Failed to delete reminder {snap.key}: {e}")
        return result

    async def notify_janitors(self, tenant: TenantContext, trigger: NotificationTrigger) -> FanoutResult:
        identity = trigger.identity
        staff = await self.store.query(
            paths.USERS, company=tenant.company_id, role=JANITOR_ROLE, active=True
        )
        self.meter.record_op(tenant.company_id, READ, len(staff))
        tokens = dedupe_recipients(staff, "fcm_token", identity.location, identity.gender)
        return await self._send_all(tokens, trigger.title, trigger.body)

    async def _send_all(self, tokens: List[str], title: str, body: str) -> FanoutResult:
        results = await asyncio.gather(
            *(self.push.send(token, title, body) for token in tokens),
            return_exceptions=True,
        )
        outcome = FanoutResult(recipients=len(tokens))
        for token, res in zip(tokens, results):
            if isinstance(res, Exception):
                outcome.failed += 1
                logger.error(f"Error sending notification to {token[:12]}...: {res}")
            else:
                outcome.sent += 1
        return outcome
