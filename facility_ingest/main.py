import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from facility_ingest.config import settings
from facility_ingest.db.mongo import close_mongo, init_mongo
from facility_ingest.ingestion.context import TenantGate
from facility_ingest.ingestion.message_handler import MessageHandler
from facility_ingest.ingestion.mqtt_client import MQTTClient
from facility_ingest.metering.usage_meter import UsageMeter
from facility_ingest.notifications.fanout import NotificationFanout
from facility_ingest.notifications.push import FcmPushClient
from facility_ingest.provisioning.config_publisher import ConfigChangePublisher
from facility_ingest.provisioning.migrator import ReprovisioningMigrator
from facility_ingest.sensors.state_engine import SensorStateEngine
from facility_ingest.storage.mongo_store import MongoDocumentStore

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.SERVICE_NAME}...")

    db = await init_mongo(settings.MONGODB_URL, settings.MONGODB_DB)
    store = MongoDocumentStore(db)
    await store.ensure_indexes(settings.LOG_TTL_DAYS)

    meter = UsageMeter(
        store,
        threshold=settings.USAGE_FLUSH_THRESHOLD,
        flush_interval_sec=settings.USAGE_FLUSH_INTERVAL_SEC,
    )
    meter.start()

    push = FcmPushClient.from_service_account_file(
        settings.FCM_CREDENTIALS_FILE,
        project_id=settings.FCM_PROJECT_ID,
        endpoint=settings.FCM_ENDPOINT,
    )
    if not push.configured:
        logger.warning("FCM_CREDENTIALS_FILE not set; push notifications will be skipped")

    handler = MessageHandler(
        gate=TenantGate(store),
        engine=SensorStateEngine(store, meter, log_ttl_days=settings.LOG_TTL_DAYS),
        fanout=NotificationFanout(store, push, meter),
        migrator=ReprovisioningMigrator(store, meter, genders=settings.GENDER_PARTITIONS),
    )

    mqtt_client = MQTTClient(
        broker_host=settings.MQTT_BROKER_HOST,
        broker_port=settings.MQTT_BROKER_PORT,
        topics=settings.MQTT_TOPICS,
        client_id=settings.MQTT_CLIENT_ID,
        username=settings.MQTT_USERNAME,
        password=settings.MQTT_PASSWORD,
    )
    await mqtt_client.connect(handler)

    publisher = ConfigChangePublisher(
        store, mqtt_client, retry_delay_sec=settings.CONFIG_WATCH_RETRY_SEC
    )
    publisher.start()

    app.state.mqtt_client = mqtt_client
    app.state.handler = handler
    app.state.meter = meter
    logger.info(f"{settings.SERVICE_NAME} ready!")

    yield

    await publisher.stop()
    await mqtt_client.disconnect()
    await handler.drain(timeout=10)
    await meter.stop()
    await push.close()
    close_mongo()
    logger.info(f"{settings.SERVICE_NAME} stopped")


app = FastAPI(title=settings.SERVICE_NAME, version="1.0.0", lifespan=lifespan)


@app.get("/health")
async def health():
    mqtt_client = app.state.mqtt_client
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "mqtt_connected": mqtt_client.is_connected() if mqtt_client else False,
        "messages_received": mqtt_client.message_count if mqtt_client else 0,
        "pending_notifications": app.state.handler.pending_notifications,
        "buffered_usage_tenants": app.state.meter.tenants,
    }


if __name__ == "__main__":
    uvicorn.run("facility_ingest.main:app", host=settings.HOST, port=settings.PORT)
