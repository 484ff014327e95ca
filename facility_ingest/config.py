from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    SERVICE_NAME: str = "facility-ingest"
    HOST: str = "0.0.0.0"
    PORT: int = 8002
    LOG_LEVEL: str = "INFO"

    # MQTT
    MQTT_BROKER_HOST: str = "mqtt-broker"
    MQTT_BROKER_PORT: int = 1883
    MQTT_USERNAME: str = ""
    MQTT_PASSWORD: str = ""
    MQTT_CLIENT_ID: str = "Local_Server"
    MQTT_TOPICS: List[str] = ["sensor/#", "config/#"]

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "facility"

    # Firebase Cloud Messaging (HTTP v1, service account credentials)
    FCM_CREDENTIALS_FILE: str = ""
    FCM_PROJECT_ID: str = ""  # defaults to the service account project
    FCM_ENDPOINT: str = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

    # Usage metering (reads + writes buffered per tenant)
    USAGE_FLUSH_THRESHOLD: int = 2000
    USAGE_FLUSH_INTERVAL_SEC: int = 3600

    # Sensor log retention; None keeps entries forever
    LOG_TTL_DAYS: Optional[int] = None

    # Config documents are partitioned by gender
    GENDER_PARTITIONS: List[str] = ["pria", "wanita"]

    CONFIG_WATCH_RETRY_SEC: int = 5

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
