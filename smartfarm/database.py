from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from pydantic_settings import BaseSettings
import os
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./smartfarm.db")

    mqtt_broker: str = os.getenv("MQTT_BROKER", "mqtt://broker.hivemq.com")
    mqtt_username: str = os.getenv("MQTT_USERNAME", "")
    mqtt_password: str = os.getenv("MQTT_PASSWORD", "")
    mqtt_topic_prefix: str = os.getenv("MQTT_TOPIC_PREFIX", "smartfarm")

    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3000"))
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")

    offline_timeout_seconds: int = int(os.getenv("OFFLINE_TIMEOUT_SECONDS", "20"))
    liveness_interval_seconds: int = int(os.getenv("LIVENESS_INTERVAL_SECONDS", "30"))
    history_memory_limit: int = int(os.getenv("HISTORY_MEMORY_LIMIT", "720"))
    seed_default_device: bool = os.getenv("SEED_DEFAULT_DEVICE", "true").lower() == "true"

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

settings = Settings()

Base = declarative_base()

def make_session_factory(database_url: str):
    """Create an engine and a bound session factory for the given URL"""
    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # in-memory SQLite lives and dies with a single connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_utc_datetime() -> datetime:
    return datetime.now(timezone.utc)
