from sqlalchemy import Column, String, Boolean, Float, Integer, DateTime
from sqlalchemy.orm import relationship
from smartfarm.database import Base

class DeviceRecord(Base):
    __tablename__ = "devices"

    id = Column(String, primary_key=True, index=True)  # "device_001"
    name = Column(String, nullable=False)
    zone = Column(String, default="garden")
    zone_label = Column(String)
    ip = Column(String)
    status = Column(String, default="offline")  # "online", "offline", "watering"
    temperature = Column(Float, nullable=True)
    humidity = Column(Float, nullable=True)
    soil_moisture = Column(Integer, nullable=True)
    pump_active = Column(Boolean, default=False)
    mode = Column(String, default="auto")  # "auto", "manual"
    last_update = Column(DateTime)
    created_at = Column(DateTime, nullable=False)

    samples = relationship(
        "SensorHistoryRecord",
        back_populates="device",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
