from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Float, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from smartfarm.database import Base

class SensorHistoryRecord(Base):
    __tablename__ = "sensor_history"

    # BIGSERIAL on Postgres, plain INTEGER rowid on SQLite
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    device_id = Column(String, ForeignKey("devices.id", ondelete="CASCADE"), index=True)
    temperature = Column(Float)
    humidity = Column(Float)
    soil_moisture = Column(Integer)
    pump_active = Column(Boolean, default=False)
    recorded_at = Column(DateTime, index=True, nullable=False)

    device = relationship("DeviceRecord", back_populates="samples")
