from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(128), unique=True, index=True, nullable=False)  # Identity provider UID, immutable
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    subscription_tier = Column(String, default="FREEMIUM", nullable=False)
    monthly_generations_used = Column(Integer, default=0, nullable=False)
    monthly_generations_limit = Column(Integer, default=2, nullable=False)  # -1 means unlimited
    subscription_status = Column(String, default="active", nullable=False)  # active | past_due | cancelled
    stripe_customer_id = Column(String, index=True, nullable=True)
    stripe_subscription_id = Column(String, nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
