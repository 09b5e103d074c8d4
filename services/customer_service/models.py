from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from shared.config.database import Base


class Customer(Base):
    """Storefront account as seen by checkout: identity, addresses, processor reference."""

    __tablename__ = "customers"
    __table_args__ = {"schema": "customer_schema"}

    id = Column(String(64), primary_key=True, index=True) # same value as the session's `sub`
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)

    shipping_street = Column(String(255), nullable=True)
    shipping_city = Column(String(120), nullable=True)
    shipping_postal_code = Column(String(20), nullable=True)
    shipping_country = Column(String(80), nullable=True)

    use_same_address = Column(Boolean, default=True, nullable=False)
    billing_street = Column(String(255), nullable=True)
    billing_city = Column(String(120), nullable=True)
    billing_postal_code = Column(String(20), nullable=True)
    billing_country = Column(String(80), nullable=True)

    processor_customer_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
