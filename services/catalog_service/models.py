from sqlalchemy import Column, Integer, String, Numeric
from shared.config.database import Base

class Product(Base):
    """Catalog row. Owned by the catalog component; checkout only reads it."""

    __tablename__ = "products"
    __table_args__ = {"schema": "catalog_schema"}

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False) # authoritative unit price
    stock = Column(Integer, nullable=False, default=0)
