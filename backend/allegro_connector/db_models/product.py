from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from allegro_connector.database import Base
import uuid


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(100), index=True)  # SKU
    name = Column(String(255))
    ean = Column(String(20), index=True)

    stock_quantity = Column(Integer, default=0)

    # Product id in the catalog/warehouse services, when it has been migrated there.
    catalog_product_id = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    offers = relationship("AllegroOffer", back_populates="product")

    @property
    def warehouse_product_id(self) -> str:
        return self.catalog_product_id or self.id
