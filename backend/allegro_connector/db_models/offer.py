from sqlalchemy import Column, String, DateTime, Numeric, Text, Integer, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from allegro_connector.database import Base
import uuid


class AllegroOffer(Base):
    __tablename__ = "allegro_offers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    allegro_offer_id = Column(String(100), unique=True, nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id', ondelete='SET NULL'), index=True, nullable=True)

    title = Column(String(255))
    description = Column(Text)
    category_id = Column(String(100))

    price = Column(Numeric(12, 2))
    currency = Column(String(10))
    stock_quantity = Column(Integer)

    status = Column(String(50), index=True)
    publication_status = Column(String(50), index=True)

    images = Column(JSON)
    delivery_options = Column(JSON)
    payment_options = Column(JSON)

    # Last full Allegro payload; source of truth for fields a partial update leaves out.
    raw_data = Column(JSON)

    validation_status = Column(String(20), index=True)  # READY, WARNINGS, ERRORS
    validation_errors = Column(JSON)
    last_validated_at = Column(DateTime(timezone=True))

    sync_status = Column(String(20), index=True)  # PENDING, SYNCED, ERROR
    sync_source = Column(String(20))  # MANUAL, ALLEGRO_API, SALES_CENTER
    sync_error = Column(Text)
    last_synced_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="offers")
