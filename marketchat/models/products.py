from sqlalchemy import Column, Integer, String, Numeric, JSON, DateTime, ForeignKey, func
from . import Base


class Product(Base):
    __tablename__ = 'products'
    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    images = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def cover_image(self):
        return self.images[0] if self.images else None
