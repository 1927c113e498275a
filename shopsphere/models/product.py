"""Product listing data models"""

from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


class ProductStatus(str, Enum):
    """Listing lifecycle status"""
    ACTIVE = "active"
    SOLD = "sold"


class ProductBase(BaseModel):
    """Base listing fields"""
    title: str
    price: Decimal
    description: str
    location: str
    is_negotiable: bool = False
    images: List[str] = Field(default_factory=list)


class ProductCreate(ProductBase):
    """Model for creating a new listing"""
    pass


class Product(ProductBase):
    """Complete listing model"""
    id: str
    seller_id: str
    status: ProductStatus = ProductStatus.ACTIVE
    sold_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    @property
    def primary_image(self) -> Optional[str]:
        return self.images[0] if self.images else None


class RecentView(BaseModel):
    """Marker that a user looked at a listing"""
    user_id: str
    product_id: str
    viewed_at: datetime

    class Config:
        from_attributes = True
