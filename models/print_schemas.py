from typing import Optional

from pydantic import EmailStr, Field

from models.gallery import CamelModel


class PrintItem(CamelModel):
    product_sku: str = Field(..., description="Catalog product id (e.g. canvas-8x10) or its SKU")
    quantity: int = Field(default=1, ge=1, le=20)
    image_index: int = Field(default=1, ge=1, le=4)
    image_url: Optional[str] = None


class PrintAddress(CamelModel):
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    postal_code: str = Field(..., min_length=1)
    country_code: str = Field(..., min_length=2, max_length=2)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None


class PrintRecipient(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    address: PrintAddress


class PrintQuoteRequest(CamelModel):
    country_code: str = Field(..., min_length=2, max_length=2)
    items: list[PrintItem] = Field(..., min_length=1)


class PrintOrderRequest(CamelModel):
    recipient: PrintRecipient
    items: list[PrintItem] = Field(..., min_length=1)
    gallery_id: Optional[str] = None
