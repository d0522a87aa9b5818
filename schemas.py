"""
Database Schemas for Kamio Store

Each Pydantic model corresponds to a MongoDB collection (or a document embedded
in one). Collection name is the lowercase class name; cart items live in
``cartitem``.
"""
import math
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, model_validator

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "packed", "dispatched", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed"]

DESIGN_BASE_PRICE = 400


def design_price(scale: int) -> int:
    """Price of a custom t-shirt: the base price plus 2 per scale point over 50."""
    return DESIGN_BASE_PRICE + max(math.floor((scale - 50) * 2), 0)


class User(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    name: str = Field(..., min_length=1)
    role: Role = "user"


class Category(BaseModel):
    name: str = Field(..., min_length=2)
    slug: str = Field(..., min_length=2)
    description: Optional[str] = None
    image: Optional[str] = None
    is_primary: bool = False


class Product(BaseModel):
    slug: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    inventory: int = Field(0, ge=0, description="Informational only, never reserved")
    rating: float = Field(0, ge=0, le=5)
    is_active: bool = True


class CustomDesign(BaseModel):
    scale: int = Field(100, ge=50, le=150, description="Percent of the nominal design box")
    rotation: int = Field(0, ge=0, lt=360, description="Degrees, clockwise")
    x: int = Field(0, ge=-50, le=50)
    y: int = Field(0, ge=-50, le=50)
    image: Optional[str] = Field(None, description="Uploaded URL of the raw logo")
    composite_image_url: Optional[str] = Field(None, description="Uploaded URL of the rendered garment")
    is_finished: bool = False
    color: str = "white"
    size: str = "M"
    price: float = Field(..., ge=0)

    @model_validator(mode="after")
    def composite_only_when_finished(self):
        if self.composite_image_url and not self.is_finished:
            raise ValueError("composite_image_url is only kept on a finished design")
        return self


class ProductCartItem(BaseModel):
    kind: Literal["product"] = "product"
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class CustomDesignCartItem(BaseModel):
    kind: Literal["custom_design"] = "custom_design"
    user_id: str
    custom_design: CustomDesign
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


CartItem = Annotated[Union[ProductCartItem, CustomDesignCartItem], Field(discriminator="kind")]


class OrderItem(BaseModel):
    product_id: Optional[str] = None
    name: str
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None
    custom_design: Optional[CustomDesign] = None


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=5)
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str
    state: str
    pincode: str = Field(..., min_length=4, max_length=10)


class Order(BaseModel):
    user_id: str
    status: OrderStatus = "pending"
    subtotal: float = Field(..., ge=0)
    shipping_fee: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_status: PaymentStatus = "pending"


class Address(ShippingAddress):
    user_id: str
    label: str = Field("Home", description="e.g. Home, Office")
    is_default: bool = False


class Banner(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    image: Optional[str] = None
    button_text: str = "Customize Your T-Shirt Now"
    redirect_url: str = "/customize"
    is_active: bool = True
    priority: int = Field(0, description="Higher shows first")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Theme(BaseModel):
    name: str = Field(..., min_length=1)
    primary_color: str = "hsl(142 72% 35%)"
    secondary_color: str = "hsl(210 40% 96%)"
    accent_color: str = "hsl(46 96% 50%)"
    background_color: str = "hsl(0 0% 100%)"
    text_color: str = "hsl(222.2 84% 4.9%)"
    font_family: str = "Inter, system-ui, sans-serif"
    border_radius: str = "0.75rem"
    is_active: bool = False
