"""
Cart aggregate: the line items one user holds before checkout.

A line is either a catalog product (``kind="product"``) or a custom design
(``kind="custom_design"``). Stock is informational, adding to the cart never
reserves inventory.
"""
from typing import Optional, Union

from pydantic import ValidationError as SchemaError

from errors import InvalidCartItem, InvalidQuantity, NotFound, ValidationError
from schemas import CustomDesign, CustomDesignCartItem, ProductCartItem, design_price
from storage import Storage

# Older clients post this product id for custom t-shirts
CUSTOM_PRODUCT_ID = "custom-tshirt"


def add_item(storage: Storage, user_id: str, product_id: Optional[str] = None, quantity: int = 1, size: Optional[str] = None, color: Optional[str] = None, custom_design: Optional[Union[CustomDesign, dict]] = None) -> dict:
    if product_id == CUSTOM_PRODUCT_ID:
        product_id = None
    if quantity < 1:
        raise InvalidQuantity()
    if product_id is None and custom_design is None:
        raise InvalidCartItem()
    if product_id is not None and custom_design is not None:
        raise InvalidCartItem("Cart item cannot reference both a product and a custom design")

    if custom_design is not None:
        try:
            design = custom_design if isinstance(custom_design, CustomDesign) else CustomDesign.model_validate(custom_design)
        except SchemaError as e:
            raise ValidationError(f"Invalid custom design: {e.errors()[0]['msg']}")
        # The server prices designs; a client-sent price is ignored
        design = design.model_copy(update={"price": design_price(design.scale)})
        item = CustomDesignCartItem(
            user_id=user_id,
            custom_design=design,
            quantity=quantity,
            size=size or design.size,
            color=color or design.color,
        )
        return storage.insert_cart_item(item)

    if not storage.get_product(product_id):
        raise NotFound("Product not found")
    existing = storage.find_cart_line(user_id, product_id, size, color)
    if existing:
        return storage.increment_cart_quantity(existing["id"], quantity)
    item = ProductCartItem(user_id=user_id, product_id=product_id, quantity=quantity, size=size, color=color)
    return storage.insert_cart_item(item)


def _owned_item(storage: Storage, item_id: str, user_id: Optional[str]) -> dict:
    item = storage.get_cart_item(item_id)
    if not item or (user_id is not None and item["user_id"] != user_id):
        raise NotFound("Cart item not found")
    return item


def update_quantity(storage: Storage, item_id: str, quantity: int, user_id: Optional[str] = None) -> dict:
    if quantity < 1:
        raise InvalidQuantity()
    _owned_item(storage, item_id, user_id)
    item = storage.update_cart_item(item_id, {"quantity": quantity})
    if not item:
        raise NotFound("Cart item not found")
    return item


def remove_item(storage: Storage, item_id: str, user_id: Optional[str] = None):
    _owned_item(storage, item_id, user_id)
    if not storage.delete_cart_item(item_id):
        raise NotFound("Cart item not found")


def clear_cart(storage: Storage, user_id: str) -> int:
    return storage.clear_cart(user_id)


def list_items(storage: Storage, user_id: str) -> list:
    """Cart lines joined with their product; ``product`` is None for designs."""
    items = []
    for item in storage.list_cart_items(user_id):
        product = storage.get_product(item["product_id"]) if item.get("kind") == "product" else None
        items.append({**item, "product": product})
    return items


def unit_price(item: dict) -> float:
    if item.get("kind") == "custom_design":
        return float(design_price(item["custom_design"]["scale"]))
    product = item.get("product")
    if not product:
        raise NotFound("Product in cart is no longer available")
    return float(product["price"])
