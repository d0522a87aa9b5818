import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, EmailStr, Field

import cart
import orders
import settings
import theme as theme_tokens
import uploads
from errors import ConflictError, Forbidden, NotFound, ValidationError, register_exception_handlers
from schemas import Address, Banner, Category, CustomDesign, OrderStatus, PaymentStatus, Product, Role, ShippingAddress, Theme
from security import get_current_user, login, public_user, require_admin, signup
from storage import Storage, build_storage, get_storage

settings.configure_logging()
logger = structlog.get_logger("kamio.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = app.state.storage
    seed_catalog(storage)
    ensure_admin(storage)
    yield


app = FastAPI(title="Kamio Store API", lifespan=lifespan)
app.state.storage = build_storage()
app.state.cart_cleanup = orders.CartCleanupQueue()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        duration = (time.perf_counter() - start) * 1000
        logger.info("api_request", method=request.method, path=request.url.path, status=response.status_code, duration_ms=round(duration))
    return response


def get_cart_cleanup(request: Request) -> orders.CartCleanupQueue:
    return request.app.state.cart_cleanup


# Routes
@app.get("/")
def root():
    return {"message": "Kamio Store API is running"}


@app.get("/api/health")
def health(storage: Storage = Depends(get_storage), cleanup: orders.CartCleanupQueue = Depends(get_cart_cleanup)):
    return {
        "backend": "running",
        "storage": storage.name,
        "database_url": "set" if os.getenv("DATABASE_URL") else "not set",
        "pending_cart_cleanups": len(cleanup),
    }


# Auth endpoints
class SignupIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)


class LoginIn(BaseModel):
    email: str
    password: str


@app.post("/api/auth/signup")
def signup_route(payload: SignupIn, storage: Storage = Depends(get_storage)):
    user, token = signup(storage, payload.email, payload.password, payload.name)
    return {"user": user, "token": token}


@app.post("/api/auth/login")
def login_route(payload: LoginIn, storage: Storage = Depends(get_storage)):
    user, token = login(storage, payload.email, payload.password)
    return {"user": user, "token": token}


@app.get("/api/profile")
def profile(user=Depends(get_current_user)):
    return user


# Category endpoints
@app.get("/api/categories")
def list_categories(storage: Storage = Depends(get_storage)):
    return storage.list_categories()


@app.post("/api/categories", dependencies=[Depends(require_admin)])
def create_category(payload: Category, storage: Storage = Depends(get_storage)):
    return storage.create_category(payload)


@app.get("/api/categories/{slug}")
def get_category(slug: str, storage: Storage = Depends(get_storage)):
    category = storage.get_category_by_slug(slug)
    if not category:
        raise NotFound("Category not found")
    return category


@app.get("/api/categories/{category_id}/products")
def list_category_products(category_id: str, storage: Storage = Depends(get_storage)):
    return storage.list_products(category_id)


# Product endpoints
class ProductUpdate(BaseModel):
    slug: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    inventory: Optional[int] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    is_active: Optional[bool] = None


@app.get("/api/products")
def list_products(category_id: Optional[str] = Query(None, alias="categoryId"), storage: Storage = Depends(get_storage)):
    return storage.list_products(category_id)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, storage: Storage = Depends(get_storage)):
    product = storage.get_product(product_id) or storage.get_product_by_slug(product_id)
    if not product:
        raise NotFound("Product not found")
    return product


@app.post("/api/products", dependencies=[Depends(require_admin)])
def create_product(payload: Product, storage: Storage = Depends(get_storage)):
    if payload.category_id and not storage.get_category(payload.category_id):
        raise ValidationError("Category not found")
    return storage.create_product(payload)


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate, storage: Storage = Depends(get_storage)):
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No fields to update")
    product = storage.update_product(product_id, fields)
    if not product:
        raise NotFound("Product not found")
    return product


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, storage: Storage = Depends(get_storage)):
    if not storage.delete_product(product_id):
        raise NotFound("Product not found")
    return {"message": "Product deleted successfully"}


# Cart endpoints (per-user)
class CartItemIn(BaseModel):
    product_id: Optional[str] = None
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None
    custom_design: Optional[CustomDesign] = None


class QuantityIn(BaseModel):
    quantity: int


@app.get("/api/cart")
def get_cart(user=Depends(get_current_user), storage: Storage = Depends(get_storage), cleanup: orders.CartCleanupQueue = Depends(get_cart_cleanup)):
    cleanup.drain(storage, user["id"])
    return cart.list_items(storage, user["id"])


@app.post("/api/cart")
def add_to_cart(payload: CartItemIn, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return cart.add_item(
        storage,
        user["id"],
        product_id=payload.product_id,
        quantity=payload.quantity,
        size=payload.size,
        color=payload.color,
        custom_design=payload.custom_design,
    )


@app.put("/api/cart/{item_id}")
def update_cart_item(item_id: str, payload: QuantityIn, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return cart.update_quantity(storage, item_id, payload.quantity, user_id=user["id"])


@app.delete("/api/cart/{item_id}")
def remove_from_cart(item_id: str, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    cart.remove_item(storage, item_id, user_id=user["id"])
    return {"message": "Item removed from cart"}


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    cart.clear_cart(storage, user["id"])
    return {"message": "Cart cleared successfully"}


# Checkout / Orders
class OrderIn(BaseModel):
    address_id: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_status: PaymentStatus = "pending"


class StatusIn(BaseModel):
    status: OrderStatus


def _owned(doc, user, label):
    if not doc or doc["user_id"] != user["id"]:
        raise NotFound(f"{label} not found")
    return doc


@app.get("/api/orders")
def list_my_orders(user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return orders.list_orders(storage, user["id"])


@app.post("/api/orders")
def create_order(payload: OrderIn, user=Depends(get_current_user), storage: Storage = Depends(get_storage), cleanup: orders.CartCleanupQueue = Depends(get_cart_cleanup)):
    cleanup.drain(storage, user["id"])
    if user["id"] in cleanup:
        # The cart still holds the lines of the previous order
        raise ConflictError("Your previous order is still being finalized, try again shortly")
    if payload.address_id:
        address = _owned(storage.get_address(payload.address_id), user, "Address")
        shipping_address = ShippingAddress.model_validate(address)
    elif payload.shipping_address:
        shipping_address = payload.shipping_address
    else:
        raise ValidationError("Shipping address is required")
    items = cart.list_items(storage, user["id"])
    return orders.create_order(storage, user["id"], items, shipping_address, payload.payment_status, cleanup=cleanup)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    order = orders.get_order(storage, order_id)
    if order["user_id"] != user["id"] and user.get("role") != "admin":
        raise Forbidden()
    return order


# Address book
class AddressIn(ShippingAddress):
    label: str = "Home"
    is_default: bool = False


class AddressUpdate(BaseModel):
    label: Optional[str] = None
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=5)
    line1: Optional[str] = Field(None, min_length=1)
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = Field(None, min_length=4, max_length=10)
    is_default: Optional[bool] = None


@app.get("/api/addresses")
def list_addresses(user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return storage.list_addresses(user["id"])


@app.post("/api/addresses")
def create_address(payload: AddressIn, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return storage.create_address(Address(user_id=user["id"], **payload.model_dump()))


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, payload: AddressUpdate, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    address = _owned(storage.get_address(address_id), user, "Address")
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("is_default") is False and address.get("is_default"):
        raise ValidationError("Set another address as default instead")
    return storage.update_address(address_id, fields)


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    _owned(storage.get_address(address_id), user, "Address")
    storage.delete_address(address_id)
    return {"message": "Address deleted"}


@app.post("/api/addresses/{address_id}/default")
def set_default_address(address_id: str, user=Depends(get_current_user), storage: Storage = Depends(get_storage)):
    if not storage.set_default_address(user["id"], address_id):
        raise NotFound("Address not found")
    return storage.get_address(address_id)


# Banners
class BannerUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    button_text: Optional[str] = None
    redirect_url: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@app.get("/api/banners")
@app.get("/api/banners/active")
def list_active_banners(storage: Storage = Depends(get_storage)):
    return storage.list_active_banners()


@app.get("/api/admin/banners", dependencies=[Depends(require_admin)])
def admin_list_banners(storage: Storage = Depends(get_storage)):
    return storage.list_banners()


@app.post("/api/admin/banners", dependencies=[Depends(require_admin)])
def admin_create_banner(payload: Banner, storage: Storage = Depends(get_storage)):
    return storage.create_banner(payload)


@app.put("/api/admin/banners/{banner_id}", dependencies=[Depends(require_admin)])
def admin_update_banner(banner_id: str, payload: BannerUpdate, storage: Storage = Depends(get_storage)):
    banner = storage.update_banner(banner_id, payload.model_dump(exclude_unset=True))
    if not banner:
        raise NotFound("Banner not found")
    return banner


@app.delete("/api/admin/banners/{banner_id}", dependencies=[Depends(require_admin)])
def admin_delete_banner(banner_id: str, storage: Storage = Depends(get_storage)):
    if not storage.delete_banner(banner_id):
        raise NotFound("Banner not found")
    return {"message": "Banner deleted"}


# Themes
class ThemeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    accent_color: Optional[str] = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    font_family: Optional[str] = None
    border_radius: Optional[str] = None
    is_active: Optional[bool] = None


@app.get("/api/theme")
def active_theme(storage: Storage = Depends(get_storage)):
    return storage.get_active_theme() or theme_tokens.DEFAULT_THEME


@app.get("/api/theme/tokens")
def active_theme_tokens(storage: Storage = Depends(get_storage)):
    return theme_tokens.style_tokens(storage.get_active_theme() or theme_tokens.DEFAULT_THEME)


@app.get("/api/admin/themes", dependencies=[Depends(require_admin)])
def admin_list_themes(storage: Storage = Depends(get_storage)):
    return storage.list_themes()


@app.post("/api/admin/themes", dependencies=[Depends(require_admin)])
def admin_create_theme(payload: Theme, storage: Storage = Depends(get_storage)):
    return storage.create_theme(payload)


@app.patch("/api/admin/themes/{theme_id}", dependencies=[Depends(require_admin)])
def admin_update_theme(theme_id: str, payload: ThemeUpdate, storage: Storage = Depends(get_storage)):
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("is_active") is False:
        raise ValidationError("Activate another theme instead")
    theme = storage.update_theme(theme_id, fields)
    if not theme:
        raise NotFound("Theme not found")
    return theme


@app.post("/api/admin/themes/{theme_id}/activate", dependencies=[Depends(require_admin)])
def admin_activate_theme(theme_id: str, storage: Storage = Depends(get_storage)):
    if not storage.activate_theme(theme_id):
        raise NotFound("Theme not found")
    return storage.get_theme(theme_id)


@app.delete("/api/admin/themes/{theme_id}", dependencies=[Depends(require_admin)])
def admin_delete_theme(theme_id: str, storage: Storage = Depends(get_storage)):
    theme = storage.get_theme(theme_id)
    if not theme:
        raise NotFound("Theme not found")
    if theme.get("is_active"):
        raise ConflictError("Activate another theme before deleting this one")
    storage.delete_theme(theme_id)
    return {"message": "Theme deleted"}


# Admin orders
@app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
def admin_list_orders(storage: Storage = Depends(get_storage)):
    return orders.list_orders(storage)


@app.patch("/api/admin/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def admin_update_order_status(order_id: str, payload: StatusIn, storage: Storage = Depends(get_storage)):
    return orders.set_status(storage, order_id, payload.status)


# Admin users
class RoleIn(BaseModel):
    role: Role


@app.get("/api/admin/users", dependencies=[Depends(require_admin)])
def admin_list_users(storage: Storage = Depends(get_storage)):
    return [public_user(u) for u in storage.list_users()]


@app.patch("/api/admin/users/{user_id}/role")
def admin_update_role(user_id: str, payload: RoleIn, admin=Depends(require_admin), storage: Storage = Depends(get_storage)):
    if user_id == admin["id"] and payload.role != "admin":
        raise ValidationError("You cannot remove your own admin role")
    user = storage.update_user(user_id, {"role": payload.role})
    if not user:
        raise NotFound("User not found")
    return public_user(user)


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(require_admin), storage: Storage = Depends(get_storage)):
    if user_id == admin["id"]:
        raise ValidationError("You cannot delete your own account")
    if not storage.delete_user(user_id):
        raise NotFound("User not found")
    return {"message": "User deleted"}


# Uploads and static files
@app.post("/api/upload")
async def upload_image(file: UploadFile = File(...), user=Depends(get_current_user)):
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    name = uploads.save_image(data, file.content_type, settings.UPLOAD_DIR, settings.MAX_UPLOAD_BYTES)
    logger.info("image_uploaded", user_id=user["id"], filename=name, size=len(data))
    return {"url": f"/api/images/{name}"}


@app.get("/api/images/{filename}")
def serve_uploaded_image(filename: str):
    return FileResponse(uploads.resolve_file(settings.UPLOAD_DIR, filename))


@app.get("/attached_assets/{filename}")
def serve_attached_asset(filename: str):
    return FileResponse(uploads.resolve_file(settings.ASSETS_DIR, filename))


# Seed data
CATEGORIES = [
    {"name": "Cricket", "slug": "cricket", "is_primary": True, "image": "/attached_assets/cricket-jersey.png", "description": "High-quality cricket apparel"},
    {"name": "Football", "slug": "football", "is_primary": True, "image": "/attached_assets/football-jersey.png", "description": "High-quality football apparel"},
    {"name": "E-Sports", "slug": "esports", "is_primary": True, "image": "/attached_assets/esports-jersey.png", "description": "High-quality esports apparel"},
    {"name": "Marathon", "slug": "marathon", "is_primary": True, "image": "/attached_assets/marathon-jersey.png", "description": "High-quality marathon apparel"},
    {"name": "Cycling", "slug": "cycling", "is_primary": True, "image": "/attached_assets/cycling-jersey.png", "description": "High-quality cycling apparel"},
    {"name": "Bikers", "slug": "bikers", "is_primary": True, "image": "/attached_assets/biker-jersey.png", "description": "High-quality biker apparel"},
    {"name": "Custom Flags", "slug": "custom-flags", "image": "/attached_assets/flags.png", "description": "High-quality custom flags"},
    {"name": "Corporate Gifts", "slug": "corporate-gifts", "image": "/attached_assets/gifts.png", "description": "High-quality corporate gifts"},
    {"name": "Corporate Uniforms", "slug": "corporate-uniforms", "image": "/attached_assets/uniforms.png", "description": "High-quality corporate uniforms"},
    {"name": "Stickers", "slug": "stickers", "image": "/attached_assets/stickers.png", "description": "High-quality stickers"},
]

SAMPLE_PRODUCTS = [
    {"slug": "classic-cricket-jersey", "name": "Classic Cricket Jersey", "category": "cricket", "price": 599, "original_price": 799, "sizes": ["S", "M", "L", "XL"], "colors": ["white", "blue"], "inventory": 40},
    {"slug": "pro-football-kit", "name": "Pro Football Kit", "category": "football", "price": 899, "sizes": ["S", "M", "L", "XL"], "colors": ["red", "black"], "inventory": 25},
    {"slug": "esports-team-jersey", "name": "E-Sports Team Jersey", "category": "esports", "price": 699, "sizes": ["M", "L", "XL"], "colors": ["black"], "inventory": 30},
    {"slug": "marathon-dry-fit-tee", "name": "Marathon Dry-Fit Tee", "category": "marathon", "price": 349, "sizes": ["XS", "S", "M", "L"], "colors": ["green", "white"], "inventory": 60},
]


def seed_catalog(storage: Storage) -> bool:
    """Insert the default categories and sample products into an empty catalog."""
    if storage.list_categories():
        return False
    by_slug = {}
    for c in CATEGORIES:
        by_slug[c["slug"]] = storage.create_category(Category(**c))
    for p in SAMPLE_PRODUCTS:
        data = {k: v for k, v in p.items() if k != "category"}
        storage.create_product(Product(category_id=by_slug[p["category"]]["id"], **data))
    logger.info("catalog_seeded", categories=len(CATEGORIES), products=len(SAMPLE_PRODUCTS))
    return True


def ensure_admin(storage: Storage):
    if not (settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD):
        return None
    existing = storage.get_user_by_email(settings.ADMIN_EMAIL)
    if existing:
        if existing.get("role") != "admin":
            storage.update_user(existing["id"], {"role": "admin"})
            logger.info("admin_promoted", email=settings.ADMIN_EMAIL)
        return existing["id"]
    user, _ = signup(storage, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD, settings.ADMIN_NAME, role="admin")
    logger.info("admin_created", email=settings.ADMIN_EMAIL)
    return user["id"]


@app.post("/api/seed", dependencies=[Depends(require_admin)])
def seed(storage: Storage = Depends(get_storage)):
    return {"seeded": seed_catalog(storage)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
