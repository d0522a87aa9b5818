import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import settings
from main import app
from orders import CartCleanupQueue
from schemas import Category, Product, User
from security import create_access_token, get_password_hash
from storage import MemoryStorage


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def client(storage, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "ASSETS_DIR", str(tmp_path / "assets"))
    app.state.storage = storage
    app.state.cart_cleanup = CartCleanupQueue()
    return TestClient(app)


def _make_user(storage, email, role="user"):
    user = storage.create_user(User(email=email, password_hash=get_password_hash("secret123"), name=email.split("@")[0], role=role))
    return user, {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def user(storage):
    return _make_user(storage, "asha@kamio.in")


@pytest.fixture
def other_user(storage):
    return _make_user(storage, "ravi@kamio.in")


@pytest.fixture
def admin(storage):
    return _make_user(storage, "admin@kamio.in", role="admin")


@pytest.fixture
def auth_headers(user):
    return user[1]


@pytest.fixture
def admin_headers(admin):
    return admin[1]


@pytest.fixture
def category(storage):
    return storage.create_category(Category(name="Cricket", slug="cricket", is_primary=True))


@pytest.fixture
def product(storage, category):
    return storage.create_product(Product(slug="classic-cricket-jersey", name="Classic Cricket Jersey", price=450, category_id=category["id"], sizes=["M", "L"], colors=["white"], images=["/attached_assets/cricket-jersey.png"]))


@pytest.fixture
def shipping_address():
    return {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "line1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }


def png_bytes(size=(64, 64), color=(255, 0, 0, 255)):
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def logo_png():
    return png_bytes()


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def logo_bmp():
    buffer = io.BytesIO()
    Image.new("RGB", (48, 48), (0, 0, 255)).save(buffer, format="BMP")
    return buffer.getvalue()
