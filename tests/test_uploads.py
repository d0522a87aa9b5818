import pytest

import settings
import uploads
from errors import ValidationError


def test_upload_and_serve(client, auth_headers, logo_png):
    res = client.post("/api/upload", files={"file": ("logo.png", logo_png, "image/png")}, headers=auth_headers)
    assert res.status_code == 200
    url = res.json()["url"]
    assert url.startswith("/api/images/") and url.endswith(".png")
    served = client.get(url)
    assert served.status_code == 200
    assert served.content == logo_png


def test_upload_requires_auth(client, logo_png):
    assert client.post("/api/upload", files={"file": ("logo.png", logo_png, "image/png")}).status_code == 401


def test_upload_rejects_non_images(client, auth_headers):
    res = client.post("/api/upload", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=auth_headers)
    assert res.status_code == 400
    assert res.json() == {"message": "Only image uploads are allowed"}


def test_upload_size_limit(client, auth_headers, logo_png, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 16)
    res = client.post("/api/upload", files={"file": ("logo.png", logo_png, "image/png")}, headers=auth_headers)
    assert res.status_code == 400


def test_missing_image(client):
    assert client.get("/api/images/missing.png").status_code == 404


def test_attached_assets(client, tmp_path):
    assets = tmp_path / "assets"
    assets.mkdir()
    (assets / "cricket-jersey.png").write_bytes(b"png")
    assert client.get("/attached_assets/cricket-jersey.png").content == b"png"
    assert client.get("/attached_assets/football-jersey.png").status_code == 404


@pytest.mark.parametrize("name", ["", "../secret", "a/b.png", "a\\b.png"])
def test_unsafe_filenames(name, tmp_path):
    with pytest.raises(ValidationError):
        uploads.resolve_file(tmp_path, name)


def test_save_image_names_by_type(tmp_path):
    name = uploads.save_image(b"\xff\xd8", "image/JPEG", tmp_path, 1024)
    assert name.endswith(".jpg")
    assert (tmp_path / name).read_bytes() == b"\xff\xd8"
    with pytest.raises(ValidationError):
        uploads.save_image(b"", "image/png", tmp_path, 1024)
