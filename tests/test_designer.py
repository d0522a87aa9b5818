import io

import pytest
from PIL import Image

import designer
import settings
from designer import DesignSession
from errors import DesignInProgress, ImageLoadFailed, NoDesignUploaded, UploadFailed


class FakeUploader:
    def __init__(self):
        self.calls = []

    def __call__(self, data, filename, content_type):
        self.calls.append((filename, content_type, data))
        return f"/api/images/{len(self.calls)}-{filename}"


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def session(uploader, tmp_path):
    return DesignSession(uploader, base_loader=lambda color, view: designer.garment_image(color, view, assets_dir=str(tmp_path)))


@pytest.mark.parametrize("scale,price", [(50, 400), (75, 450), (100, 500), (150, 600)])
def test_design_price(scale, price):
    assert designer.design_price(scale) == price


def test_rotation_steps_wrap(session):
    session.rotate_left()
    assert session.rotation == 345
    session.rotate_right()
    session.rotate_right()
    assert session.rotation == 15
    session.set_rotation(725)
    assert session.rotation == 5


def test_finish_uploads_logo_and_composite(session, uploader, logo_png):
    session.upload_logo(logo_png)
    url = session.finish()
    assert session.is_finished
    assert url == session.composite_image_url
    assert [c[0] for c in uploader.calls] == ["logo.png", "design.png"]
    assert uploader.calls[1][2] == session.render()

    design = session.to_custom_design()
    assert design.is_finished
    assert design.composite_image_url == url
    assert design.image == "/api/images/1-logo.png"
    assert design.price == 500


def test_any_edit_drops_the_composite(session, uploader, logo_png):
    session.upload_logo(logo_png)
    session.finish()
    session.set_scale(150)
    assert not session.is_finished
    assert session.composite_image_url is None
    assert session.to_custom_design().price == 600

    session.finish()
    # the logo is only uploaded once
    assert [c[0] for c in uploader.calls] == ["logo.png", "design.png", "design.png"]


def test_finish_without_logo(session):
    with pytest.raises(NoDesignUploaded):
        session.finish()


def test_upload_failures_are_wrapped(logo_png):
    def broken(data, filename, content_type):
        raise ConnectionError("offline")

    session = DesignSession(broken, base_loader=lambda c, v: Image.new("RGBA", (10, 10)))
    session.upload_logo(logo_png)
    with pytest.raises(UploadFailed):
        session.finish()
    assert not session.is_finished


def test_finish_is_not_reentrant(logo_png):
    session = None

    def reentrant(data, filename, content_type):
        return session.finish()

    session = DesignSession(reentrant, base_loader=lambda c, v: Image.new("RGBA", (10, 10)))
    session.upload_logo(logo_png)
    with pytest.raises(DesignInProgress):
        session.finish()
    # the guard is released afterwards
    session.uploader = lambda data, filename, content_type: "/api/images/x.png"
    assert session.finish() == "/api/images/x.png"


def test_logo_validation(session, logo_png, monkeypatch):
    with pytest.raises(ImageLoadFailed):
        session.upload_logo(b"plain text")
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 10)
    with pytest.raises(ImageLoadFailed):
        session.upload_logo(logo_png)


def test_bmp_logo_is_stored_as_png(session, uploader, logo_bmp):
    session.upload_logo(logo_bmp)
    assert Image.open(io.BytesIO(session.logo)).format == "PNG"
    session.finish()
    assert [(c[0], c[1]) for c in uploader.calls] == [("logo.png", "image/png"), ("design.png", "image/png")]


def test_adjustment_bounds(session):
    with pytest.raises(ValueError):
        session.set_scale(20)
    with pytest.raises(ValueError):
        session.set_position(60, 0)
    with pytest.raises(ValueError):
        session.set_color("purple")
    with pytest.raises(ValueError):
        session.set_size("XXL")


def test_garment_swatch_and_photo(tmp_path):
    swatch = designer.garment_image("black", assets_dir=str(tmp_path))
    assert swatch.getpixel((5, 5))[:3] == (0, 0, 0)
    Image.new("RGBA", (20, 20), (1, 2, 3, 255)).save(tmp_path / "tshirt-red-front.png")
    photo = designer.garment_image("red", assets_dir=str(tmp_path))
    assert photo.getpixel((5, 5))[:3] == (1, 2, 3)
