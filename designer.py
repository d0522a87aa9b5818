"""
Customize-page state for one custom t-shirt.

A :class:`DesignSession` holds the slider values and the uploaded logo. Calling
:meth:`DesignSession.finish` renders the composite locally, uploads the raw
logo and the composite through the given uploader and marks the design
finished. :meth:`DesignSession.edit` (or any adjustment) drops the finished
state and the composite URL again.

The uploader is any callable ``(data, filename, content_type) -> url``, usually
``StorefrontClient.upload_image``.
"""
import io
import threading
from pathlib import Path
from typing import Callable, Optional, Union

import structlog
from PIL import Image

import compositor
import settings
from errors import DesignError, DesignInProgress, ImageLoadFailed, NoDesignUploaded, UploadFailed
from schemas import CustomDesign, design_price
from uploads import ALLOWED_IMAGE_TYPES

logger = structlog.get_logger(__name__)

ROTATION_STEP = 15
GARMENT_COLORS = {
    "white": "#FFFFFF",
    "black": "#000000",
    "red": "#E30613",
    "blue": "#3B82F6",
    "green": "#10B981",
}
SIZES = ("XS", "S", "M", "L", "XL")

Uploader = Callable[[bytes, str, str], str]


def garment_image(color: str, view: str = "front", assets_dir: Optional[str] = None) -> Image.Image:
    """Base garment for a color and view; a flat swatch when no photo is shipped."""
    path = Path(assets_dir or settings.ASSETS_DIR) / f"tshirt-{color}-{view}.png"
    if path.is_file():
        return compositor.load_image(path.read_bytes())
    return Image.new("RGBA", compositor.CANVAS_SIZE, GARMENT_COLORS[color])


class DesignSession:
    def __init__(self, uploader: Uploader, color: str = "white", size: str = "M", view: str = "front", base_loader: Optional[Callable[[str, str], Image.Image]] = None):
        self.uploader = uploader
        self.base_loader = base_loader or garment_image
        self.view = view
        self.color = "white"
        self.size = "M"
        self.scale = 100
        self.rotation = 0
        self.x = 0
        self.y = 0
        self.logo: Optional[bytes] = None
        self.image_url: Optional[str] = None
        self.composite_image_url: Optional[str] = None
        self.is_finished = False
        self._finishing = threading.Lock()
        self.set_color(color)
        self.set_size(size)

    # Adjustments
    def upload_logo(self, source: Union[bytes, str]):
        data = compositor.decode_data_uri(source) if isinstance(source, str) else source
        if len(data) > settings.MAX_UPLOAD_BYTES:
            raise ImageLoadFailed("Please select a file smaller than 10MB")
        image = compositor.load_image(data)
        if f"image/{(image.format or '').lower()}" not in ALLOWED_IMAGE_TYPES:
            # Re-encode formats the upload endpoint rejects (BMP, TIFF, MPO)
            buffer = io.BytesIO()
            image.convert("RGBA").save(buffer, format="PNG")
            data = buffer.getvalue()
            if len(data) > settings.MAX_UPLOAD_BYTES:
                raise ImageLoadFailed("Please select a file smaller than 10MB")
        self.edit()
        self.logo = data
        self.image_url = None

    def set_color(self, color: str):
        if color not in GARMENT_COLORS:
            raise ValueError(f"Unknown garment color: {color}")
        self.edit()
        self.color = color

    def set_size(self, size: str):
        if size not in SIZES:
            raise ValueError(f"Unknown size: {size}")
        self.edit()
        self.size = size

    def set_scale(self, scale: int):
        if not 50 <= scale <= 150:
            raise ValueError("scale must be between 50 and 150")
        self.edit()
        self.scale = scale

    def set_rotation(self, rotation: int):
        self.edit()
        self.rotation = rotation % 360

    def rotate_left(self):
        self.set_rotation(self.rotation - ROTATION_STEP)

    def rotate_right(self):
        self.set_rotation(self.rotation + ROTATION_STEP)

    def set_position(self, x: int, y: int):
        if not (-50 <= x <= 50 and -50 <= y <= 50):
            raise ValueError("x and y must be between -50 and 50")
        self.edit()
        self.x, self.y = x, y

    @property
    def placement(self) -> compositor.Placement:
        return compositor.Placement(scale=self.scale, rotation=self.rotation, x=self.x, y=self.y)

    @property
    def price(self) -> int:
        return design_price(self.scale)

    # Finishing
    def render(self) -> bytes:
        if self.logo is None:
            raise NoDesignUploaded()
        return compositor.render_png(self.base_loader(self.color, self.view), self.logo, self.placement)

    def finish(self) -> str:
        """Render and upload the composite; returns its URL."""
        if not self._finishing.acquire(blocking=False):
            raise DesignInProgress()
        try:
            png = self.render()
            image_url = self.image_url or self._upload(self.logo, "logo")
            composite_url = self._upload(png, "design", content_type="image/png")
        finally:
            self._finishing.release()
        self.image_url = image_url
        self.composite_image_url = composite_url
        self.is_finished = True
        logger.info("design_finished", composite_image_url=composite_url, scale=self.scale, rotation=self.rotation)
        return composite_url

    def edit(self):
        self.is_finished = False
        self.composite_image_url = None

    def _upload(self, data: bytes, stem: str, content_type: Optional[str] = None) -> str:
        if content_type is None:
            fmt = (compositor.load_image(data).format or "PNG").lower()
            content_type = f"image/{fmt}"
        filename = f"{stem}.{content_type.split('/', 1)[1]}"
        try:
            url = self.uploader(data, filename, content_type)
        except DesignError:
            raise
        except Exception as e:
            raise UploadFailed(f"Design upload failed: {e}")
        if not url:
            raise UploadFailed("Upload returned no URL")
        return url

    def to_custom_design(self) -> CustomDesign:
        return CustomDesign(
            scale=self.scale,
            rotation=self.rotation,
            x=self.x,
            y=self.y,
            image=self.image_url,
            composite_image_url=self.composite_image_url if self.is_finished else None,
            is_finished=self.is_finished,
            color=self.color,
            size=self.size,
            price=self.price,
        )
