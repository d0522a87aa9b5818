"""
Flatten a garment image and a user logo into a single PNG.

Placement is expressed in the display units of the customize preview: the
preview is ``PREVIEW_WIDTH`` units wide and the logo sits in a
``DESIGN_BOX`` square at ``scale`` percent, offset by ``x``/``y`` from the
center and rotated clockwise by ``rotation`` degrees. The output canvas is
always ``CANVAS_SIZE`` pixels, so identical inputs give identical bytes.
"""
import base64
import binascii
import io
from dataclasses import dataclass
from typing import Tuple, Union
from urllib.parse import unquote_to_bytes

from PIL import Image, ImageOps, UnidentifiedImageError

from errors import ImageLoadFailed, NoDesignUploaded, UploadFailed

CANVAS_SIZE = (800, 1000)
PREVIEW_WIDTH = 400
DESIGN_BOX = 128
DISPLAY_TO_CANVAS = CANVAS_SIZE[0] / PREVIEW_WIDTH

ImageSource = Union[bytes, str, Image.Image]


@dataclass(frozen=True)
class Placement:
    scale: int = 100
    rotation: int = 0
    x: int = 0
    y: int = 0

    def __post_init__(self):
        if not 50 <= self.scale <= 150:
            raise ValueError("scale must be between 50 and 150")
        if not 0 <= self.rotation < 360:
            raise ValueError("rotation must be in [0, 360)")
        if not (-50 <= self.x <= 50 and -50 <= self.y <= 50):
            raise ValueError("x and y must be between -50 and 50")


def decode_data_uri(uri: str) -> bytes:
    header, sep, payload = uri.partition(",")
    if not uri.startswith("data:") or not sep:
        raise ImageLoadFailed("Not a data URI")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ImageLoadFailed("Data URI is not valid base64")
    return unquote_to_bytes(payload)


def load_image(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        return source
    data = decode_data_uri(source) if isinstance(source, str) else source
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageLoadFailed(f"Image could not be decoded: {e}")
    return image


def overlay_geometry(placement: Placement) -> Tuple[int, int, float, float]:
    """Overlay box ``(width, height, center_x, center_y)`` in canvas pixels."""
    edge = round(DESIGN_BOX * DISPLAY_TO_CANVAS * placement.scale / 100)
    center_x = CANVAS_SIZE[0] / 2 + placement.x * DISPLAY_TO_CANVAS
    center_y = CANVAS_SIZE[1] / 2 + placement.y * DISPLAY_TO_CANVAS
    return edge, edge, center_x, center_y


def compose(base: ImageSource, overlay: ImageSource, placement: Placement) -> Image.Image:
    if overlay is None:
        raise NoDesignUploaded()
    base_image = load_image(base).convert("RGBA").resize(CANVAS_SIZE, Image.Resampling.LANCZOS)
    logo = load_image(overlay).convert("RGBA")

    canvas = Image.new("RGBA", CANVAS_SIZE, (255, 255, 255, 255))
    canvas.alpha_composite(base_image)

    width, height, center_x, center_y = overlay_geometry(placement)
    logo = ImageOps.contain(logo, (width, height), method=Image.Resampling.LANCZOS)
    if placement.rotation:
        # PIL rotates counter-clockwise
        logo = logo.rotate(-placement.rotation, resample=Image.Resampling.BICUBIC, expand=True)

    layer = Image.new("RGBA", CANVAS_SIZE, (0, 0, 0, 0))
    layer.paste(logo, (round(center_x - logo.width / 2), round(center_y - logo.height / 2)))
    return Image.alpha_composite(canvas, layer).convert("RGB")


def render_png(base: ImageSource, overlay: ImageSource, placement: Placement) -> bytes:
    image = compose(base, overlay, placement)
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="PNG")
    except (OSError, ValueError) as e:
        raise UploadFailed(f"Composite could not be encoded: {e}")
    return buffer.getvalue()
