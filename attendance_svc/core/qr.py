from __future__ import annotations
import logging
from io import BytesIO
from typing import List, Sequence, Tuple

import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image, ImageDraw

from ..errors import AttendanceError, InvalidPayload, MalformedMatrix

logger = logging.getLogger(__name__)

Matrix = List[List[bool]]

QUIET_ZONE_MODULES = 4
DEFAULT_SIZE = 220
DEFAULT_FOREGROUND = "#0f172a"
DEFAULT_BACKGROUND = "white"
MAX_VERSION = 40
TRANSPARENT = (0, 0, 0, 0)

# --- encoder ---------------------------------------------------------------

def encode_matrix(payload: str, *, max_version: int = MAX_VERSION) -> Matrix:
    """Encode ``payload`` as a QR symbol at error-correction level M.

    Returns the module grid without quiet zone, ``True`` for dark modules.
    The smallest version that holds the payload is used; mask selection is
    the library's penalty-score search, so equal payloads give equal grids.
    """
    if not payload:
        raise InvalidPayload("Cannot encode an empty payload")
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        border=0,
    )
    qr.add_data(payload)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as exc:
        # qrcode 8 reports overflow as an out-of-range version (ValueError)
        raise InvalidPayload(f"Payload of {len(payload.encode('utf-8'))} bytes exceeds QR capacity") from exc
    if qr.version > max_version:
        raise InvalidPayload(f"Payload needs QR version {qr.version}, above the allowed {max_version}")
    # border=0 hands back the library's own module list, copy it
    return [[bool(cell) for cell in row] for row in qr.get_matrix()]

def _check_matrix(matrix: Sequence[Sequence[bool]]) -> int:
    n = len(matrix) if matrix is not None else 0
    if n == 0:
        raise MalformedMatrix("QR matrix is empty")
    for row in matrix:
        if len(row) != n:
            raise MalformedMatrix(f"QR matrix row of length {len(row)} in a {n}x{n} grid")
    return n

# --- renderer --------------------------------------------------------------

def raster_geometry(module_count: int, size: int, quiet_zone: int = QUIET_ZONE_MODULES) -> Tuple[int, int]:
    """Return ``(pixels_per_module, raster_side)``.

    Floor rounding means the raster can come out smaller than ``size``.
    """
    if size < 1:
        raise ValueError("size must be a positive integer")
    total_modules = module_count + 2 * quiet_zone
    per_module = max(1, size // total_modules)
    return per_module, total_modules * per_module

def render_matrix(
    matrix: Sequence[Sequence[bool]],
    size: int = DEFAULT_SIZE,
    *,
    quiet_zone: int = QUIET_ZONE_MODULES,
    foreground: str = DEFAULT_FOREGROUND,
    background: str = DEFAULT_BACKGROUND,
) -> Image.Image:
    n = _check_matrix(matrix)
    per_module, side = raster_geometry(n, size, quiet_zone)
    offset = quiet_zone * per_module

    image = Image.new("RGB", (side, side), background)
    draw = ImageDraw.Draw(image)
    for r, row in enumerate(matrix):
        for c, dark in enumerate(row):
            if not dark:
                continue
            x = offset + c * per_module
            y = offset + r * per_module
            draw.rectangle((x, y, x + per_module - 1, y + per_module - 1), fill=foreground)
    return image

class QRCodeCanvas:
    """A drawable surface showing the QR code of one value.

    ``update`` is the only way to change what is shown: it clears the
    surface, re-encodes and redraws. Failures leave the surface cleared and
    are kept on ``error`` instead of being raised.
    """

    def __init__(
        self,
        size: int = DEFAULT_SIZE,
        *,
        quiet_zone: int = QUIET_ZONE_MODULES,
        foreground: str = DEFAULT_FOREGROUND,
        background: str = DEFAULT_BACKGROUND,
        max_version: int = MAX_VERSION,
    ):
        self.size = size
        self.quiet_zone = quiet_zone
        self.foreground = foreground
        self.background = background
        self.max_version = max_version
        self.value = ""
        self.matrix: Matrix | None = None
        self.error: AttendanceError | ValueError | None = None
        self.surface = Image.new("RGBA", (max(size, 1), max(size, 1)), TRANSPARENT)

    @property
    def is_blank(self) -> bool:
        alpha_min, alpha_max = self.surface.getextrema()[3]
        return alpha_max == 0

    def clear(self) -> None:
        self.surface = Image.new("RGBA", self.surface.size, TRANSPARENT)

    def update(self, value: str, size: int | None = None) -> bool:
        if size is not None:
            self.size = size
        self.value = value
        self.matrix = None
        self.error = None
        self.clear()

        if not value:
            return False

        try:
            matrix = encode_matrix(value, max_version=self.max_version)
            image = render_matrix(
                matrix,
                self.size,
                quiet_zone=self.quiet_zone,
                foreground=self.foreground,
                background=self.background,
            )
        except (AttendanceError, ValueError) as exc:
            logger.warning("Failed to render QR code for %d-char value: %s", len(value), exc)
            self.error = exc
            return False

        self.matrix = matrix
        self.surface = image.convert("RGBA")
        return True

    def to_png(self) -> bytes:
        b = BytesIO()
        self.surface.save(b, format="PNG")
        return b.getvalue()
