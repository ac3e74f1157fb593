import io
import math
import re
import xml.etree.ElementTree as ET

from PIL import Image

from ..errors import ValidationFailed

# Errors Pillow raises for data it cannot identify or decode.
_DECODE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def aspect_ratio(width: int, height: int) -> str:
    """Reduce ``width`` x ``height`` to its lowest-terms "W:H" ratio."""
    if width == 0 or height == 0:
        return "0:0"
    divisor = math.gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


class _FormatValidator:
    tokens: frozenset[str] = frozenset()
    pil_format = ""
    reason = ""

    def matches(self, token: str) -> bool:
        return token in self.tokens

    def validate(self, data: bytes, token: str) -> None:
        try:
            img = _decode(data)
        except _DECODE_ERRORS:
            raise ValidationFailed(self.reason)
        if img.format != self.pil_format:
            raise ValidationFailed(self.reason)


class JpegValidator(_FormatValidator):
    tokens = frozenset({"jpeg", "jpg"})
    pil_format = "JPEG"
    reason = "The image specified is not a jpeg"


class PngValidator(_FormatValidator):
    tokens = frozenset({"png"})
    pil_format = "PNG"
    reason = "The image specified is not a png"


class SvgValidator:
    reason = "The image specified is not a svg"

    def matches(self, token: str) -> bool:
        return token == "svg"

    def validate(self, data: bytes, token: str) -> None:
        try:
            root = ET.fromstring(data)
        except ET.ParseError:
            raise ValidationFailed(self.reason)
        # "{http://www.w3.org/2000/svg}svg" -> "svg"
        if root.tag.rsplit("}", 1)[-1] != "svg":
            raise ValidationFailed(self.reason)


class AspectRatioValidator:
    pattern = re.compile(r"\d+:\d+")

    def matches(self, token: str) -> bool:
        return self.pattern.fullmatch(token) is not None

    def validate(self, data: bytes, token: str) -> None:
        try:
            img = _decode(data)
        except _DECODE_ERRORS:
            raise ValidationFailed("The image specified is not a valid image")
        width, height = img.size
        if aspect_ratio(width, height) != token:
            raise ValidationFailed("The image specified does not match the aspect ratio")
