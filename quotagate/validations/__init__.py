from .pipeline import ValidationPipeline, Validator, policy_tokens
from .validators import (
    AspectRatioValidator,
    JpegValidator,
    PngValidator,
    SvgValidator,
    aspect_ratio,
)


def default_pipeline() -> ValidationPipeline:
    return ValidationPipeline(
        [JpegValidator(), PngValidator(), SvgValidator(), AspectRatioValidator()]
    )


__all__ = [
    "AspectRatioValidator",
    "JpegValidator",
    "PngValidator",
    "SvgValidator",
    "ValidationPipeline",
    "Validator",
    "aspect_ratio",
    "default_pipeline",
    "policy_tokens",
]
