from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

SUPPORTED_IMAGE_FORMATS = (".jpg", ".jpeg", ".png", ".bmp", ".tiff")
MAX_FILE_SIZE = 10 * 1024 * 1024
EXPECTED_INPUT_SIZE = (1920, 1080)
TARGET_SIZE = (1280, 720)
JPEG_QUALITY = 92
BORDER_WIDTH = 10
BORDER_TOPS = (100, 620)
FONT_SIZE = 48
FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation2/LiberationSans-Bold.ttf",
    "/usr/share/fonts/truetype/noto/NotoSans-Bold.ttf",
    "/System/Library/Fonts/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
)


class ThumbnailError(Exception):
    """Raised when a thumbnail cannot be derived from the artwork."""


@dataclass
class ThumbnailResult:
    path: Path
    input_size: tuple[int, int]
    output_size: tuple[int, int]
    file_size: int


class ThumbnailGenerator:
    """Derives a 1280x720 JPEG thumbnail with a banner and title from 1920x1080 artwork."""

    def __init__(
        self,
        text: str = "Lofi BGM",
        font_candidates: Sequence[str] = FONT_CANDIDATES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.text = text
        self.font_candidates = tuple(font_candidates)
        self.log = logger or logging.getLogger(__name__)

    def is_eligible(self, artwork_path: Path | str) -> bool:
        try:
            with Image.open(artwork_path) as image:
                return image.size == EXPECTED_INPUT_SIZE
        except (UnidentifiedImageError, OSError) as exc:
            self.log.warning(
                "failed to check thumbnail eligibility",
                extra={"artwork": str(artwork_path), "error": str(exc)},
            )
            return False

    def generate(self, input_path: Path | str, output_path: Path | str) -> ThumbnailResult:
        source = Path(input_path)
        output = Path(output_path)
        self._validate_input(source)
        self.log.info("starting thumbnail generation", extra={"input": str(source), "output": str(output)})

        try:
            with Image.open(source) as image:
                input_size = image.size
                if input_size != EXPECTED_INPUT_SIZE:
                    raise ThumbnailError(
                        f"Invalid image dimensions: {input_size[0]}x{input_size[1]}. "
                        f"Expected: {EXPECTED_INPUT_SIZE[0]}x{EXPECTED_INPUT_SIZE[1]}"
                    )
                thumbnail = image.convert("RGB").resize(TARGET_SIZE, Image.Resampling.LANCZOS)
        except (UnidentifiedImageError, OSError) as exc:
            raise ThumbnailError(f"Image processing failed: {exc}") from exc

        self._draw_borders(thumbnail)
        self._draw_title(thumbnail)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            thumbnail.save(output, format="JPEG", quality=JPEG_QUALITY)
        except OSError as exc:
            raise ThumbnailError(f"Failed to save output file: {exc}") from exc

        self._validate_output(output)
        size = output.stat().st_size
        self.log.info("thumbnail generated", extra={"output": str(output), "bytes": size})
        return ThumbnailResult(path=output, input_size=input_size, output_size=TARGET_SIZE, file_size=size)

    def _validate_input(self, source: Path) -> None:
        if not source.is_file():
            raise ThumbnailError(f"Input file not found: {source}")
        size = source.stat().st_size
        if size == 0:
            raise ThumbnailError(f"Input file is empty: {source}")
        if size > MAX_FILE_SIZE:
            raise ThumbnailError(f"File size too large: {size} bytes (max: {MAX_FILE_SIZE} bytes)")
        if source.suffix.lower() not in SUPPORTED_IMAGE_FORMATS:
            raise ThumbnailError(
                f"Invalid image format: {source.suffix}. Supported formats: {', '.join(SUPPORTED_IMAGE_FORMATS)}"
            )

    def _draw_borders(self, image: Image.Image) -> None:
        draw = ImageDraw.Draw(image)
        width = image.size[0]
        for top in BORDER_TOPS:
            draw.rectangle((0, top, width - 1, top + BORDER_WIDTH - 1), fill=(255, 255, 255))

    def _draw_title(self, image: Image.Image) -> None:
        draw = ImageDraw.Draw(image)
        font = self._load_font()
        left, top, right, bottom = draw.textbbox((0, 0), self.text, font=font)
        x = (image.size[0] - (right - left)) // 2 - left
        y = (image.size[1] - (bottom - top)) // 2 - top
        draw.text((x, y), self.text, fill=(255, 255, 255), font=font)

    def _load_font(self) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
        for candidate in self.font_candidates:
            if Path(candidate).is_file():
                try:
                    return ImageFont.truetype(candidate, FONT_SIZE)
                except OSError:
                    self.log.debug("unusable font", extra={"font": candidate})
        self.log.warning("no system font found, using Pillow's default font")
        return ImageFont.load_default()

    def _validate_output(self, output: Path) -> None:
        if not output.exists():
            raise ThumbnailError(f"Output file was not created: {output}")
        if output.stat().st_size == 0:
            raise ThumbnailError(f"Output file is empty: {output}")
        try:
            with Image.open(output) as written:
                size = written.size
        except (UnidentifiedImageError, OSError) as exc:
            raise ThumbnailError(f"Output file is not a valid image: {exc}") from exc
        if size != TARGET_SIZE:
            raise ThumbnailError(f"Output file has incorrect dimensions: {size[0]}x{size[1]}")
