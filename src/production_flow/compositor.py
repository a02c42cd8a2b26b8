"""Fixed-layout grid compositor.

The canvas size and slot count never change; whatever subset of artifacts is
available fills the first slots in row-major order and the rest stay as
background fill.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from typing import Sequence

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridLayout:
    width: int = 1920
    height: int = 1080
    columns: int = 5
    rows: int = 2
    padding: int = 24
    label_band: int = 56
    background: tuple[int, int, int] = (12, 12, 16)
    label_color: tuple[int, int, int] = (236, 236, 240)

    @property
    def slot_count(self) -> int:
        return self.columns * self.rows

    @property
    def cell_size(self) -> tuple[int, int]:
        cell_width = (self.width - self.padding * (self.columns + 1)) // self.columns
        cell_height = (self.height - self.padding * (self.rows + 1)) // self.rows
        return cell_width, cell_height

    def cell_origin(self, slot: int) -> tuple[int, int]:
        row, column = divmod(slot, self.columns)
        cell_width, cell_height = self.cell_size
        x = self.padding + column * (cell_width + self.padding)
        y = self.padding + row * (cell_height + self.padding)
        return x, y

    def image_box(self, slot: int) -> tuple[int, int, int, int]:
        """(x, y, width, height) of the picture area of ``slot``, above its label band."""
        x, y = self.cell_origin(slot)
        cell_width, cell_height = self.cell_size
        return x, y, cell_width, max(1, cell_height - self.label_band)


@dataclass(frozen=True)
class GridArtifact:
    locator: str
    label: str = ""


@dataclass
class CompositeResult:
    image: bytes
    content_type: str = "image/png"
    populated_slots: list[int] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def decode_data_url(locator: str) -> bytes:
    header, _, payload = locator.partition(",")
    if not header.startswith("data:") or not payload:
        raise ValueError("Malformed data URL")
    if header.endswith(";base64"):
        return base64.b64decode(payload)
    return payload.encode("utf-8")


class GridCompositor:
    def __init__(
        self,
        layout: GridLayout | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.layout = layout or GridLayout()
        self._client = client
        self._timeout_seconds = timeout_seconds

    async def compose(self, artifacts: Sequence[GridArtifact]) -> CompositeResult:
        """Download every artifact concurrently, then lay them out on the canvas."""
        slots = self.layout.slot_count
        if len(artifacts) > slots:
            logger.warning(
                "More artifacts than grid slots; extras are left out",
                extra={"artifacts": len(artifacts), "slots": slots},
            )
            artifacts = artifacts[:slots]

        if self._client is not None:
            payloads = await self._download_all(self._client, artifacts)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, follow_redirects=True) as client:
                payloads = await self._download_all(client, artifacts)

        return await asyncio.to_thread(self.render, list(zip(artifacts, payloads)))

    async def _download_all(
        self, client: httpx.AsyncClient, artifacts: Sequence[GridArtifact]
    ) -> list[bytes | None]:
        return list(await asyncio.gather(*(self._download(client, artifact) for artifact in artifacts)))

    async def _download(self, client: httpx.AsyncClient, artifact: GridArtifact) -> bytes | None:
        try:
            if artifact.locator.startswith("data:"):
                return decode_data_url(artifact.locator)
            response = await client.get(artifact.locator)
            response.raise_for_status()
            return response.content
        except (httpx.HTTPError, ValueError, binascii.Error) as exc:
            logger.warning(
                "Grid artifact download failed; slot stays empty",
                extra={"label": artifact.label, "error": str(exc)},
            )
            return None

    def render(self, entries: Sequence[tuple[GridArtifact, bytes | None]]) -> CompositeResult:
        layout = self.layout
        canvas = Image.new("RGB", (layout.width, layout.height), layout.background)
        draw = ImageDraw.Draw(canvas)
        font = ImageFont.load_default()
        result = CompositeResult(image=b"")

        for slot, (artifact, payload) in enumerate(entries):
            picture = _open_image(payload) if payload else None
            if picture is None:
                result.missing.append(artifact.label or artifact.locator[:64])
                continue

            x, y, box_width, box_height = layout.image_box(slot)
            fitted = ImageOps.contain(picture, (box_width, box_height))
            offset_x = x + (box_width - fitted.width) // 2
            offset_y = y + (box_height - fitted.height) // 2
            canvas.paste(fitted, (offset_x, offset_y))

            if artifact.label:
                _draw_label(draw, font, artifact.label, x, y + box_height, box_width, layout)
            result.populated_slots.append(slot)

        output = io.BytesIO()
        canvas.save(output, format="PNG")
        result.image = output.getvalue()
        return result


def _open_image(payload: bytes) -> Image.Image | None:
    try:
        image = Image.open(io.BytesIO(payload))
        return image.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.warning("Grid artifact is not a readable image", extra={"error": str(exc)})
        return None


def _draw_label(
    draw: ImageDraw.ImageDraw,
    font: ImageFont.ImageFont,
    label: str,
    x: int,
    band_top: int,
    band_width: int,
    layout: GridLayout,
) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    text_width, text_height = right - left, bottom - top
    text_x = x + max(0, (band_width - text_width) // 2)
    text_y = band_top + max(0, (layout.label_band - text_height) // 2)
    draw.text((text_x, text_y), label, fill=layout.label_color, font=font)


__all__ = ["CompositeResult", "GridArtifact", "GridCompositor", "GridLayout", "decode_data_url"]
