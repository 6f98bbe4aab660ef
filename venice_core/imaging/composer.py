"""卡片合成与导出（Pillow）。

- compose_card: 以生成结果为底图（画布尺寸 = 底图尺寸），叠加可选的文字与
  带边框的 “original” 原图缩略图。
- capture_card: 整张卡片的“截图”版本：按 scale 放大后铺在纯色背景上。
- export_png / to_data_url / save_card: 导出为 PNG 字节、data URL 或文件。
"""

import asyncio
import base64
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Union

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from venice_core.domain.exceptions import ImageDecodeError


@dataclass
class CardLayout:
    thumb_ratio: float = 0.25
    margin_ratio: float = 0.03
    border_width: int = 6
    border_color: str = "#ffffff"
    caption_color: str = "#ffffff"
    shadow_color: str = "#000000"
    font_ratio: float = 0.05
    thumb_label: str = "original"


def decode_image(data: bytes) -> Image.Image:
    """解码图片字节，失败时抛出 ImageDecodeError。"""

    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ImageDecodeError(code="IMAGE_DECODE_ERROR", message=f"Failed to decode image: {e}") from e
    return img


async def load_image(data: bytes) -> Image.Image:
    return await asyncio.to_thread(decode_image, data)


def _font(size: int):
    return ImageFont.load_default(size=size)


def _draw_caption(card: Image.Image, caption: str, layout: CardLayout, margin: int) -> None:
    draw = ImageDraw.Draw(card)
    font = _font(max(12, int(card.height * layout.font_ratio)))
    left, top, right, bottom = draw.textbbox((0, 0), caption, font=font)
    x = margin
    y = card.height - margin - (bottom - top) - top
    # 阴影
    draw.text((x + 2, y + 2), caption, font=font, fill=layout.shadow_color)
    draw.text((x, y), caption, font=font, fill=layout.caption_color)


def _draw_thumbnail(card: Image.Image, original: Image.Image, layout: CardLayout, margin: int) -> None:
    thumb = original.convert("RGBA")
    thumb.thumbnail((max(1, int(card.width * layout.thumb_ratio)), max(1, int(card.height * layout.thumb_ratio))))
    bw = layout.border_width
    x = card.width - margin - bw - thumb.width
    y = card.height - margin - bw - thumb.height
    draw = ImageDraw.Draw(card)
    draw.rectangle(
        [x - bw, y - bw, x + thumb.width + bw - 1, y + thumb.height + bw - 1],
        fill=layout.border_color,
    )
    card.paste(thumb, (x, y), thumb)
    if layout.thumb_label:
        font = _font(max(10, thumb.height // 8))
        label_box = draw.textbbox((0, 0), layout.thumb_label, font=font)
        label_y = max(0, y - bw - (label_box[3] - label_box[1]) - label_box[1] - 4)
        draw.text((x, label_y), layout.thumb_label, font=font, fill=layout.caption_color)


def compose_card(
    generated: Image.Image,
    original: Optional[Image.Image] = None,
    caption: Optional[str] = None,
    layout: Optional[CardLayout] = None,
) -> Image.Image:
    layout = layout or CardLayout()
    card = generated.convert("RGBA")
    margin = max(4, int(min(card.size) * layout.margin_ratio))
    if caption:
        _draw_caption(card, caption, layout, margin)
    if original is not None:
        _draw_thumbnail(card, original, layout, margin)
    return card


def capture_card(
    card: Image.Image,
    scale: float = 2,
    background: str = "#fffaf0",
    padding_ratio: float = 0.04,
) -> Image.Image:
    """把卡片按 scale 放大并铺在背景色画布上。"""

    pad = int(min(card.size) * padding_ratio)
    width = int((card.width + 2 * pad) * scale)
    height = int((card.height + 2 * pad) * scale)
    canvas = Image.new("RGB", (width, height), background)
    scaled = card.convert("RGBA").resize((int(card.width * scale), int(card.height * scale)), Image.Resampling.LANCZOS)
    canvas.paste(scaled, (int(pad * scale), int(pad * scale)), scaled)
    return canvas


def export_png(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(img: Image.Image) -> str:
    encoded = base64.b64encode(export_png(img)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def save_card(img: Image.Image, path: Union[str, Path]) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(export_png(img))
    return target
