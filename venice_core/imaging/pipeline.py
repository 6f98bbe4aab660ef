"""节日卡片流水线。

读取本地照片 -> 调用 image/edit -> 归一化结果 -> 合成卡片 -> 导出文件。

CardSession 持有一次会话中的全部状态（用户照片、生成图、合成卡片），
随会话创建、随 close() 释放，不依赖任何模块级全局对象。
"""

import asyncio
import base64
from pathlib import Path
from typing import Callable, Optional, Union

from PIL import Image

from venice_core.domain.exceptions import BusinessError, UserInputError
from venice_core.domain.models import ImageResult
from venice_core.imaging.composer import CardLayout, capture_card, compose_card, export_png, load_image, save_card
from venice_core.infrastructure.logging.logger import logger
from venice_core.prompts import load_prompt
from venice_core.providers.base import ProviderClient
from venice_core.providers.venice_client import VeniceClient

DOWNLOAD_NAME = "FestiveHolidayCard.png"
CARD_PROMPT = "holiday_card_edit"

StatusCallback = Callable[[str], None]


def strip_data_uri(value: Union[str, bytes]) -> str:
    """把 data URI / 原始字节统一成纯 base64 字符串。"""

    if isinstance(value, bytes):
        if not value:
            raise UserInputError(code="MISSING_IMAGE", message="Please upload a photo first")
        return base64.b64encode(value).decode("ascii")
    value = value.strip()
    if value.startswith("data:"):
        value = value.split(",", 1)[1] if "," in value else ""
    if not value:
        raise UserInputError(code="MISSING_IMAGE", message="Please upload a photo first")
    return value


async def generate_stylized_image(
    credential: Optional[str],
    local_image: Union[str, bytes, None],
    prompt: Optional[str] = None,
    client: Optional[ProviderClient] = None,
) -> ImageResult:
    """把本地照片提交到 image/edit，返回归一化后的图片引用。

    credential 或 local_image 缺失时直接抛出 UserInputError，不发起任何请求。
    """

    if not credential or not credential.strip():
        raise UserInputError(code="MISSING_API_KEY", message="Please enter your Venice API Key")
    if not local_image:
        raise UserInputError(code="MISSING_IMAGE", message="Please upload a photo first")
    image_b64 = strip_data_uri(local_image)
    client = client or VeniceClient(api_key=credential.strip())
    return await client.edit_image(image_b64, prompt or load_prompt(CARD_PROMPT))


class CardSession:
    """一次“上传照片 -> 生成卡片 -> 下载”的会话。

    同一实例同时只允许一个 create_card 在执行（busy 标记）；
    无论成功失败，结束后 busy 都会复位。
    """

    def __init__(
        self,
        credential: Optional[str],
        client: Optional[ProviderClient] = None,
        status_callback: Optional[StatusCallback] = None,
        layout: Optional[CardLayout] = None,
    ):
        self._credential = credential
        self._client = client
        self._on_status = status_callback
        self._layout = layout or CardLayout()
        self.photo_bytes: Optional[bytes] = None
        self.photo: Optional[Image.Image] = None
        self.generated: Optional[Image.Image] = None
        self.card: Optional[Image.Image] = None
        self.status = ""
        self.busy = False

    async def __aenter__(self) -> "CardSession":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    def update_status(self, message: str) -> None:
        self.status = message
        logger.info(message, extra={"extra": {"component": "card_session"}})
        if self._on_status is not None:
            self._on_status(message)

    async def load_photo(self, source: Union[str, Path, bytes]) -> Image.Image:
        """读取并解码用户照片（文件路径或原始字节）。"""

        if isinstance(source, (str, Path)):
            try:
                data = await asyncio.to_thread(Path(source).read_bytes)
            except OSError as e:
                raise UserInputError(code="PHOTO_READ_ERROR", message=f"Cannot read photo: {e}") from e
        else:
            data = source
        photo = await load_image(data)
        if self.photo is not None:
            self.photo.close()
        self.photo, self.photo_bytes = photo, data
        self.update_status("Photo loaded!")
        return photo

    async def create_card(self, caption: Optional[str] = None, prompt: Optional[str] = None) -> Image.Image:
        if not self._credential or not self._credential.strip():
            raise UserInputError(code="MISSING_API_KEY", message="Please enter your Venice API Key")
        if self.photo_bytes is None:
            raise UserInputError(code="MISSING_IMAGE", message="Please upload a photo first")
        if self.busy:
            raise UserInputError(code="BUSY", message="A card is already being generated")

        self.busy = True
        self.update_status("Painting your scene...")
        try:
            client = self._client or VeniceClient(api_key=self._credential.strip())
            result = await generate_stylized_image(self._credential, self.photo_bytes, prompt=prompt, client=client)
            data = await client.fetch_image_bytes(result)
            generated = await load_image(data)
            if self.generated is not None:
                self.generated.close()
            self.generated = generated
            card = compose_card(generated, self.photo, caption, self._layout)
            if self.card is not None:
                self.card.close()
            self.card = card
        except BusinessError as e:
            logger.error(
                f"Card generation failed: {e.message}",
                extra={"extra": {"code": e.code, "http_status": e.http_status}},
            )
            self.update_status("Error generating image")
            raise
        finally:
            self.busy = False
        self.update_status("Card ready!")
        return self.card

    def export(self, capture: bool = False, scale: float = 2, background: str = "#fffaf0") -> bytes:
        """导出 PNG 字节；capture=True 时导出带背景的放大截图版本。"""

        if self.card is None:
            raise UserInputError(code="NO_CARD", message="Create a card before exporting")
        img = capture_card(self.card, scale=scale, background=background) if capture else self.card
        return export_png(img)

    def download(self, target: Union[str, Path, None] = None, capture: bool = True) -> Path:
        """把卡片写入文件；target 为目录或缺省时使用默认文件名。"""

        if self.card is None:
            raise UserInputError(code="NO_CARD", message="Create a card before exporting")
        path = Path(target) if target is not None else Path.cwd()
        if path.is_dir():
            path = path / DOWNLOAD_NAME
        self.update_status("Generating download...")
        try:
            img = capture_card(self.card) if capture else self.card
            saved = save_card(img, path)
        except OSError:
            self.update_status("Download failed")
            raise
        self.update_status("Downloaded!")
        return saved

    def close(self) -> None:
        for img in (self.photo, self.generated, self.card):
            if img is not None:
                img.close()
        self.photo = self.generated = self.card = None
        self.photo_bytes = None
