import io

import pytest
from PIL import Image

from venice_core.providers.retry import RetryController, RetryPolicy


class SettingsStub:
    venice_api_key = "test-key-0123456789"
    venice_base_url = "https://api.venice.ai/api/v1"
    default_model = "chat"
    http_timeout = 1.0
    image_timeout = 1.0
    retry_max_attempts = 3
    retry_base_delay = 0.0
    retry_max_delay = 0.0
    retry_server_errors = False
    rate_limit_low_water_requests = 5
    rate_limit_low_water_tokens = 1000
    max_context_messages = 20


@pytest.fixture
def settings_stub():
    return SettingsStub()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry(sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return RetryController(RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0), sleep=fake_sleep)


def png_bytes(size=(64, 48), color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_png():
    return png_bytes
