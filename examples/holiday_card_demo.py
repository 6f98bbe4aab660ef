"""Minimal demonstration: chat, streaming and the holiday card pipeline."""

import asyncio
import sys

from venice_core.agents.conversation import Conversation
from venice_core.api.service import create_holiday_card
from venice_core.providers.venice_client import VeniceClient


async def main(photo: str) -> None:
    conv = Conversation(VeniceClient(), system_prompt="You write short, warm holiday greetings.")
    caption = await conv.send("Write a six word holiday card greeting.")
    print("Caption:", caption)

    await conv.send_stream("Now a longer version, please.", on_delta=lambda d: print(d.content, end="", flush=True))
    print()

    path = await create_holiday_card(photo, caption=caption)
    print("Saved:", path)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "photo.jpg"))
