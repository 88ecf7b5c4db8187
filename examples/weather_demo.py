"""Minimal demonstration of the weather chat orchestrator."""

import asyncio
import json
import sys
import uuid

from dotenv import load_dotenv

# 加载.env文件中的环境变量（需在导入 weather_core 之前）
load_dotenv()

from weather_core.api.service import run_weather_chat, stream_weather_chat  # noqa: E402


async def main(question: str, stream: bool) -> None:
    session_id = f"demo-{uuid.uuid4().hex[:8]}"
    print("User:", question)
    if not stream:
        reply = await run_weather_chat(question, session_id)
        print(f"Assistant ({reply['modelDisplayName']}):", reply["response"])
        return

    async for line in stream_weather_chat(question, session_id):
        if line.strip() == "[DONE]":
            break
        event = json.loads(line)
        if event["type"] == "content":
            print(event["data"]["text"], end="", flush=True)
        elif event["type"] == "routing":
            print(f"[routing -> {event['data']['modelDisplayName']}]")
        elif event["type"] == "tool":
            print(f"[tool {event['data']['name']} {event['data']['arguments']}]")
    print()


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--stream"]
    asyncio.run(main(" ".join(args) or "What's the weather like in Paris today?", "--stream" in sys.argv))
