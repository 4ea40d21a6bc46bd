"""
Example 02: Streaming Chat
==========================

Demonstrates a ChatController driving the streaming pipeline end to end:
- Sending messages and watching partial content arrive
- Stopping a response mid-stream
- Lifecycle events on the EventBus
- Long-term memory with InMemoryMemoryService

The chat service is simulated in-process: an httpx.MockTransport serves
frames produced by parley.streaming.backend.completion_frames.

Run without an API key:
    PARLEY_MOCK_LLM=1 uv run python examples/02_streaming_chat.py

Run with a real LLM through litellm (set your provider key first):
    GEMINI_API_KEY=... uv run python examples/02_streaming_chat.py
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    import httpx

    from parley import (
        ChatController,
        EventBus,
        InMemoryMemoryService,
        ParleyConfig,
        StreamConfig,
        StreamingPipeline,
    )
    from parley.streaming.backend import completion_frames

    print("=== Parley Streaming Chat Example ===\n")

    async def chat_service(request: httpx.Request) -> httpx.Response:
        messages = json.loads(request.content)["messages"]

        async def body():
            async for line in completion_frames(messages):
                yield line.encode()
                await asyncio.sleep(0.02)  # pace the stream so it can be stopped

        return httpx.Response(200, content=body())

    bus = EventBus()
    bus.subscribe_all(lambda event, payload: print(f"  [event] {event}"))

    config = ParleyConfig(context_model="gpt-4", stream=StreamConfig(base_url="http://chat.local"))
    client = httpx.AsyncClient(transport=httpx.MockTransport(chat_service))
    pipeline = StreamingPipeline(config.stream, client=client, event_bus=bus)

    async with ChatController(
        config=config,
        pipeline=pipeline,
        event_bus=bus,
        memory=InMemoryMemoryService(),
        system_prompt="You are a helpful assistant.",
    ) as chat:
        result = await chat.send_message("My name is Ada and I love chess.")
        print(f"Assistant ({result.status}): {result.content}\n")

        # Stop the second response after a short while
        task = asyncio.create_task(chat.send_message("Tell me about chess openings."))
        await asyncio.sleep(0.1)
        chat.stop_streaming()
        result = await task
        print(f"Assistant ({result.status}): {chat.messages[-1].content}\n")

        report = chat.context_report()
        print(f"Context: {report.utilization:.2f}% used. {report.recommendation}")

    await client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
