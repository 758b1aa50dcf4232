import asyncio
import logging
import sys

from app.client.session import ClientSession
from app.config import get_config


async def main(user_a: str = "alice", user_b: str = "bob", conversation_id: str = "general"):
    # Needs a running relay, e.g. `uvicorn app.main:app --app-dir backend --port 5120`
    settings = get_config().client
    received = asyncio.Queue()

    async with ClientSession(settings) as a, ClientSession(settings) as b:
        b.on("user_typing_start", received.put_nowait)
        b.on("pong", received.put_nowait)

        await a.connect(user_a)
        await b.connect(user_b)

        await a.join_conversation(conversation_id)
        await b.join_conversation(conversation_id)

        # The pong confirms both joins were processed before typing starts
        await b.ping()
        print(f"Pong: {await received.get()}")

        await a.start_typing(conversation_id)
        print(f"Received: {await received.get()}")
        await a.stop_typing(conversation_id)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(*sys.argv[1:]))
