"""Terminal participant for a CodeCast room.

Every line typed is appended to the shared buffer and pushed to the room.
Commands:
  /show           print the local buffer
  /who            print the roster
  /clear          empty the buffer
  /run [input]    execute the buffer through the compile service
  /clearout       discard the last run output
  /quit           leave the room
"""

import argparse
import asyncio
import os
import sys
from client.compiler import CompileClient
from client.session import SessionController
from client.transport import run_session
from constants import COMPILER_URL
from logging_config import get_logger, setup_logging

logger = get_logger(__name__)


async def _stdin_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


async def input_loop(controller: SessionController, language: str) -> None:
    while True:
        line = await _stdin_line()
        if line == "":
            await controller.leave()
            return
        line = line.rstrip("\n")
        if line == "/quit":
            await controller.leave()
            return
        if line == "/show":
            print(controller.buffer)
        elif line == "/who":
            for entry in controller.roster:
                print(f"  {entry.display_name} ({entry.connection_id[:8]})")
        elif line == "/clear":
            await controller.edit("")
        elif line.startswith("/run"):
            stdin = line[len("/run"):].strip().replace("\\n", "\n")
            print(await controller.run(language, stdin))
        elif line == "/clearout":
            controller.clear_output()
        else:
            new_code = f"{controller.buffer}\n{line}" if controller.buffer else line
            await controller.edit(new_code)


async def main_async(args) -> int:
    failures = []
    controller = SessionController(
        args.room,
        args.name,
        compiler=CompileClient(args.compiler_url),
        on_code=lambda code: print(f"--- buffer updated ---\n{code}\n----------------------"),
        on_notify=lambda message: print(f"* {message}"),
        on_redirect=lambda: failures.append(True),
    )
    tasks = []

    async def start_input():
        tasks.append(asyncio.create_task(input_loop(controller, args.language)))

    await run_session(args.url, controller, on_ready=start_input)
    for task in tasks:
        task.cancel()
    return 1 if failures else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Join a CodeCast room from the terminal")
    parser.add_argument("--url", default=os.getenv("RELAY_URL", "ws://localhost:8000/ws"))
    parser.add_argument("--room", required=True, help="room id to join")
    parser.add_argument("--name", required=True, help="display name shown to the room")
    parser.add_argument("--language", default="python")
    parser.add_argument("--compiler-url", default=COMPILER_URL)
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"))
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level)
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
