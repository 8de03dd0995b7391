#!/usr/bin/env python3
"""TubeChat: command-line client for the FastAPI backend.

Usage:
    python main.py harvest https://www.youtube.com/@channel --limit 20 --out channel.json
    python main.py chat "Which video has the most views?" --data channel.json
    python main.py chat "Plot a histogram of durations" --data videos.csv --name Ada
    python main.py --url http://host:9000 chat "hello"

Start the server first with ``python api_server.py``.
"""

import argparse
import json
import sys
from pathlib import Path

import requests

from api.streaming import iter_sse_events

# ---- ANSI colors ----

_USE_COLOR = True


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def dim(text: str) -> str:
    return _c("2", text)


def cyan(text: str) -> str:
    return _c("36", text)


def green(text: str) -> str:
    return _c("32", text)


def red(text: str) -> str:
    return _c("31", text)


def bold(text: str) -> str:
    return _c("1", text)


# ---- API helpers ----

class APIClient:
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.session_id = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api{path}"

    def check_server(self) -> dict:
        resp = requests.get(self._url("/status"), timeout=5)
        resp.raise_for_status()
        return resp.json()

    def create_session(self) -> dict:
        resp = requests.post(self._url("/sessions"), timeout=30)
        resp.raise_for_status()
        info = resp.json()
        self.session_id = info["session_id"]
        return info

    def delete_session(self):
        if self.session_id:
            try:
                requests.delete(self._url(f"/sessions/{self.session_id}"), timeout=5)
            except requests.RequestException:
                pass
            self.session_id = None

    def upload_dataset(self, path: Path) -> dict:
        resp = requests.post(
            self._url(f"/sessions/{self.session_id}/datasets"),
            json={"name": path.name, "content": path.read_text(encoding="utf-8")},
            timeout=60,
        )
        resp.raise_for_status()
        return resp.json()

    def _stream(self, path: str, payload: dict):
        with requests.post(self._url(path), json=payload, stream=True, timeout=(10, None)) as resp:
            resp.raise_for_status()
            yield from iter_sse_events(resp.iter_content(chunk_size=None))

    def chat_stream(self, message: str, display_name: str = ""):
        payload = {"message": message}
        if display_name:
            payload["display_name"] = display_name
        return self._stream(f"/sessions/{self.session_id}/chat", payload)

    def harvest_stream(self, reference: str, limit: int):
        return self._stream("/youtube/channel-data", {"reference": reference, "limit": limit})


# ---- Commands ----

def cmd_harvest(client: APIClient, args) -> int:
    result = None
    for event in client.harvest_stream(args.reference, args.limit):
        kind = event.get("type")
        if kind == "progress":
            print(dim(f"  [{event.get('percent', 0):>3}%] {event.get('message', '')}"))
        elif kind == "complete":
            result = event
        elif kind == "error":
            print(red(f"Error: {event.get('message', 'unknown error')}"))
            return 1

    if result is None:
        print(red("Stream ended without a result."))
        return 1

    videos = result.get("data", [])
    print(f"{bold(result.get('channelTitle', ''))}: {green(str(len(videos)))} videos")
    if args.out:
        Path(args.out).write_text(json.dumps(videos, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"  Saved to {args.out}")
    else:
        for v in videos:
            print(f"  {v['release_date']}  {v['view_count']:>12,}  {v['title']}")
    return 0


def display_turn_event(event: dict) -> None:
    kind = event.get("type")
    if kind == "start":
        print(dim(f"[{event.get('mode')}]"))
    elif kind == "text":
        print(event.get("text", ""), end="", flush=True)
    elif kind == "parts":
        for part in event.get("parts", []):
            if part["type"] == "code":
                print(cyan(f"\n```{part.get('language', '').lower()}\n{part.get('code', '')}\n```"))
            elif part["type"] == "result":
                print(dim(part.get("output", "")))
            elif part["type"] == "image":
                print(dim("(image output)"))
    elif kind == "grounding":
        for chunk in event["grounding"].get("chunks", []):
            print(dim(f"\n  source: {chunk.get('title', '')} {chunk.get('uri', '')}"))
    elif kind == "turn":
        turn = event["turn"]
        if turn.get("mode") not in ("generation", "code_execution"):
            print(turn.get("content", ""))
        else:
            print()
        for call in turn.get("tool_calls", []):
            print(dim(f"  tool: {call['name']}({call['args']}) [{call['elapsed_ms']} ms]"))
        for chart in turn.get("charts", []):
            print(cyan(f"  chart: {chart['title']} ({len(chart['data'])} points)"))
        for card in turn.get("cards", []):
            print(cyan(f"  video: {card.get('title', '')} {card.get('video_url', '')}"))
        if turn.get("generated_images"):
            print(cyan(f"  {len(turn['generated_images'])} generated image(s)"))
    elif kind == "error":
        print(red(f"Error: {event.get('message', '')}"))


def cmd_chat(client: APIClient, args) -> int:
    client.create_session()
    try:
        for path in args.data or []:
            info = client.upload_dataset(Path(path))
            print(dim(f"Attached {info['name']} ({info['kind']}, {info['count']} records)"))
        for event in client.chat_stream(args.message, args.name or ""):
            display_turn_event(event)
    finally:
        client.delete_session()
    return 0


def main():
    global _USE_COLOR

    parser = argparse.ArgumentParser(description="CLI client for the TubeChat backend")
    parser.add_argument(
        "--url", default="http://localhost:8000",
        help="API server URL (default: http://localhost:8000)",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color output")
    sub = parser.add_subparsers(dest="command", required=True)

    harvest = sub.add_parser("harvest", help="Download a YouTube channel's latest videos")
    harvest.add_argument("reference", help="Channel URL or @handle")
    harvest.add_argument("--limit", type=int, default=10, help="Videos to fetch (1-100)")
    harvest.add_argument("--out", default=None, help="Write the videos to this JSON file")

    chat = sub.add_parser("chat", help="Ask one question, optionally about a data file")
    chat.add_argument("message")
    chat.add_argument("--data", action="append", help="CSV or JSON file to attach (repeatable)")
    chat.add_argument("--name", default=None, help="Your display name")

    args = parser.parse_args()
    if args.no_color:
        _USE_COLOR = False

    client = APIClient(args.url)
    try:
        client.check_server()
    except requests.RequestException as e:
        print(red(f"Server not reachable at {args.url}: {e}"))
        print(dim("  Start it with: python api_server.py"))
        sys.exit(1)

    try:
        if args.command == "harvest":
            code = cmd_harvest(client, args)
        else:
            code = cmd_chat(client, args)
    except requests.HTTPError as e:
        detail = ""
        if e.response is not None:
            try:
                detail = e.response.json().get("detail", "")
            except ValueError:
                detail = e.response.text
        print(red(f"Request failed: {e} {detail}".rstrip()))
        code = 1
    except KeyboardInterrupt:
        print(dim("\nInterrupted."))
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
