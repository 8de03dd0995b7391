import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from agent.llm import (  # noqa: E402
    ChatSession,
    GeneratedImage,
    LLMAdapter,
    LLMResponse,
    TextChunk,
    ToolCall,
)
from data_ops.store import DatasetKind, load  # noqa: E402
from ingest import CollectionDetails, CollectionSource, ItemPage  # noqa: E402


VIDEOS = [
    {"video_id": "a1", "title": "Intro to Rust", "view_count": 100, "like_count": 10,
     "comment_count": 1, "duration": 300, "release_date": "2024-03-01",
     "thumbnail": "https://i.ytimg.com/a1.jpg", "video_url": "https://www.youtube.com/watch?v=a1"},
    {"video_id": "b2", "title": "Async Python Deep Dive", "view_count": 900, "like_count": 50,
     "comment_count": 12, "duration": 1800, "release_date": "2024-01-15",
     "thumbnail": "https://i.ytimg.com/b2.jpg", "video_url": "https://www.youtube.com/watch?v=b2"},
    {"video_id": "c3", "title": "Cooking Pasta Live", "view_count": 900, "like_count": 70,
     "comment_count": 30, "duration": 3600, "release_date": "2024-02-10",
     "thumbnail": "https://i.ytimg.com/c3.jpg", "video_url": "https://www.youtube.com/watch?v=c3"},
    {"video_id": "d4", "title": "Rust vs Go Benchmarks", "view_count": 400, "like_count": 20,
     "comment_count": 5, "duration": 600, "release_date": "2023-12-24",
     "thumbnail": "https://i.ytimg.com/d4.jpg", "video_url": "https://www.youtube.com/watch?v=d4"},
    {"video_id": "e5", "title": "Channel Update", "view_count": 50, "like_count": 2,
     "comment_count": 0, "duration": 120, "release_date": "2024-04-02",
     "thumbnail": "https://i.ytimg.com/e5.jpg", "video_url": "https://www.youtube.com/watch?v=e5"},
]

CSV_TEXT = (
    "title,release_date,views,likes,comments\n"
    "Alpha,2024-01-03,1000,100,10\n"
    "Beta,2024-01-01,500,25,5\n"
    "Gamma,2024-01-02,2000,300,20\n"
)


@pytest.fixture
def videos():
    return [dict(v) for v in VIDEOS]


@pytest.fixture
def json_dataset():
    return load(json.dumps(VIDEOS), DatasetKind.RECORDS, name="channel.json")


@pytest.fixture
def csv_dataset():
    return load(CSV_TEXT, DatasetKind.TABULAR, name="videos.csv")


# ---- Fake LLM collaborator ----


class FakeChat(ChatSession):
    """Replays scripted responses and records everything sent to it."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.sent = []

    def send(self, message) -> LLMResponse:
        self.sent.append(message)
        if not self._responses:
            return LLMResponse(text="")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeAdapter(LLMAdapter):
    def __init__(self, chat_responses=(), stream_chunks=(), image=None, image_error=None,
                 stream_error=None):
        self.chat_responses = list(chat_responses)
        self.stream_chunks = list(stream_chunks)
        self.image = image or GeneratedImage(data=b"\x89PNG", mime_type="image/png")
        self.image_error = image_error
        self.stream_error = stream_error
        self.chats: list[FakeChat] = []
        self.created = []
        self.stream_calls = []
        self.image_calls = []

    def create_chat(self, model, system_prompt, tools=None, *, history=None):
        self.created.append({"model": model, "system_prompt": system_prompt,
                             "tools": [t.name for t in tools or []], "history": history})
        chat = FakeChat(self.chat_responses)
        self.chats.append(chat)
        return chat

    def stream_generate(self, model, prompt, *, history=None, images=None, code_execution=False):
        self.stream_calls.append({"prompt": prompt, "history": history,
                                  "images": images, "code_execution": code_execution})
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    def generate_image(self, model, prompt, anchor=None):
        self.image_calls.append({"prompt": prompt, "anchor": anchor})
        if self.image_error is not None:
            raise self.image_error
        return self.image

    def make_tool_result_message(self, tool_name, result, *, tool_call_id=None):
        return {"name": tool_name, "result": result}

    def make_multimodal_message(self, text, images):
        return {"text": text, "images": list(images)}

    def is_quota_error(self, exc):
        return False


def tool_call_response(name, **args) -> LLMResponse:
    return LLMResponse(tool_calls=[ToolCall(name=name, args=args)])


def stream_of(*texts):
    return [TextChunk(t) for t in texts]


# ---- Collection source ----


def video_resource(i: int) -> dict:
    return {
        "id": f"v{i}",
        "snippet": {
            "title": f"Video {i}",
            "description": f"About {i}",
            "publishedAt": f"2024-01-{i:02d}T10:00:00Z",
            "thumbnails": {"high": {"url": f"https://i.ytimg.com/v{i}/hq.jpg"}},
        },
        "statistics": {"viewCount": str(i * 100), "likeCount": str(i)},
        "contentDetails": {"duration": "PT1M30S"},
    }


class FakeSource(CollectionSource):
    def __init__(self, total=12, page_size=5, handle_id="UCfound", search_id=None,
                 failing_artifacts=(), fail_listing=False):
        self.total = total
        self.page_size = page_size
        self.handle_id = handle_id
        self.search_id = search_id
        self.failing_artifacts = set(failing_artifacts)
        self.fail_listing = fail_listing
        self.calls = []

    def resolve_by_handle(self, handle):
        self.calls.append(("resolve_by_handle", handle))
        return self.handle_id

    def search(self, query):
        self.calls.append(("search", query))
        return self.search_id

    def get_collection_details(self, collection_id):
        self.calls.append(("details", collection_id))
        return CollectionDetails(collection_id=collection_id, title="Test Channel", uploads_id="UUuploads")

    def list_items(self, uploads_id, max_results, page_token=None):
        self.calls.append(("list_items", max_results, page_token))
        if self.fail_listing:
            raise RuntimeError("quota exceeded")
        start = int(page_token or 0)
        n = min(max_results, self.page_size, self.total - start)
        ids = [f"v{i}" for i in range(start + 1, start + n + 1)]
        nxt = str(start + n) if start + n < self.total else None
        return ItemPage(item_ids=ids, next_page_token=nxt)

    def get_item_details(self, item_ids):
        self.calls.append(("get_item_details", list(item_ids)))
        return [video_resource(int(i[1:])) for i in item_ids]

    def get_artifact(self, item_id):
        self.calls.append(("get_artifact", item_id))
        if item_id in self.failing_artifacts:
            raise RuntimeError("Transcripts are disabled")
        return f"transcript of {item_id}"

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


