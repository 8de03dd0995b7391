from __future__ import annotations
from typing import TYPE_CHECKING

from data_ops.store import Dataset
from agent.tool_results import ImageRequest

if TYPE_CHECKING:
    from agent.tool_handlers import RequestImageArgs


def handle_request_image(dataset: Dataset, args: "RequestImageArgs") -> ImageRequest:
    # Generation happens in the dispatcher, after the tool loop finishes.
    return ImageRequest(prompt=args.prompt)
