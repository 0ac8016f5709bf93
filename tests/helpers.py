import json
from typing import Any, Callable, Dict, List, Optional

import httpx


PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="
RESULT_DATA_URL = "data:image/png;base64,UkVTVUxU"


def chat_response(*contents: Any, images: Optional[List[Optional[str]]] = None) -> Dict[str, Any]:
    """构造 chat completion 响应，每个 content 一个 choice"""
    images = images or []
    choices = []
    for index, content in enumerate(contents):
        message: Dict[str, Any] = {"role": "assistant", "content": content}
        if index < len(images) and images[index]:
            message["images"] = [{"type": "image_url", "image_url": {"url": images[index]}}]
        choices.append({"index": index, "message": message, "finish_reason": "stop"})
    return {
        "id": "gen-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": choices,
    }


class RecordingTransport(httpx.MockTransport):
    """记录所有请求的 MockTransport"""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


def json_transport(*bodies: Dict[str, Any], status_code: int = 200) -> RecordingTransport:
    """按顺序返回给定响应体"""
    queue = list(bodies)

    def handler(request: httpx.Request) -> httpx.Response:
        body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status_code, json=body)

    return RecordingTransport(handler)


