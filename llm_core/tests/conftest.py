import json

import pytest


class FakeStream:
    """可迭代的 SSE 行；元素为异常时在迭代到该位置抛出。"""

    def __init__(self, lines):
        self.lines = list(lines)
        self.closed = False

    def __iter__(self):
        for line in self.lines:
            if isinstance(line, BaseException):
                raise line
            yield line

    def close(self):
        self.closed = True


class FakeTransport:
    """记录调用的假传输层。

    responses 按顺序返回；error 非空时任何调用都抛出它。
    """

    def __init__(self, responses=None, error=None, lines=None):
        self.responses = list(responses or [])
        self.error = error
        self.lines = lines or []
        self.calls = []
        self.streams = []

    def _next(self):
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    def post_json(self, url, payload, headers):
        self.calls.append(("POST", url, payload, dict(headers)))
        return self._next()

    def get_json(self, url, headers):
        self.calls.append(("GET", url, None, dict(headers)))
        return self._next()

    def post_multipart(self, url, data, files, headers):
        self.calls.append(("MULTIPART", url, {"data": data, "files": files}, dict(headers)))
        return self._next()

    def stream_lines(self, url, payload, headers):
        self.calls.append(("STREAM", url, payload, dict(headers)))
        if self.error is not None:
            raise self.error
        stream = FakeStream(self.lines)
        self.streams.append(stream)
        return stream


def sse(payload):
    return "data: " + json.dumps(payload)


def chat_payload(content="ok", **extra):
    payload = {
        "id": "resp-1",
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def sse_line():
    return sse


@pytest.fixture
def make_chat_payload():
    return chat_payload
