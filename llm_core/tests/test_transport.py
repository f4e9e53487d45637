import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from llm_core.domain.exceptions import (
    AuthenticationError,
    GenericProviderError,
    NetworkError,
    ProviderTimeoutError,
    RateLimitError,
    ResponseParseError,
    UpstreamServiceError,
)
from llm_core.domain.models import ContentType
from llm_core.providers.base import CollectingStream
from llm_core.providers.openai_mapper import OpenAIJsonMapper
from llm_core.providers.streaming import StreamCall, StreamReassembler, run_stream
from llm_core.providers.transport import HttpTransport, classify_payload_error, classify_status


class Resp:
    def __init__(self, status_code=200, text="{}", lines=None):
        self.status_code = status_code
        self.text = text
        self.lines = lines or []
        self.url = "http://x/v1/chat/completions"

    def iter_lines(self):
        for line in self.lines:
            yield line

    def read(self):
        return self.text.encode()


def _patch_client(monkeypatch, resp=None, error=None, captured=None):
    captured = captured if captured is not None else {}

    class StreamCM:
        def __enter__(self):
            return resp

        def __exit__(self, *a):
            captured["stream_closed"] = True
            return False

    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, **kw):
            captured["post"] = (url, kw)
            if error is not None:
                raise error
            return resp

        def get(self, url, **kw):
            captured["get"] = (url, kw)
            if error is not None:
                raise error
            return resp

        def stream(self, method, url, **kw):
            captured["stream"] = (method, url, kw)
            if error is not None:
                raise error
            return StreamCM()

    monkeypatch.setattr("httpx.Client", Client)
    return captured


@pytest.mark.parametrize("status,exc", [
    (401, AuthenticationError),
    (429, RateLimitError),
    (408, ProviderTimeoutError),
    (504, ProviderTimeoutError),
    (500, UpstreamServiceError),
    (502, UpstreamServiceError),
    (503, UpstreamServiceError),
    (400, GenericProviderError),
    (404, GenericProviderError),
])
def test_classify_status(status, exc):
    err = classify_status(status, "")
    assert type(err) is exc
    assert err.http_status == status


def test_classify_status_reads_error_body():
    err = classify_status(400, '{"error": {"message": "bad model", "type": "invalid_request"}}', "openai")
    assert "bad model" in str(err)
    assert "invalid_request" in str(err)
    assert err.body.startswith("{")


def test_post_json_ok(monkeypatch):
    captured = _patch_client(monkeypatch, Resp(text='{"ok": true}'))
    data = HttpTransport(connect_timeout=1, read_timeout=2).post_json(
        "http://x/v1/chat/completions", {"model": "m"}, {"Authorization": "Bearer k"})
    assert data == {"ok": True}
    assert captured["post"][1]["json"] == {"model": "m"}
    assert captured["client_kwargs"]["trust_env"] is False
    assert captured["client_kwargs"]["timeout"].read == 2


def test_post_json_rate_limited(monkeypatch):
    _patch_client(monkeypatch, Resp(status_code=429, text='{"error": {"message": "slow down"}}'))
    with pytest.raises(RateLimitError) as ei:
        HttpTransport().post_json("http://x", {}, {})
    assert ei.value.http_status == 429


def test_timeout_maps_to_provider_timeout(monkeypatch):
    _patch_client(monkeypatch, error=httpx.ConnectTimeout("timed out"))
    with pytest.raises(ProviderTimeoutError):
        HttpTransport().get_json("http://x/v1/models", {})


def test_connect_error_maps_to_network_error(monkeypatch):
    _patch_client(monkeypatch, error=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError) as ei:
        HttpTransport().post_json("http://x", {}, {})
    assert isinstance(ei.value.cause, httpx.ConnectError)


def test_non_json_body_is_parse_error(monkeypatch):
    _patch_client(monkeypatch, Resp(text="<html>oops</html>"))
    with pytest.raises(ResponseParseError):
        HttpTransport().post_json("http://x", {}, {})


def test_stream_lines_sets_accept_header(monkeypatch):
    captured = _patch_client(monkeypatch, Resp(lines=["data: {}", "data: [DONE]"]))
    handle = HttpTransport().stream_lines("http://x", {"stream": True}, {"Authorization": "Bearer k"})
    assert list(handle) == ["data: {}", "data: [DONE]"]
    method, _, kw = captured["stream"]
    assert method == "POST"
    assert kw["headers"]["Accept"] == "text/event-stream"
    assert kw["headers"]["Authorization"] == "Bearer k"
    assert captured["stream_closed"] is True


def test_stream_lines_error_status(monkeypatch):
    captured = _patch_client(monkeypatch, Resp(status_code=401, text="unauthorized"))
    with pytest.raises(AuthenticationError):
        HttpTransport().stream_lines("http://x", {}, {})
    assert captured["stream_closed"] is True


@pytest.mark.parametrize("err,exc", [
    ({"message": "overloaded", "type": "server_error"}, UpstreamServiceError),
    ({"message": "slow down", "code": 429}, RateLimitError),
    ({"message": "bad key", "status": 401}, AuthenticationError),
    ({"message": "odd", "code": "invalid_api_key"}, UpstreamServiceError),
    ("plain text", UpstreamServiceError),
])
def test_classify_payload_error(err, exc):
    assert isinstance(classify_payload_error(err, "openai"), exc)


class FakeSocket:
    def __init__(self, error=None):
        self.shutdowns = 0
        self.error = error

    def shutdown(self, how):
        self.shutdowns += 1
        if self.error is not None:
            raise self.error


class FakeNetworkStream:
    def __init__(self, sock):
        self.sock = sock

    def get_extra_info(self, name):
        return self.sock if name == "socket" else None


def test_stream_close_shuts_down_socket_once(monkeypatch):
    sock = FakeSocket()
    resp = Resp(lines=["data: {}"])
    resp.extensions = {"network_stream": FakeNetworkStream(sock)}
    captured = _patch_client(monkeypatch, resp)
    handle = HttpTransport().stream_lines("http://x", {}, {})
    handle.close()
    handle.close()
    assert sock.shutdowns == 1
    assert captured["stream_closed"] is True


def test_stream_close_tolerates_already_closed_socket(monkeypatch):
    resp = Resp()
    resp.extensions = {"network_stream": FakeNetworkStream(FakeSocket(OSError("not connected")))}
    captured = _patch_client(monkeypatch, resp)
    HttpTransport().stream_lines("http://x", {}, {}).close()
    assert captured["stream_closed"] is True


class StalledSSEHandler(BaseHTTPRequestHandler):
    """发出一个数据块后不再写入，也不关闭连接。"""

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length") or 0))
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.end_headers()
        self.wfile.write(b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n')
        self.wfile.flush()
        self.server.release.wait(30)

    def log_message(self, *args):
        pass


@pytest.fixture
def stalled_sse_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), StalledSSEHandler)
    server.daemon_threads = True
    server.release = threading.Event()
    threading.Thread(target=server.serve_forever, daemon=True).start()
    yield f"http://127.0.0.1:{server.server_address[1]}/v1/chat/completions"
    server.release.set()
    server.shutdown()
    server.server_close()


def test_cancel_interrupts_blocked_read(stalled_sse_url):
    first_token = threading.Event()

    class Sink(CollectingStream):
        def on_token(self, text, content_type=ContentType.TEXT):
            super().on_token(text, content_type)
            first_token.set()

    sink = Sink()
    call = StreamCall()
    transport = HttpTransport(read_timeout=20)

    def cancel_after_first_token():
        if first_token.wait(10):
            call.cancel()

    threading.Thread(target=cancel_after_first_token, daemon=True).start()
    started = time.monotonic()
    with pytest.raises(NetworkError) as ei:
        run_stream(
            lambda: transport.stream_lines(stalled_sse_url, {"stream": True}, {}),
            StreamReassembler(OpenAIJsonMapper(), sink),
            call,
            timeout=30,
        )
    assert ei.value.code == "STREAM_CANCELLED"
    assert time.monotonic() - started < 5
    assert sink.tokens == ["Hi"]
    assert sink.error is ei.value
