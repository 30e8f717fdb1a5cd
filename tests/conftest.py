"""Synquer 测试 fixtures -- 伪造 ingestion API、可控时钟、免等待退避"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio


class IngestRecorder:
    """伪造的 /v1/events/batch 端点

    记录收到的每个请求；按 queue() 的顺序返回预设响应，
    队列耗尽后返回 200。队列项可以是状态码、(状态码, JSON body) 或异常。
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responses: list = []
        self._default = (200, {"received": 0, "processed": 0, "errors": []})

    def queue(self, *responses) -> None:
        self._responses.extend(responses)

    def always(self, response) -> None:
        """之后的每个请求都返回同一个预设响应"""
        self._responses = []
        self._default = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._responses.pop(0) if self._responses else self._default
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item)
        status, body = item
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def bodies(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]

    def sent_events(self) -> list[dict]:
        """所有请求中的事件，按发送顺序展开"""
        return [event for body in self.bodies() for event in body["events"]]


class FakeClock:
    """可手动推进的毫秒时钟"""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def ingest() -> IngestRecorder:
    """伪造的 ingestion API"""
    return IngestRecorder()


@pytest.fixture
def clock() -> FakeClock:
    """从固定时间点开始的可控时钟"""
    return FakeClock()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """替代退避等待，记录每次等待的秒数"""
    return AsyncMock(return_value=None)


@pytest_asyncio.fixture
async def make_client(ingest, clock, no_sleep):
    """构造连接到伪造 API 的 Synquer 客户端，测试结束时统一 shutdown"""
    from synquer import Synquer

    created = []

    def _make(**kwargs):
        kwargs.setdefault("base_url", "http://localhost:3001")
        kwargs.setdefault("http_transport", ingest.transport)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", no_sleep)
        client = Synquer(kwargs.pop("api_key", "sk_dev_test"), **kwargs)
        created.append(client)
        return client

    yield _make

    for client in created:
        await client.shutdown()
