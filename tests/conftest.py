import json
import re
from typing import Callable, List, Tuple, Union

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import centxo.models.db_models  # noqa: F401
from centxo.cache.store import InMemoryCacheStore
from centxo.cache.swr import SWRCache
from centxo.connectors.meta.client import MetaClient

Reply = Union[dict, Tuple[int, dict], Callable[[httpx.Request], httpx.Response]]


def graph_error(message: str, code: int = 100, subcode: int = 0, status: int = 400, **extra) -> Tuple[int, dict]:
    error = {"message": message, "code": code, "type": "OAuthException", **extra}
    if subcode:
        error["error_subcode"] = subcode
    return status, {"error": error}


class FakeGraph:
    """Routes Graph API calls to canned replies and records every request."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: List[Tuple[str, re.Pattern, List[Reply]]] = []

    def on(self, method: str, pattern: str, *replies: Reply) -> "FakeGraph":
        """Replies are served in order; the last one repeats."""
        self._routes.insert(0, (method, re.compile(f"^{pattern}$"), list(replies)))
        return self

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.split("/", 2)[-1]
        for method, pattern, replies in self._routes:
            if method == request.method and pattern.match(path):
                reply = replies.pop(0) if len(replies) > 1 else replies[0]
                if callable(reply):
                    return reply(request)
                if isinstance(reply, tuple):
                    return httpx.Response(reply[0], json=reply[1])
                return httpx.Response(200, json=reply)
        return httpx.Response(404, json={"error": {"message": f"No route for {request.method} {path}", "code": 803}})

    def client(self) -> MetaClient:
        return MetaClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handle)))

    def calls(self, method: str, pattern: str) -> List[httpx.Request]:
        rx = re.compile(f"^{pattern}$")
        return [
            r for r in self.requests
            if r.method == method and rx.match(r.url.path.split("/", 2)[-1])
        ]


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content or b"{}")


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def store(clock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def cache(store, clock) -> SWRCache:
    return SWRCache(store, clock=clock)


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        yield s
