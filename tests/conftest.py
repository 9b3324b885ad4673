import json
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from ratelimiter_client import AsyncRateLimiterServiceClient, RateLimiterServiceClient


BASE_URL = "http://ratelimiter.test"


class FakeRateLimiterService:
    """In-memory stand-in for the remote service.

    Each rule allows as many permits as its first sub-rate names; no window ever
    refills during a test.
    """

    def __init__(self) -> None:
        self.rules: dict[str, dict] = {}
        self.used: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: tuple[int, str] | None = None

    def add(self, rate_id: str, rate: str) -> None:
        self.rules[rate_id] = {"id": rate_id, "operator": "NONE", "rates": [{"rate": rate}]}

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def _limit(self, rate_id: str) -> int:
        sub = self.rules[rate_id]["rates"][0]
        if sub.get("rate"):
            return int(sub["rate"].split("/")[0])
        return int(sub.get("permits") or 0)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, text=body)
        path = request.url.path
        if path == "/rates" and request.method == "POST":
            rule = json.loads(request.content)
            self.rules[rule["id"]] = rule
            return httpx.Response(200, json=rule)
        if path == "/rates/tree" and request.method == "POST":
            tree = json.loads(request.content)
            rule = {"id": tree["id"], "operator": "NONE", "rates": tree.get("rates", [])}
            self.rules[rule["id"]] = rule
            return httpx.Response(200, json=[rule])
        if path.startswith("/rates/"):
            rate_id = unquote(path[len("/rates/"):])
            if rate_id not in self.rules:
                return httpx.Response(404, text=f"No rates found for: {rate_id}")
            if request.method == "DELETE":
                del self.rules[rate_id]
                self.used.pop(rate_id, None)
                return httpx.Response(200)
            return httpx.Response(200, json=self.rules[rate_id])
        if path in ("/permits/available", "/permits/acquire"):
            rate_id = request.url.params["rateId"]
            if rate_id not in self.rules:
                return httpx.Response(404, text=f"No rates found for: {rate_id}")
            used = self.used.get(rate_id, 0)
            if path == "/permits/available":
                return httpx.Response(200, text=str(used < self._limit(rate_id)).lower())
            permits = int(request.url.params.get("permits", "1"))
            if used + permits > self._limit(rate_id):
                return httpx.Response(200, text="false")
            self.used[rate_id] = used + permits
            return httpx.Response(200, text="true")
        return httpx.Response(404, text="not found")


@pytest.fixture
def service():
    return FakeRateLimiterService()


@pytest.fixture
def base_url():
    return BASE_URL


@pytest.fixture
def client(service, base_url):
    c = RateLimiterServiceClient(base_url, transport=httpx.MockTransport(service.handler))
    yield c
    c.close()


@pytest_asyncio.fixture
async def async_client(service, base_url):
    c = AsyncRateLimiterServiceClient(base_url, transport=httpx.MockTransport(service.handler))
    yield c
    await c.aclose()
