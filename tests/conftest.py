import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.cache import TTLCache
from app.sanity_client import SanityClient

BASE_URL = "https://test.api.sanity.io/v2024-03-21"


class FakeContentStore:
    """Stands in for the hosted content store behind an `httpx.MockTransport`.

    `results` maps a substring of the GROQ query to the `result` returned for
    it; the first match wins. Every request is recorded.
    """

    def __init__(self):
        self.results = {}
        self.requests = []
        self.mutations = []
        self.fail_with = None

    def query_count(self):
        return sum(1 for r in self.requests if "/data/query/" in r.url.path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": "boom"})
        if "/data/mutate/" in request.url.path:
            body = json.loads(request.content)
            self.mutations.extend(body["mutations"])
            return httpx.Response(200, json={
                "transactionId": f"tx{len(self.mutations)}",
                "results": [{"id": "doc-1", "operation": "update"}],
            })
        params = parse_qs(request.url.query.decode())
        groq = params["query"][0]
        for fragment, result in self.results.items():
            if fragment in groq:
                return httpx.Response(200, json={"result": result})
        return httpx.Response(200, json={"result": None})


@pytest.fixture
def store():
    return FakeContentStore()


@pytest.fixture
def cache():
    return TTLCache()


@pytest.fixture
def sanity(store, cache):
    return SanityClient(cache, base_url=BASE_URL, token="secret", transport=httpx.MockTransport(store.handler))
