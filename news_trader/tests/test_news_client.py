"""
Tavily client tests using httpx.MockTransport.
"""
import json

import httpx
import pytest
import pytest_asyncio

from news_trader.errors import UpstreamError
from news_trader.services.news_client import FINANCE_DOMAINS, TavilyNewsClient, build_query

SEARCH_RESULTS = {
    "results": [
        {"title": "Apple beats", "url": "https://reuters.com/a", "content": "AAPL up", "score": 0.92},
        {"title": "No url", "content": "dropped"},
        {"title": "Odd score", "url": "https://cnbc.com/b", "content": "MSFT", "score": 1.7},
    ]
}


class Recorder:
    def __init__(self, status: int = 200, body=None, exc: Exception = None):
        self.status = status
        self.body = body if body is not None else SEARCH_RESULTS
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc:
            raise self.exc
        return httpx.Response(self.status, json=self.body)


@pytest_asyncio.fixture
async def make_client():
    clients = []

    def factory(handler):
        client = TavilyNewsClient("tv-key", transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.close()


class TestBuildQuery:
    def test_batches_tickers(self):
        assert build_query(["AAPL", "MSFT"]) == "AAPL OR MSFT stock market financial news"


class TestSearch:
    @pytest.mark.asyncio
    async def test_posts_batched_query(self, make_client):
        recorder = Recorder()
        articles = await make_client(recorder).search(["AAPL", "MSFT"])

        request = recorder.requests[0]
        payload = json.loads(request.content)
        assert request.url.path == "/search"
        assert payload["api_key"] == "tv-key"
        assert payload["query"] == "AAPL OR MSFT stock market financial news"
        assert payload["search_depth"] == "advanced"
        assert payload["include_domains"] == FINANCE_DOMAINS

        assert [a.url for a in articles] == ["https://reuters.com/a", "https://cnbc.com/b"]
        assert articles[1].score == 1.0

    @pytest.mark.asyncio
    async def test_no_tickers_skips_request(self, make_client):
        recorder = Recorder()
        assert await make_client(recorder).search([]) == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_http_error(self, make_client):
        with pytest.raises(UpstreamError) as exc_info:
            await make_client(Recorder(status=500, body={"error": "boom"})).search(["AAPL"])
        assert exc_info.value.service == "tavily"
        assert "HTTP 500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, make_client):
        recorder = Recorder(exc=httpx.ReadTimeout("slow"))
        with pytest.raises(UpstreamError, match="timed out"):
            await make_client(recorder).search(["AAPL"])

    @pytest.mark.asyncio
    async def test_connection_error(self, make_client):
        recorder = Recorder(exc=httpx.ConnectError("refused"))
        with pytest.raises(UpstreamError):
            await make_client(recorder).search(["AAPL"])


class TestExtract:
    @pytest.mark.asyncio
    async def test_returns_raw_content(self, make_client):
        recorder = Recorder(body={"results": [{"url": "https://reuters.com/a", "raw_content": "Full text"}]})
        article = await make_client(recorder).extract_full_text("https://reuters.com/a")

        assert json.loads(recorder.requests[0].content)["urls"] == ["https://reuters.com/a"]
        assert article.content == "Full text"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recorder", [
        Recorder(status=404, body={}),
        Recorder(body={"results": []}),
        Recorder(body={"results": [{"url": "u", "raw_content": ""}]}),
        Recorder(exc=httpx.ConnectError("refused")),
    ])
    async def test_failure_returns_none(self, make_client, recorder):
        assert await make_client(recorder).extract_full_text("https://reuters.com/a") is None
