"""
Tests for the assistant: answer formatting, history retrieval and the HTTP
client, which talks to a local aiohttp app standing in for the endpoint.
"""

import pytest
from aiohttp import web
from aiohttp import test_utils

from HiveChat.core.server.assistant import (
    HTTPAssistant,
    StoreHistoryRetriever,
    UnavailableAssistant,
    build_prompt,
    format_answer,
)
from HiveChat.core.server.errors import UpstreamError
from HiveChat.core.server.interfaces import AssistantAnswer, Citation
from HiveChat.core.server.models import ChannelKind


class TestFormatting:

    def test_answer_without_citations(self):
        assert format_answer(AssistantAnswer("Hello")) == "AI Response: Hello"

    def test_answer_with_citations(self):
        answer = AssistantAnswer("Friday", [Citation("bob", "release is on friday")])
        assert format_answer(answer) == (
            "AI Response: Friday\n\nBased on context from:\n- bob: release is on friday"
        )

    def test_prompt_contains_context_and_question(self):
        prompt = build_prompt("when?", [Citation("bob", "friday")])
        assert "bob: friday" in prompt
        assert "Question: when?" in prompt


class TestRetriever:

    @pytest.fixture
    def history(self, store):
        store.create_channel("general", channel_id="general")
        store.create_message("general", "p1", "bob", "the release is planned for friday")
        store.create_message("general", "p2", "carol", "lunch anyone?")
        store.create_message("general", "p1", "bob", "/askAI when is the release")
        store.create_channel("bob, dave", ChannelKind.DIRECT, channel_id="a-b")
        store.create_message("a-b", "p1", "bob", "secret release notes")
        return store

    @pytest.mark.asyncio
    async def test_ranks_by_overlap(self, history):
        citations = await StoreHistoryRetriever(history)("when is the release planned?")
        assert [c.text for c in citations] == ["the release is planned for friday"]
        assert citations[0].author == "bob"

    @pytest.mark.asyncio
    async def test_no_terms(self, history):
        assert await StoreHistoryRetriever(history)("?") == []


def completions_app(status=200, payload=None):
    seen = []

    async def handler(request):
        seen.append(await request.json())
        if status != 200:
            return web.Response(status=status, text="overloaded")
        return web.json_response(payload)

    app = web.Application()
    app.router.add_post("/chat/completions", handler)
    return app, seen


class TestHTTPAssistant:

    async def _serve(self, app):
        server = test_utils.TestServer(app)
        await server.start_server()
        return server

    @pytest.mark.asyncio
    async def test_answer(self):
        app, seen = completions_app(payload={"choices": [{"message": {"content": " Friday. "}}]})
        server = await self._serve(app)
        cited = [Citation("bob", "friday")]

        async def retriever(query):
            return cited

        assistant = HTTPAssistant(base_url=str(server.make_url("")), api_key="k", model="m", retriever=retriever)
        try:
            answer = await assistant.answer("when?")
        finally:
            await assistant.close()
            await server.close()

        assert answer.text == "Friday."
        assert answer.citations == cited
        assert seen[0]["model"] == "m"
        assert seen[0]["messages"][1]["content"].endswith("say so.")

    @pytest.mark.asyncio
    async def test_http_error(self):
        app, _ = completions_app(status=503)
        server = await self._serve(app)
        assistant = HTTPAssistant(base_url=str(server.make_url("")))
        try:
            with pytest.raises(UpstreamError) as info:
                await assistant.answer("hi")
        finally:
            await assistant.close()
            await server.close()
        assert info.value.code == "ASSISTANT_HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        app, _ = completions_app(payload={"choices": []})
        server = await self._serve(app)
        assistant = HTTPAssistant(base_url=str(server.make_url("")))
        try:
            with pytest.raises(UpstreamError) as info:
                await assistant.answer("hi")
        finally:
            await assistant.close()
            await server.close()
        assert info.value.code == "ASSISTANT_BAD_RESPONSE"

    @pytest.mark.asyncio
    async def test_retrieval_failure(self):
        async def retriever(query):
            raise RuntimeError("index gone")

        with pytest.raises(UpstreamError):
            await HTTPAssistant(base_url="http://127.0.0.1:9", retriever=retriever).answer("hi")


class TestUnavailableAssistant:

    @pytest.mark.asyncio
    async def test_always_fails(self):
        with pytest.raises(UpstreamError) as info:
            await UnavailableAssistant().answer("hi")
        assert info.value.code == "ASSISTANT_UNAVAILABLE"
