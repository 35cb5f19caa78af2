"""
The inline assistant.

``HTTPAssistant`` answers a query by asking an OpenAI-compatible chat
completions endpoint, with chat history placed in the prompt as context.
History comes from an optional retriever; ``StoreHistoryRetriever`` is a
plain term-overlap ranking over recent channel messages.

``UnavailableAssistant`` stands in when no endpoint is configured and fails
every call, so the question is still posted and the asker gets an error.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp

from HiveChat.config import config
from HiveChat.core.server.errors import UpstreamError
from HiveChat.core.server.interfaces import AssistantAnswer, Citation, Store

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful AI assistant in a chat application. Your role is to "
    "provide informative responses based on the chat history context provided."
)

Retriever = Callable[[str], Awaitable[List[Citation]]]

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def format_answer(answer: AssistantAnswer) -> str:
    """Text of the reply message that carries an answer."""
    text = f"AI Response: {answer.text}"
    if answer.citations:
        sources = "\n".join(f"- {c.author}: {c.text}" for c in answer.citations)
        text += f"\n\nBased on context from:\n{sources}"
    return text


def build_prompt(query: str, citations: List[Citation]) -> str:
    context = "\n".join(f"{c.author}: {c.text}" for c in citations)
    return (
        f"Context from previous messages:\n{context}\n\n"
        f"Question: {query}\n\n"
        "Please provide a helpful response based on the context above. "
        "If the context doesn't contain relevant information, say so."
    )


class StoreHistoryRetriever:
    """
    Picks the stored messages sharing the most words with the query.

    Only root messages of persistent channels are searched; direct
    conversations never leak into another principal's answer.
    """

    def __init__(self, store: Store, limit: int = 5, per_channel: int = 200, assistant_prefix: str = None):
        self._store = store
        self._limit = limit
        self._per_channel = per_channel
        self._prefix = assistant_prefix or config.ASSISTANT_PREFIX

    @staticmethod
    def _terms(text: str) -> set:
        return {w.lower() for w in _WORD_RE.findall(text) if len(w) > 2}

    async def __call__(self, query: str) -> List[Citation]:
        wanted = self._terms(query)
        if not wanted:
            return []
        scored = []
        for channel in self._store.list_channels():
            if channel.is_direct:
                continue
            for message in self._store.list_messages(channel.id, self._per_channel):
                if not message.text or message.text.startswith(self._prefix):
                    continue
                overlap = wanted & self._terms(message.text)
                if overlap:
                    score = len(overlap) / len(wanted)
                    scored.append((score, message.created_at, message))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [
            Citation(author=m.author_name, text=m.text, score=round(s, 3))
            for s, _, m in scored[:self._limit]
        ]


class HTTPAssistant:
    """
    Assistant backed by an OpenAI-compatible ``/chat/completions`` endpoint.

    One aiohttp session is shared by all calls and created lazily on the
    running loop.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        model: str = None,
        retriever: Optional[Retriever] = None,
        timeout: float = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ):
        self._base_url = (base_url or config.ASSISTANT_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else config.ASSISTANT_API_KEY
        self._model = model or config.ASSISTANT_MODEL
        self._retriever = retriever
        self._timeout = timeout or config.ASSISTANT_TIMEOUT
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    self._session = aiohttp.ClientSession(
                        timeout=aiohttp.ClientTimeout(total=self._timeout, connect=10),
                        trust_env=False
                    )
        return self._session

    async def close(self) -> None:
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
            self._session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def answer(self, query: str) -> AssistantAnswer:
        """
        Raises:
            UpstreamError: retrieval failed, the endpoint could not be
                reached, or it answered with something unusable
        """
        citations: List[Citation] = []
        if self._retriever is not None:
            try:
                citations = await self._retriever(query)
            except Exception as e:
                raise UpstreamError(f"Context retrieval failed: {e}")

        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(query, citations)},
            ],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

        session = await self._get_session()
        try:
            async with session.post(
                f"{self._base_url}/chat/completions",
                json=body,
                headers=self._headers()
            ) as response:
                if response.status != 200:
                    detail = await response.text()
                    raise UpstreamError(
                        f"Assistant endpoint returned {response.status}: {detail[:200]}",
                        code="ASSISTANT_HTTP_ERROR"
                    )
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UpstreamError(f"Assistant endpoint unreachable: {e}", code="ASSISTANT_UNREACHABLE")

        try:
            text = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise UpstreamError("Assistant endpoint returned a malformed response", code="ASSISTANT_BAD_RESPONSE")
        if not isinstance(text, str) or not text.strip():
            raise UpstreamError("Assistant returned an empty answer", code="ASSISTANT_BAD_RESPONSE")

        return AssistantAnswer(text=text.strip(), citations=citations)


class UnavailableAssistant:
    """Used when no assistant endpoint is configured."""

    async def answer(self, query: str) -> AssistantAnswer:
        raise UpstreamError("The assistant is not configured on this server", code="ASSISTANT_UNAVAILABLE")


def create_assistant(store: Store) -> "HTTPAssistant | UnavailableAssistant":
    """Build the assistant the configuration asks for."""
    if not config.ASSISTANT_URL:
        logger.info("No assistant endpoint configured; assistant requests will fail")
        return UnavailableAssistant()
    logger.info("Assistant endpoint: %s (model %s)", config.ASSISTANT_URL, config.ASSISTANT_MODEL)
    return HTTPAssistant(retriever=StoreHistoryRetriever(store))


__all__ = [
    'SYSTEM_PROMPT',
    'format_answer',
    'build_prompt',
    'StoreHistoryRetriever',
    'HTTPAssistant',
    'UnavailableAssistant',
    'create_assistant',
]
