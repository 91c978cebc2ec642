"""Generate optional further-reading suggestions with the chat model."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import List, Optional
from urllib.parse import quote_plus, urlparse

import httpx
from pydantic import BaseModel, Field, field_validator

from .llm import ChatCompletionClient
from .models import Course

LOGGER = logging.getLogger(__name__)

MAX_PER_KIND = 3
URL_CHECK_TIMEOUT = 5.0
URL_CHECK_CONCURRENCY = 3

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

REFERENCE_SYSTEM_PROMPT = (
    "You recommend further reading for university students. "
    "Reply with JSON only, no prose and no markdown, using exactly this shape: "
    '{"journals": [{"title": "", "authors": "", "year": "", "description": "", "url": ""}], '
    '"books": [{"title": "", "authors": "", "year": "", "publisher": "", "description": ""}], '
    '"websites": [{"title": "", "url": "", "description": ""}]}. '
    f"Give at most {MAX_PER_KIND} items per list and only well-known, real sources."
)


class _Reference(BaseModel):
    title: str
    description: str = ""

    @field_validator("title", "description", "authors", "year", "url", "publisher", mode="before", check_fields=False)
    @classmethod
    def _coerce_scalars(cls, value):
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class JournalReference(_Reference):
    authors: str = ""
    year: str = ""
    url: str = ""


class BookReference(_Reference):
    authors: str = ""
    year: str = ""
    publisher: str = ""


class WebsiteReference(_Reference):
    url: str
    is_fallback: bool = False


class ExternalReferences(BaseModel):
    journals: List[JournalReference] = Field(default_factory=list)
    books: List[BookReference] = Field(default_factory=list)
    websites: List[WebsiteReference] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.journals or self.books or self.websites)

    def limited(self, max_per_kind: int = MAX_PER_KIND) -> "ExternalReferences":
        return ExternalReferences(
            journals=self.journals[:max_per_kind],
            books=self.books[:max_per_kind],
            websites=self.websites[:max_per_kind],
        )


def parse_references(raw: str) -> ExternalReferences:
    """Parse a model reply into references, tolerating fences and stray prose.

    Raises ``ValueError`` when no valid JSON object can be found.
    """

    cleaned = _FENCE_RE.sub("", raw).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object found in reference reply")
    payload = json.loads(cleaned[start : end + 1])
    return ExternalReferences.model_validate(payload)


def fallback_search_url(title: str, original_url: str = "") -> str:
    query = quote_plus(title)
    host = urlparse(original_url).netloc.lower()
    if "wikipedia" in host:
        return f"https://en.wikipedia.org/w/index.php?search={query}"
    if "coursera" in host or "course" in title.lower():
        return f"https://www.coursera.org/search?query={query}"
    return f"https://scholar.google.com/scholar?q={query}"


class ExternalReferenceGenerator:
    """Ask the chat model for journals, books and websites related to a question.

    Every failure (timeout, service error, unparsable reply) degrades to an
    empty :class:`ExternalReferences`.
    """

    def __init__(
        self,
        chat_client: ChatCompletionClient,
        *,
        validate_urls: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        max_tokens: int = 800,
    ) -> None:
        self.chat_client = chat_client
        self.validate_urls = validate_urls
        self._http_client = http_client
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def generate(self, query: str, course: Optional[Course] = None) -> ExternalReferences:
        course_line = f"Course: {course.name} ({course.code})\n" if course else ""
        messages = [
            {"role": "system", "content": REFERENCE_SYSTEM_PROMPT},
            {"role": "user", "content": f"{course_line}Student question: {query}"},
        ]
        try:
            completion = await self.chat_client.complete_with_timeout(
                messages,
                timeout=self.timeout,
                max_tokens=self.max_tokens,
                temperature=0.3,
            )
            references = parse_references(completion.content).limited()
        except Exception as error:  # optional feature, never fails the answer
            LOGGER.warning("External reference generation failed: %s", error)
            return ExternalReferences()

        if self.validate_urls and references.websites:
            references.websites = await self._validate_websites(references.websites)
        return references

    async def _validate_websites(self, websites: List[WebsiteReference]) -> List[WebsiteReference]:
        semaphore = asyncio.Semaphore(URL_CHECK_CONCURRENCY)

        async def check(client: httpx.AsyncClient, site: WebsiteReference) -> WebsiteReference:
            async with semaphore:
                if await self._url_reachable(client, site.url):
                    return site
            LOGGER.info("Replacing unreachable reference URL %s", site.url)
            return site.model_copy(
                update={"url": fallback_search_url(site.title, site.url), "is_fallback": True}
            )

        if self._http_client is not None:
            return list(await asyncio.gather(*(check(self._http_client, site) for site in websites)))
        async with httpx.AsyncClient(timeout=URL_CHECK_TIMEOUT, follow_redirects=True) as client:
            return list(await asyncio.gather(*(check(client, site) for site in websites)))

    @staticmethod
    async def _url_reachable(client: httpx.AsyncClient, url: str) -> bool:
        if not url.startswith(("http://", "https://")):
            return False
        try:
            response = await client.head(url, timeout=URL_CHECK_TIMEOUT)
        except httpx.HTTPError:
            return False
        return response.status_code < 400


__all__ = [
    "BookReference",
    "ExternalReferenceGenerator",
    "ExternalReferences",
    "JournalReference",
    "WebsiteReference",
    "fallback_search_url",
    "parse_references",
]
