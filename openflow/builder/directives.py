"""Generative-content directives embedded in element content and styles.

A directive is ``<nano:free-text description>``.  Before anything is
persisted, :func:`resolve_directives` replaces every directive with the URL
of a generated image.  Text without a directive is returned unchanged, and
resolved output never contains directive syntax.

Generators share a common interface: ``generate(prompt) -> str`` (a URL).
``PollinationsImageGenerator`` only builds a URL (the image renders lazily
on first fetch); ``HttpImageGenerator`` calls a configured image API through
the ``image_generation`` circuit breaker with retry.
"""

from __future__ import annotations

import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from openflow.config import Settings, settings
from openflow.errors import CircuitOpenError, ProviderError
from openflow.resilience.circuit_breaker import CircuitBreaker, get_circuit_breaker
from openflow.resilience.retry import RetryOptions, request_with_retry

logger = logging.getLogger(__name__)

DIRECTIVE_RE = re.compile(r"<\s*nano:([^>]+)>", re.IGNORECASE)


def contains_directive(text: Optional[str]) -> bool:
    return bool(text) and DIRECTIVE_RE.search(text) is not None  # type: ignore[arg-type]


def is_directive_only(text: Optional[str]) -> bool:
    """True when *text* is nothing but a single directive (surrounding spaces allowed)."""
    return bool(text) and DIRECTIVE_RE.fullmatch(text.strip()) is not None  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------

class ImageGenerator(ABC):
    """Turns a free-text description into an image URL."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return the URL of an image matching *prompt*."""


class PollinationsImageGenerator(ImageGenerator):
    """Builds a Pollinations URL; no request is made at resolution time."""

    BASE_URL = "https://image.pollinations.ai/prompt"

    def __init__(
        self,
        width: int = 1024,
        height: int = 600,
        seed: Callable[[], int] = lambda: random.randint(0, 999_999),
    ) -> None:
        self.width = width
        self.height = height
        self._seed = seed

    @property
    def name(self) -> str:
        return "pollinations"

    def generate(self, prompt: str) -> str:
        return (
            f"{self.BASE_URL}/{quote(prompt, safe='')}"
            f"?seed={self._seed()}&width={self.width}&height={self.height}&nologo=true"
        )


class HttpImageGenerator(ImageGenerator):
    """POSTs ``{"prompt", "width", "height"}`` to an image API.

    Accepts ``{"url": ...}`` or OpenAI-style ``{"data": [{"url": ...}]}``
    responses.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        width: int = 1024,
        height: int = 600,
        breaker: Optional[CircuitBreaker] = None,
        retry_options: Optional[RetryOptions] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.width = width
        self.height = height
        self.breaker = breaker or get_circuit_breaker("image_generation")
        self.retry_options = retry_options
        self._client = client

    @property
    def name(self) -> str:
        return "http"

    def _call(self, prompt: str) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        response = request_with_retry(
            "POST",
            self.api_url,
            self.retry_options,
            client=self._client,
            json={"prompt": prompt, "width": self.width, "height": self.height},
            headers=headers,
        )
        return response.json()

    def generate(self, prompt: str) -> str:
        try:
            data = self.breaker.execute(lambda: self._call(prompt))
        except CircuitOpenError:
            raise
        except Exception as exc:
            raise ProviderError(f"Image generation failed: {exc}") from exc

        url = data.get("url")
        if not url and isinstance(data.get("data"), list) and data["data"]:
            url = data["data"][0].get("url")
        if not isinstance(url, str) or not url or contains_directive(url):
            raise ProviderError("Image generation returned no usable URL")
        return url


def build_image_generator(config: Settings = settings) -> ImageGenerator:
    """Pick the generator named by ``settings.image_provider``."""
    if config.image_provider == "http":
        if not config.image_api_url:
            raise ValueError("IMAGE_API_URL must be set when IMAGE_PROVIDER=http")
        return HttpImageGenerator(
            config.image_api_url,
            api_key=config.image_api_key,
            width=config.image_width,
            height=config.image_height,
        )
    return PollinationsImageGenerator(width=config.image_width, height=config.image_height)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve_directives(text: Optional[str], generator: ImageGenerator) -> Optional[str]:
    """Replace every ``<nano:...>`` in *text* with a generated image URL."""
    if not contains_directive(text):
        return text

    def _replace(match: re.Match[str]) -> str:
        prompt = match.group(1).strip()
        url = generator.generate(prompt)
        logger.info("[Nano Agent] Resolved directive %r via %s", prompt[:60], generator.name)
        return url

    return DIRECTIVE_RE.sub(_replace, text)  # type: ignore[arg-type]


def resolve_styles(styles: dict[str, Any], generator: ImageGenerator) -> dict[str, Any]:
    """Resolve directives in every string value of a style map.

    ``backgroundImage`` values that resolve from a bare directive are wrapped
    in ``url(...)``.
    """
    resolved: dict[str, Any] = {}
    for key, value in styles.items():
        if isinstance(value, str) and contains_directive(value):
            bare = is_directive_only(value)
            value = resolve_directives(value, generator)
            if bare and key == "backgroundImage":
                value = f"url('{value}')"
        resolved[key] = value
    return resolved
