"""Provider adapters that turn an image URL into a generation prompt.

Both adapters share one flow: fetch and encode the image, post it with the
instruction text, normalize the response. Non-success responses are mapped onto
the error taxonomy in `errors` so the retry layer can tell throttling apart from
other failures.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from .config import PROVIDER_TIMEOUT
from .errors import NetworkError, ProviderError, RateLimitedError, is_rate_limit_message
from .fetch import fetch_and_encode
from .models import ImageData, OpenRouterModel, ProviderName

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[ImageData]]

GEMINI_URL_TEMPLATE = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "{model}:generateContent"
)
OPENROUTER_API_URL = "https://openrouter.ai/api/v1"

KNOWN_GEMINI_MODELS = [
    "gemini-2.0-flash-lite",
    "gemini-1.5-flash",
    "gemini-1.5-flash-8b",
    "gemini-1.5-pro",
    "gemini-pro",
]

GEMINI_PROMPT = """Analyze this image in detail and create a comprehensive prompt that could be used to generate a similar image using AI image generation tools like Midjourney, DALL-E, or Stable Diffusion.

Include the following in your prompt:
1. Main subject and composition
2. Art style and medium (e.g., photography, digital art, painting, 3D render)
3. Lighting and atmosphere
4. Color palette and mood
5. Camera angle and perspective
6. Technical details (depth of field, resolution quality)
7. Any text or graphic elements
8. Background and environment
9. Specific details about objects, people, or elements
10. Keywords for style modifiers

Format the response as a single, detailed prompt that starts with the main subject and flows naturally. Make it ready to use directly in an AI image generator."""

OPENROUTER_PROMPT = """Analyze this image in detail and create a comprehensive prompt that could be used to generate a similar image using AI image generation tools like Midjourney, DALL-E, or Stable Diffusion.

Include the following in your prompt:
1. Main subject and composition
2. Art style and medium
3. Lighting and atmosphere
4. Color palette and mood
5. Camera angle and perspective
6. Technical details
7. Any text or graphic elements
8. Background and environment
9. Specific details
10. Keywords for style modifiers

CRITICAL OUTPUT INSTRUCTIONS:
- Return ONLY the prompt text.
- Do NOT use markdown (no bold **, no italics *, no headers ###).
- Do NOT include any introductory text like "Here is the prompt" or "Sure".
- Do NOT include any concluding text.
- Just the raw prompt string."""

CONVERSATIONAL_PREFIXES = (
    "Here is a comprehensive prompt",
    "Here is the prompt",
    "Here is a detailed prompt",
    "Sure, here is",
    "Prompt:",
)


def clean_prompt_text(content: str) -> str:
    """Strip markdown and chatty lead-ins from a model response.

    Removes `###` headers, `**` bold markers and one wrapping quote at each
    end. If the text then starts with a known lead-in phrase, everything up to
    and including the first colon or newline is dropped, and the remaining
    pieces are joined with single spaces.

    Args:
        content: Raw response text

    Returns:
        Cleaned prompt text
    """
    content = re.sub(r"^###\s*", "", content, flags=re.MULTILINE)
    content = content.replace("**", "")
    content = re.sub(r"\A[\"']|[\"']\Z", "", content)
    content = content.strip()

    lowered = content.lower()
    for prefix in CONVERSATIONAL_PREFIXES:
        if lowered.startswith(prefix.lower()):
            parts = re.split(r"[:\n]", content)
            if len(parts) > 1:
                content = " ".join(parts[1:]).strip()
                break

    return content


class PromptProvider(ABC):
    """Base adapter: fetch image, call the provider, normalize the answer."""

    name: ProviderName
    label = "Provider"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        fetcher: Optional[Fetcher] = None,
        timeout: float = PROVIDER_TIMEOUT,
    ):
        self.client = client
        self.timeout = timeout
        self._fetcher = fetcher

    async def fetch_image(self, reference: str) -> ImageData:
        if self._fetcher is not None:
            return await self._fetcher(reference)
        return await fetch_and_encode(reference, client=self.client)

    async def generate(self, reference: str, credential: str, model: str) -> str:
        """Generate a prompt describing the image at `reference`.

        Raises:
            RateLimitedError: Provider signalled throttling
            ProviderError: Any other non-success response
            NetworkError: Image fetch or provider transport failure
        """
        image = await self.fetch_image(reference)
        url, headers, payload = self.build_request(image, credential, model)

        logger.debug(f"{self.label} request for {reference} using {model}")
        response = await self._post(url, headers, payload)
        self.check_response(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"{self.label} returned invalid JSON: {e}") from e
        return self.parse_response(data)

    @abstractmethod
    def build_request(
        self, image: ImageData, credential: str, model: str
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return (url, headers, json payload) for one generation call."""

    @abstractmethod
    def parse_response(self, data: dict[str, Any]) -> str:
        """Extract the prompt text from a successful response body."""

    async def list_models(self, credential: Optional[str] = None) -> list:
        return []

    async def _post(self, url: str, headers: dict, payload: dict) -> httpx.Response:
        try:
            if self.client is not None:
                return await self.client.post(url, headers=headers, json=payload)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(url, headers=headers, json=payload)
        except httpx.TransportError as e:
            raise NetworkError(f"{self.label} request failed: {e}") from e

    def error_message(self, response: httpx.Response) -> str:
        """Pull the provider's own error message out of a failed response."""
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error

        return f"{self.label} API error: {response.reason_phrase}"

    def check_response(self, response: httpx.Response):
        if response.is_success:
            return

        message = self.error_message(response)
        status = response.status_code
        if status == 429 or is_rate_limit_message(message):
            raise RateLimitedError(message, status_code=status)
        raise ProviderError(message, status_code=status)


class GeminiProvider(PromptProvider):
    """Google Gemini generateContent with an inline image part."""

    name = ProviderName.GEMINI
    label = "Gemini"

    def build_request(self, image, credential, model):
        url = GEMINI_URL_TEMPLATE.format(model=model)
        headers = {
            "x-goog-api-key": credential,
            "Content-Type": "application/json",
        }
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": GEMINI_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": image.mime_type,
                                "data": image.data,
                            }
                        },
                    ],
                }
            ]
        }
        return url, headers, payload

    def parse_response(self, data):
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("Gemini returned no candidates")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            reason = candidate.get("finishReason", "unknown")
            raise ProviderError(f"Gemini returned no text (finishReason: {reason})")
        return text

    async def list_models(self, credential=None):
        return list(KNOWN_GEMINI_MODELS)


class OpenRouterProvider(PromptProvider):
    """OpenRouter OpenAI-compatible chat completion with a data-URI image."""

    name = ProviderName.OPENROUTER
    label = "OpenRouter"

    def __init__(self, *args, referer: str = "https://localhost:3000",
                 title: str = "Image to Prompt App", **kwargs):
        super().__init__(*args, **kwargs)
        self.referer = referer
        self.title = title

    def build_request(self, image, credential, model):
        url = f"{OPENROUTER_API_URL}/chat/completions"
        headers = {
            "Authorization": f"Bearer {credential}",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
            "Content-Type": "application/json",
        }
        payload = {
            "model": model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": OPENROUTER_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{image.mime_type};base64,{image.data}"
                            },
                        },
                    ],
                }
            ],
        }
        return url, headers, payload

    def parse_response(self, data):
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        return clean_prompt_text(message.get("content") or "")

    async def list_models(self, credential=None) -> list[OpenRouterModel]:
        """Fetch the OpenRouter model catalogue. Returns [] on any failure."""
        headers = {"Authorization": f"Bearer {credential}"} if credential else {}
        url = f"{OPENROUTER_API_URL}/models"
        try:
            if self.client is not None:
                response = await self.client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers=headers)
            response.raise_for_status()
            return [OpenRouterModel(**item) for item in response.json().get("data", [])]
        except Exception as e:
            logger.error(f"Failed to fetch OpenRouter models: {e}")
            return []


PROVIDERS = {cls.name: cls for cls in (GeminiProvider, OpenRouterProvider)}


def get_provider(name: ProviderName, **kwargs) -> PromptProvider:
    """Build the adapter registered for a provider name."""
    try:
        provider_cls = PROVIDERS[ProviderName(name)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown provider: {name}")
    return provider_cls(**kwargs)
