"""Gemini generateContent client and JSON extraction helpers."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException

from ledgerlens.core.config import settings

logger = logging.getLogger(__name__)

JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")
JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class LLMError(Exception):
    """Raised when the LLM endpoint cannot be reached or rejects the call."""

    pass


class LLMResponseError(LLMError):
    """Raised when the LLM answered but the answer is unusable."""

    pass


def build_parts(prompt: str, images: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """
    Build the Gemini `parts` array: the prompt text, then one inline_data
    part per image. Images without both data and a mime type are skipped.

    Images are dicts with "data" (base64) and "mime_type" (or "mimeType").
    """
    parts: List[Dict[str, Any]] = [{"text": prompt}]

    for image in images or []:
        data = image.get("data")
        mime_type = image.get("mime_type") or image.get("mimeType")
        if data and mime_type:
            parts.append({"inline_data": {"mime_type": mime_type, "data": data}})

    return parts


def extract_response_text(response: Dict[str, Any]) -> Optional[str]:
    """Return candidates[0].content.parts[0].text, or None if absent."""
    try:
        return response["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


def _extract_json(text: str, pattern: re.Pattern, kind: str) -> Any:
    match = pattern.search(text or "")
    if not match:
        raise LLMResponseError(f"No JSON {kind} found in response")

    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON {kind} from LLM: {e}")
        logger.error(f"Content preview: {match.group(0)[:200]}...")
        raise LLMResponseError(f"Failed to parse JSON {kind} from response: {e}") from e


def extract_json_array(text: str) -> Any:
    """Parse the outermost [...] block of a free-text model answer."""
    return _extract_json(text, JSON_ARRAY_PATTERN, "array")


def extract_json_object(text: str) -> Any:
    """Parse the outermost {...} block of a free-text model answer."""
    return _extract_json(text, JSON_OBJECT_PATTERN, "object")


class GeminiClient:
    """Client for the Gemini generateContent endpoint.

    One request per call. Failures surface immediately as LLMError; there is
    no retry or backoff.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Gemini API key
            model: Model name used in the generateContent URL
            base_url: API base URL
            timeout: Request timeout in seconds
            http_client: Preconfigured httpx client (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generate(self, prompt: str, images: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        POST {"contents": [{"parts": [...]}]} and return the decoded JSON body.

        Raises:
            LLMError: On timeout, transport failure, HTTP error status or a
                non-JSON body
        """
        payload = {"contents": [{"parts": build_parts(prompt, images)}]}

        logger.debug(f"Calling Gemini model {self.model} with {len(payload['contents'][0]['parts'])} parts")

        client = self._http_client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(
                self.endpoint,
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
            )
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Gemini timeout after {self.timeout}s")
            raise LLMError(f"LLM request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            body = e.response.text[:500]
            logger.warning(f"Gemini HTTP error {e.response.status_code}: {body}")
            raise LLMError(f"LLM API error {e.response.status_code}: {body}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Gemini transport error: {e}")
            raise LLMError(f"LLM request failed: {e}") from e
        except ValueError as e:
            raise LLMError("LLM returned a non-JSON body") from e
        finally:
            if self._http_client is None:
                client.close()

    def generate_text(self, prompt: str, images: Optional[List[Dict[str, Any]]] = None) -> str:
        """Call the model and return the first candidate's text."""
        response = self.generate(prompt, images)
        text = extract_response_text(response)
        if not text:
            raise LLMResponseError("No response from Gemini API")
        return text


def get_llm_client() -> GeminiClient:
    """FastAPI dependency: a Gemini client built from settings."""
    if not settings.GEMINI_API_KEY:
        raise HTTPException(status_code=500, detail="GEMINI_API_KEY is not set")

    return GeminiClient(
        api_key=settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        base_url=settings.GEMINI_BASE_URL,
        timeout=settings.GEMINI_TIMEOUT,
    )
