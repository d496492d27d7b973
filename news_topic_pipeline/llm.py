import json
import logging
import time
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.api_core import exceptions
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings, get_settings
from .errors import ConfigurationError, GenerationError, GenerationParseError
from .models import GenerationResponse

log = logging.getLogger(__name__)

# Safety settings: block few things to avoid over-filtering travel news
SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_ONLY_HIGH,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
}

_TRANSIENT = (exceptions.ResourceExhausted, exceptions.ServiceUnavailable, exceptions.InternalServerError)


class GeminiGenerator:
    """Text-generation client: ``generate(prompt, json_mode)`` -> ``GenerationResponse``.

    Any object with the same ``generate`` signature can stand in for it
    (tests use scripted fakes).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
        max_retries: int = 2,
        base_delay: float = 2.0,
    ):
        settings = settings or get_settings()
        if not settings.gemini_api_key:
            raise ConfigurationError("Gemini API key not configured (set GEMINI_API_KEY).")
        genai.configure(api_key=settings.gemini_api_key)
        self.model_name = settings.gemini_model
        self.timeout = settings.generation_timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay

    def _model(self, json_mode: bool) -> "genai.GenerativeModel":
        generation_config = {
            "temperature": self.temperature,
            "top_p": 0.9,
            "top_k": 40,
            "max_output_tokens": self.max_output_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"
        return genai.GenerativeModel(
            model_name=self.model_name,
            generation_config=generation_config,
            safety_settings=SAFETY_SETTINGS,
        )

    def generate(self, prompt: str, json_mode: bool = True) -> GenerationResponse:
        model = self._model(json_mode)

        # Rate limits and 5xx get a short bounded backoff; everything else fails fast
        for attempt in range(self.max_retries):
            try:
                response = model.generate_content(prompt, request_options={"timeout": self.timeout})
                break
            except _TRANSIENT as e:
                if attempt == self.max_retries - 1:
                    raise GenerationError(f"Gemini unavailable: {e}") from e
                time.sleep(self.base_delay * (2 ** attempt))
            except exceptions.DeadlineExceeded as e:
                raise GenerationError(f"Gemini timed out after {self.timeout:.0f}s") from e
            except exceptions.GoogleAPIError as e:
                raise GenerationError(f"Gemini API error: {e}") from e

        return _to_generation_response(response)


def _to_generation_response(response: Any) -> GenerationResponse:
    text = ""
    if getattr(response, "candidates", None):
        try:
            text = response.text
        except ValueError:
            text = ""
    if not text:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            name = getattr(block_reason, "name", str(block_reason))
            raise GenerationError(f"Gemini blocked ({name})")
        raise GenerationError("Gemini returned an empty response")

    usage = getattr(response, "usage_metadata", None)
    token_count = getattr(usage, "total_token_count", None) if usage else None
    return GenerationResponse(text=text, token_count=token_count)


def strip_json_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse a model response into a JSON object, tolerating markdown fences."""
    try:
        data = json.loads(strip_json_fences(raw or ""))
    except json.JSONDecodeError as e:
        raise GenerationParseError("Gemini returned invalid JSON.") from e
    if not isinstance(data, dict):
        raise GenerationParseError("Gemini returned JSON that is not an object.")
    return data
