import logging
from functools import lru_cache
from typing import Protocol, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel

from config import settings

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@lru_cache(maxsize=1)
def get_genai_client() -> genai.Client:
    """Shared Vertex AI client, relying on Application Default Credentials."""
    if not settings.google_project_id:
        raise ValueError("GOOGLE_PROJECT_ID setting is not configured for the Gen AI client.")
    return genai.Client(
        vertexai=True,
        project=settings.google_project_id,
        location=settings.google_location,
    )


class TextGenerator(Protocol):
    def generate_structured(self, prompt: str, schema: Type[M]) -> M: ...
    def generate_text(self, prompt: str) -> str: ...


def _block_reason(response) -> str:
    candidates = getattr(response, "candidates", None)
    if candidates:
        return f"finish_reason={getattr(candidates[0], 'finish_reason', '?')}"
    feedback = getattr(response, "prompt_feedback", None)
    if feedback:
        return f"prompt_feedback={feedback}"
    return "unknown"


class GeminiTextGenerator:
    def __init__(self, client=None, model: str = None, temperature: float = None):
        self._client = client
        self.model = model or settings.text_model
        self.temperature = settings.text_temperature if temperature is None else temperature

    @property
    def client(self):
        if self._client is None:
            self._client = get_genai_client()
        return self._client

    def generate_structured(self, prompt: str, schema: Type[M]) -> M:
        """Generate JSON constrained by ``schema`` and return it validated."""
        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=self.temperature,
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        parsed = getattr(response, "parsed", None)
        if isinstance(parsed, schema):
            return parsed
        if not response.text:
            raise ValueError(f"Gemini returned an empty structured response ({_block_reason(response)})")
        return schema.model_validate_json(response.text)

    def generate_text(self, prompt: str) -> str:
        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(temperature=self.temperature),
        )
        if not response.text:
            raise ValueError(f"Gemini returned an empty response ({_block_reason(response)})")
        return response.text
