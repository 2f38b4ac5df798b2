"""Vertex AI Gemini LLM service for SatuPintu.

Wraps the ``vertexai`` SDK to provide JSON-mode generation for the
complaint classifier and the address plausibility check.  Both text and
inline audio (native multimodal input) go through the same call so the
recorded-call path and the text path share one prompt and one parser.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any, Final

import structlog
import vertexai
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from vertexai.generative_models import (
    Content,
    GenerationConfig,
    GenerativeModel,
    Part,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

SATUPINTU_SYSTEM_PROMPT: Final[str] = """\
Kamu adalah mesin analisis pengaduan warga untuk SatuPintu, layanan \
pengaduan terpadu Kota Bandung. Kamu SELALU menjawab dengan satu objek \
JSON yang valid, tanpa teks lain, tanpa markdown.\
"""

# A fenced ```json ... ``` block, or the outermost {...} span.
_FENCED_JSON_RE: Final[re.Pattern[str]] = re.compile(
    r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE
)
_BARE_JSON_RE: Final[re.Pattern[str]] = re.compile(r"\{.*\}", re.DOTALL)


class LLMOutputError(ValueError):
    """The model answered, but not with a usable JSON object."""


def extract_json(raw_text: str) -> dict[str, Any]:
    """Extract a JSON object from a model response.

    Tolerates a fenced code block or surrounding chatter.

    Raises
    ------
    LLMOutputError
        If no JSON object can be parsed or the top level is not an object.
    """
    text = (raw_text or "").strip()
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        text = fenced.group(1)
    elif not text.startswith("{"):
        bare = _BARE_JSON_RE.search(text)
        if bare is None:
            raise LLMOutputError("no JSON object in model output")
        text = bare.group(0)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMOutputError(f"malformed JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise LLMOutputError("top-level JSON value is not an object")
    return parsed


# ---------------------------------------------------------------------------
# LLMService
# ---------------------------------------------------------------------------


class LLMService:
    """Async interface to Vertex AI Gemini.

    The SDK is initialised lazily on first use so that constructing the
    service (e.g. during app startup or in tests) never touches GCP.
    """

    def __init__(
        self,
        project_id: str,
        region: str = "asia-southeast2",
        model_name: str = "gemini-2.0-flash",
    ) -> None:
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._model: GenerativeModel | None = None
        self._initialized = False

    # -- lifecycle ----------------------------------------------------------

    def _initialize(self) -> None:
        """Lazily initialize the Vertex AI SDK and model handle."""
        if self._initialized:
            return
        vertexai.init(project=self._project_id, location=self._region)
        self._model = GenerativeModel(
            model_name=self._model_name,
            system_instruction=[Part.from_text(SATUPINTU_SYSTEM_PROMPT)],
        )
        self._initialized = True
        logger.info(
            "llm.initialised",
            project=self._project_id,
            region=self._region,
            model=self._model_name,
        )

    def _get_model(self) -> GenerativeModel:
        self._initialize()
        assert self._model is not None  # noqa: S101
        return self._model

    # -- public API ---------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def generate_json(
        self,
        prompt: str,
        *,
        audio: bytes | None = None,
        mime_type: str | None = None,
        temperature: float = 0.1,
        max_output_tokens: int = 1024,
    ) -> str:
        """Run *prompt* (optionally with inline audio) in JSON mode.

        Parameters
        ----------
        prompt:
            Instruction text.
        audio:
            Raw audio bytes to attach as an inline part.
        mime_type:
            MIME type of *audio*, e.g. ``audio/mpeg``.  Required with *audio*.
        temperature:
            Sampling temperature.  Lower is more deterministic.

        Returns
        -------
        str
            The raw response text; parse it with :func:`extract_json`.
        """
        start = time.perf_counter()
        model = self._get_model()

        parts: list[Part] = []
        if audio is not None:
            parts.append(Part.from_data(data=audio, mime_type=mime_type or "audio/mpeg"))
        parts.append(Part.from_text(prompt))

        generation_config = GenerationConfig(
            temperature=temperature,
            top_p=0.8,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json",
        )

        response = await model.generate_content_async(
            contents=[Content(role="user", parts=parts)],
            generation_config=generation_config,
        )

        raw_text = (response.text or "").strip()
        elapsed_ms = (time.perf_counter() - start) * 1000

        usage = response.usage_metadata
        logger.info(
            "llm.json_generated",
            prompt_length=len(prompt),
            audio_bytes=len(audio) if audio is not None else 0,
            answer_length=len(raw_text),
            input_tokens=usage.prompt_token_count if usage else 0,
            output_tokens=usage.candidates_token_count if usage else 0,
            processing_time_ms=round(elapsed_ms, 2),
        )
        return raw_text
