import logging
import pathlib
from uuid import uuid4

import httpx
import jinja2
from openai import APITimeoutError
from openai import AsyncOpenAI
from openai import OpenAIError
from tenacity import RetryCallState
from tenacity import retry
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from app.core.config import settings
from app.core.exceptions import EnhancementServiceError
from app.core.exceptions import EnhancementTimeout
from app.models.field_schema import prompt_instruction_for

# Configure module logger
logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a professional technical writer specializing in civil engineering and property inspection reports. "
    "Generate clear, professional, and technically accurate paragraphs based on bullet point notes."
)


class LLMError(Exception):
    """Raised when LLM call fails"""


class LLMTimeoutError(LLMError):
    """Raised when the LLM provider did not answer within the client timeout"""


# --- Reusable Jinja2 Environment ---
PROMPT_DIR = pathlib.Path(__file__).parent / "prompt_templates"
env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(PROMPT_DIR),
    keep_trailing_newline=False,
    autoescape=False,
)


# ---------------------------------------------------------------
# OpenAI-compatible client with explicit timeouts
# ---------------------------------------------------------------
timeout_config = httpx.Timeout(
    settings.LLM_CONNECT_TIMEOUT,
    read=settings.LLM_READ_TIMEOUT,
)

client: AsyncOpenAI | None = None
if settings.openai_api_key:
    client = AsyncOpenAI(
        base_url=settings.llm_base_url,
        api_key=settings.openai_api_key,
        timeout=timeout_config,
        max_retries=0,  # retries are handled by tenacity below
    )
else:
    logger.warning("OPENAI_API_KEY not configured. AI text enhancement will fall back to the original text.")


def is_configured() -> bool:
    return client is not None


# ---------------------------------------------------------------
# Helper predicate for tenacity retry
# ---------------------------------------------------------------


def _should_retry_llm_call(retry_state: RetryCallState) -> bool:
    """Determines if a retry should occur based on the exception in RetryCallState."""
    if not retry_state.outcome:
        return False

    exc = retry_state.outcome.exception()
    if not exc:
        return False

    # Unwrap our custom LLMError to get to the original cause (e.g., OpenAIError)
    actual_exception = exc.__cause__ if isinstance(exc, LLMError) and exc.__cause__ else exc

    status = getattr(actual_exception, "status", None) or getattr(actual_exception, "status_code", None)
    if status in {429, 500, 502, 503, 504}:
        logger.debug("Retryable API error status %s detected. Retrying...", status)
        return True
    return False


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    retry=_should_retry_llm_call,
    reraise=True,
)  # type: ignore
async def call_llm(prompt: str, system_prompt: str = SYSTEM_PROMPT) -> str:
    request_id = str(uuid4())
    if client is None:
        raise LLMError("OpenAI API key not configured. Please set OPENAI_API_KEY environment variable.")

    logger.info("[%s] Making LLM API call with model: %s", request_id, settings.model_id)
    try:
        rsp = await client.chat.completions.create(
            model=settings.model_id,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=1000,
            temperature=0.3,
            timeout=timeout_config,
        )

        if not rsp or not getattr(rsp, "choices", None):
            logger.error("[%s] Invalid response structure from LLM API: %s", request_id, str(rsp))
            raise LLMError(f"Invalid response structure from LLM API: {str(rsp)}")

        message = rsp.choices[0].message
        content = (getattr(message, "content", None) or "").strip()
        logger.debug("[%s] LLM response received, length: %d chars", request_id, len(content))
        return content
    except LLMError:
        raise
    except APITimeoutError as e:
        logger.error("[%s] LLM request timed out: %s", request_id, str(e))
        raise LLMTimeoutError(f"LLM request timed out: {str(e)}") from e
    except OpenAIError as e:
        # tenacity decides on the wrapped cause whether another attempt is made
        logger.error("[%s] OpenAI API error: %s", request_id, str(e), exc_info=True)
        raise LLMError(f"OpenAI API error: {str(e)}") from e
    except Exception as e:
        logger.exception("[%s] Unexpected error in LLM call", request_id)
        raise LLMError(f"Unexpected error in LLM call: {str(e)}") from e


def build_enhancement_prompt(raw_text: str, field_type: str, context: str | None) -> str:
    """Render the field-enhancement prompt for *field_type*."""
    try:
        template = env.get_template("enhance_field.jinja2")
        return template.render(
            instruction=prompt_instruction_for(field_type),
            bullet_points=raw_text,
            context=context,
        )
    except jinja2.TemplateNotFound:
        logger.error("Template not found: enhance_field.jinja2")
        raise LLMError("Internal configuration error: Template 'enhance_field.jinja2' not found.") from None


async def enhance_text(raw_text: str, field_type: str, context: str | None = None) -> str:
    """Turn the author's notes for one field into a professional paragraph.

    This is the text-enhancement capability consumed by the enhancement
    worker. Failures are reported as EnhancementTaskFailure subclasses so the
    worker can fall back to *raw_text*.
    """
    if not raw_text or not raw_text.strip():
        raise EnhancementServiceError("Bullet points are required for text generation")

    try:
        prompt = build_enhancement_prompt(raw_text, field_type, context)
        generated = await call_llm(prompt)
    except LLMTimeoutError as e:
        raise EnhancementTimeout(str(e)) from e
    except LLMError as e:
        raise EnhancementServiceError(str(e)) from e

    if not generated:
        raise EnhancementServiceError("No text generated from the language model")
    return generated
