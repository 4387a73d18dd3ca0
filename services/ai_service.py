"""
AI service for sending sheet text and images to the Chat Completions API.
"""
import base64
import json
import logging
import time
import re
import asyncio
from typing import Dict, Any, List, Optional
from openai import AsyncOpenAI
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
from utils.performance import get_tracker
from config.settings import (
    DEFAULT_MODEL_TEMP,
    DEFAULT_MODEL_MAX_TOKENS,
    RESPONSES_TIMEOUT_SECONDS,
)
from utils.exceptions import AIProcessingError, JSONValidationError

# Initialize logger at module level
logger = logging.getLogger(__name__)


def _strip_json_fences(s: str) -> str:
    """Strip JSON code fences from string to prevent parsing errors."""
    if not s:
        return s
    m = re.match(r"^```(?:json)?\s*(.*)```$", s.strip(), re.DOTALL | re.IGNORECASE)
    return m.group(1).strip() if m else s


def _build_user_content(input_text: str, image_bytes: Optional[bytes]) -> Any:
    """Plain text, or a text + inline PNG content list when an image is attached."""
    if not image_bytes:
        return input_text
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return [
        {"type": "text", "text": input_text},
        {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}},
    ]


@retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=3, max=8),
    retry=retry_if_exception_type((AIProcessingError)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
)
async def make_chat_completion_request(
    client: AsyncOpenAI,
    input_text: str,
    model: str,
    instructions: str,
    temperature: float = DEFAULT_MODEL_TEMP,
    max_tokens: int = DEFAULT_MODEL_MAX_TOKENS,
    image_bytes: Optional[bytes] = None,
    operation: Optional[str] = None,
    job_id: Optional[str] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Make a Chat Completions API request in JSON mode.

    Timeouts and API failures surface as AIProcessingError, which is retried once.
    """
    start_time = time.time()
    timeout = timeout or RESPONSES_TIMEOUT_SECONDS

    try:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": instructions},
            {"role": "user", "content": _build_user_content(input_text, image_bytes)},
        ]

        api_params = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }

        response = await asyncio.wait_for(
            client.chat.completions.create(**api_params),
            timeout=timeout
        )

        content = response.choices[0].message.content

        if not content:
            raise AIProcessingError("Empty response from Chat Completions API")

        request_time = time.time() - start_time
        usage = response.usage

        if usage:
            logger.info(
                f"Token usage - Input: {usage.prompt_tokens}, "
                f"Output: {usage.completion_tokens}"
            )

        tracker = get_tracker()
        tracker.add_metric_with_context(
            category="api_request",
            duration=request_time,
            job_id=job_id,
            operation=operation,
            model=model,
            with_image=bool(image_bytes),
        )

        logger.info(
            f"Chat Completions request completed in {request_time:.2f}s "
            f"for {operation or 'unknown operation'}"
        )

        return content

    except asyncio.TimeoutError:
        request_time = time.time() - start_time
        logger.error(f"Chat Completions timeout after {request_time:.2f}s ({operation})")
        raise AIProcessingError(f"Timeout after {timeout}s")

    except AIProcessingError:
        raise

    except Exception as e:
        request_time = time.time() - start_time
        logger.error(f"Chat Completions error: {str(e)} after {request_time:.2f}s ({operation})")
        raise AIProcessingError(f"Chat Completions request failed: {str(e)}")


async def request_json_object(
    client: AsyncOpenAI,
    input_text: str,
    model: str,
    instructions: str,
    **kwargs,
) -> Dict[str, Any]:
    """
    Send one request and parse the reply as a JSON object.

    Raises:
        AIProcessingError: the call failed or timed out after retries
        JSONValidationError: the reply is not a JSON object
    """
    content = await make_chat_completion_request(client, input_text, model, instructions, **kwargs)
    try:
        parsed = json.loads(_strip_json_fences(content))
    except json.JSONDecodeError as e:
        raise JSONValidationError(f"Model returned invalid JSON: {str(e)}")
    if not isinstance(parsed, dict):
        raise JSONValidationError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
