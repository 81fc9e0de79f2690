"""LLM Client for Groq chat completions."""
import time
from dataclasses import dataclass
from typing import List, Optional, Dict, Any
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import GROQ_API_KEY, TUTOR_MODEL, TUTOR_MAX_TOKENS, TUTOR_TEMPERATURE

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class LLMClient:
    """Client for interfacing with Groq API for chat completions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = TUTOR_MODEL,
        temperature: float = TUTOR_TEMPERATURE
    ):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            model: Default chat model
            temperature: Default sampling temperature
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.model = model
        self.temperature = temperature
        self.client = Groq(api_key=self.api_key)
        logger.info("LLMClient initialized successfully")

    def generate(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: int = TUTOR_MAX_TOKENS,
        temperature: Optional[float] = None
    ) -> LLMResponse:
        """
        Generate a completion for an ordered list of role-tagged messages.

        Args:
            messages: ``{"role", "content"}`` dicts, oldest first
            model: Model name (defaults to the client's model)
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (defaults to the client's)

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        if not messages:
            raise ValueError("Messages list cannot be empty")

        model = model or self.model
        temperature = self.temperature if temperature is None else temperature
        start_time = time.time()

        try:
            logger.debug(f"Generating response with model: {model}, messages={len(messages)}")

            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )
        except RateLimitError as e:
            raise self._failure(
                "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                model, start_time, e,
                retry_after=60  # Suggest retry after 60 seconds
            )
        except AuthenticationError as e:
            raise self._failure(
                "AUTHENTICATION_ERROR",
                "Authentication failed. Please check your API key.",
                model, start_time, e
            )
        except APITimeoutError as e:
            raise self._failure(
                "TIMEOUT_ERROR",
                "Request timed out. Please try again.",
                model, start_time, e
            )
        except APIError as e:
            raise self._failure("API_ERROR", f"Groq API error: {str(e)}", model, start_time, e)
        except Exception as e:
            raise self._failure(
                "UNKNOWN_ERROR",
                f"Unexpected error during generation: {str(e)}",
                model, start_time, e,
                error_type=type(e).__name__
            )

        latency_ms = int((time.time() - start_time) * 1000)
        text = response.choices[0].message.content

        if not text or not text.strip():
            error = LLMError(
                code="EMPTY_RESPONSE",
                message="No message received from the model.",
                details={"model": model, "latency_ms": latency_ms}
            )
            logger.error(f"Empty completion: model={model}, latency={latency_ms}ms")
            raise LLMClientError(error)

        tokens_input = response.usage.prompt_tokens
        tokens_output = response.usage.completion_tokens

        logger.info(
            f"Generated response: model={model}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms"
        )

        return LLMResponse(
            text=text,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            model_used=model
        )

    def _failure(
        self,
        code: str,
        message: str,
        model: str,
        start_time: float,
        original: Exception,
        **extra: Any
    ) -> LLMClientError:
        latency_ms = int((time.time() - start_time) * 1000)
        error = LLMError(
            code=code,
            message=message,
            details={
                **extra,
                "model": model,
                "latency_ms": latency_ms,
                "original_error": str(original)
            }
        )
        logger.error(
            f"{code}: model={model}, latency={latency_ms}ms, error={original}",
            exc_info=True,
            extra={"error_code": error.code, "error_details": error.details}
        )
        return LLMClientError(error)
