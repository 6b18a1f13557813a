"""
Inference gateway.

Uniform text-in/text-out access to the generation service. Stages send a
role-tagged prompt with a token budget and a timeout and get back raw
text plus the measured token usage. Transport, quota and timeout
failures surface as ``InferenceError`` subclasses; the calling stage
decides what they mean for the pipeline.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import openai
from openai import OpenAI

from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)


class Role(Enum):
    """Which pipeline stage is calling."""
    ARCHITECT = "architect"
    MODULE_BUILDER = "module_builder"


class InferenceError(Exception):
    """Transport-level failure of an inference call."""


class InferenceTimeout(InferenceError):
    """The call did not finish within its timeout."""


class InferenceQuotaError(InferenceError):
    """The service refused the call for rate or quota reasons."""


@dataclass(frozen=True)
class InferenceResult:
    role: Role
    text: str
    usage: TokenUsage
    truncated: bool = False


class InferenceGateway(ABC):
    """Interface every inference backend implements."""

    @abstractmethod
    def complete(
        self,
        role: Role,
        system: str,
        prompt: str,
        max_tokens: int,
        timeout: float,
    ) -> InferenceResult:
        """Run one completion.

        Args:
            role: Calling stage, used for logging and metering
            system: Role instructions
            prompt: Task-specific user prompt
            max_tokens: Completion token budget
            timeout: Seconds before the call is abandoned

        Raises:
            InferenceTimeout, InferenceQuotaError, InferenceError
        """


class OpenAIGateway(InferenceGateway):
    """Gateway backed by the OpenAI chat completions API.

    The client's own retries are disabled: retry policy belongs to the
    pipeline stages, which allow at most one retry each.
    """

    def __init__(self, model: str, client: Optional[OpenAI] = None):
        """Initialize the gateway.

        Args:
            model: OpenAI model name (required)
            client: Preconfigured client; a default ``OpenAI()`` otherwise

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.client = client or OpenAI()

    def complete(
        self,
        role: Role,
        system: str,
        prompt: str,
        max_tokens: int,
        timeout: float,
    ) -> InferenceResult:
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")
        if timeout <= 0:
            raise InferenceTimeout(f"{role.value} call had no time left before starting")

        logger.debug("%s call: model=%s max_tokens=%d timeout=%.1fs",
                     role.value, self.model, max_tokens, timeout)
        try:
            response = self.client.with_options(timeout=timeout, max_retries=0).chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as e:
            raise InferenceTimeout(f"{role.value} call timed out after {timeout:.1f}s") from e
        except openai.RateLimitError as e:
            raise InferenceQuotaError(f"{role.value} call rejected by rate limit: {e}") from e
        except openai.APIError as e:
            raise InferenceError(f"{role.value} call failed: {e}") from e

        usage = response.usage
        if not usage:
            raise InferenceError("OpenAI response missing usage information")
        if not response.choices:
            raise InferenceError("OpenAI response contained no choices")

        choice = response.choices[0]
        truncated = choice.finish_reason == "length"
        if truncated:
            logger.warning("%s response was truncated at %d tokens", role.value, max_tokens)

        return InferenceResult(
            role=role,
            text=choice.message.content or "",
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            ),
            truncated=truncated,
        )
