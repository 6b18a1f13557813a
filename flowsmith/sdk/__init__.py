"""
SDK for flowsmith.

Inference gateway used by the pipeline stages.
"""

from .inference import (
    InferenceError,
    InferenceGateway,
    InferenceQuotaError,
    InferenceResult,
    InferenceTimeout,
    OpenAIGateway,
    Role,
)

__all__ = [
    "InferenceError",
    "InferenceGateway",
    "InferenceQuotaError",
    "InferenceResult",
    "InferenceTimeout",
    "OpenAIGateway",
    "Role",
]
