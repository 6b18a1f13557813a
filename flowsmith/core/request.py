"""
Generation request.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Tuple


WORKFLOW_TYPES = ("multi_department", "customer_journey", "data_pipeline", "complex_integration")


@dataclass(frozen=True)
class GenerationRequest:
    """One natural-language request for a workflow. Immutable once accepted.

    ``request_id`` identifies the request for settlement; retrying a
    settlement with the same id never charges twice.
    """
    principal_id: str
    prompt: str
    platform: str = "n8n"
    workflow_type: Optional[str] = None
    integrations: Tuple[str, ...] = ()
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if not self.principal_id or not self.principal_id.strip():
            raise ValueError("principal_id is required and cannot be empty")
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt is required and cannot be empty")
        if self.workflow_type is not None and self.workflow_type not in WORKFLOW_TYPES:
            raise ValueError(f"workflow_type must be one of: {list(WORKFLOW_TYPES)}")
        object.__setattr__(self, "integrations", tuple(self.integrations))
