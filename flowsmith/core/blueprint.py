"""
Blueprint architect.

One inference call decomposes the request into 3-7 ordered modules with
declared data flow. The response is untrusted: it goes through
``parse_blueprint`` before anything downstream sees it, and every
problem found there aborts the run with ``PlanningError``.
"""

import logging
from collections import deque
from typing import Any, Dict, List, Sequence, Tuple

from flowsmith.config.loader import PipelineConfig
from flowsmith.sdk.inference import InferenceError, InferenceGateway, Role

from . import prompts
from .deadline import Deadline, StageAttempt
from .errors import PlanningError
from .exemplars import Exemplar
from .models import Blueprint, DataFlowEdge, ModuleSpec
from .parsing import parse_json_object
from .request import GenerationRequest
from .token_counter import UsageMeter

logger = logging.getLogger(__name__)

MIN_MODULES = 3
MAX_MODULES = 7
MIN_MODULE_NODES = 10
MAX_MODULE_NODES = 30


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def parse_blueprint(data: Dict[str, Any]) -> Blueprint:
    """Validate raw architect output and build a Blueprint.

    Checks:
    - 3 to 7 modules with unique, non-empty names
    - every module has at least one integration
    - every module's node range lies within [10, 30]
    - every data-flow edge references two existing, distinct modules
    - no cycles between modules, and module order is a topological order

    Raises:
        PlanningError: Listing every problem found
    """
    problems: List[str] = []

    raw_modules = data.get("modules")
    if not isinstance(raw_modules, list):
        raise PlanningError("Blueprint has no 'modules' list")
    if not MIN_MODULES <= len(raw_modules) <= MAX_MODULES:
        raise PlanningError(
            f"Blueprint must have {MIN_MODULES}-{MAX_MODULES} modules, got {len(raw_modules)}"
        )

    names: List[str] = []
    drafts: List[Dict[str, Any]] = []
    raw_edges: List[Tuple[str, str, str, str]] = []

    for position, raw in enumerate(raw_modules, start=1):
        if not isinstance(raw, dict):
            problems.append(f"module {position} is not an object")
            continue

        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            problems.append(f"module {position} has no name")
            continue
        name = name.strip()
        if name in names:
            problems.append(f"duplicate module name '{name}'")
            continue
        names.append(name)

        integrations = _string_list(raw.get("integrations"))
        if not integrations:
            problems.append(f"module '{name}' declares no integrations")

        min_nodes, max_nodes = raw.get("min_nodes"), raw.get("max_nodes")
        if not (_is_int(min_nodes) and _is_int(max_nodes)):
            problems.append(f"module '{name}' needs integer min_nodes and max_nodes")
        elif not MIN_MODULE_NODES <= min_nodes <= max_nodes <= MAX_MODULE_NODES:
            problems.append(
                f"module '{name}' node range {min_nodes}-{max_nodes} is outside "
                f"{MIN_MODULE_NODES}-{MAX_MODULE_NODES}"
            )

        for dependency in _string_list(raw.get("depends_on")):
            raw_edges.append((dependency, name, "output", "input"))

        drafts.append({
            "name": name,
            "description": raw.get("description") if isinstance(raw.get("description"), str) else "",
            "integrations": tuple(integrations),
            "min_nodes": min_nodes if _is_int(min_nodes) else 0,
            "max_nodes": max_nodes if _is_int(max_nodes) else 0,
            "error_handling": raw.get("error_handling") if isinstance(raw.get("error_handling"), str) else "",
        })

    raw_flow = data.get("data_flow", [])
    if not isinstance(raw_flow, list):
        problems.append("'data_flow' must be a list")
        raw_flow = []
    for position, raw in enumerate(raw_flow, start=1):
        if not isinstance(raw, dict):
            problems.append(f"data_flow entry {position} is not an object")
            continue
        source, target = raw.get("from"), raw.get("to")
        if not isinstance(source, str) or not isinstance(target, str):
            problems.append(f"data_flow entry {position} needs 'from' and 'to' module names")
            continue
        source_role = raw.get("from_role") or "output"
        target_role = raw.get("to_role") or "input"
        if not isinstance(source_role, str) or not isinstance(target_role, str):
            problems.append(f"data_flow entry {position} has non-string roles")
            continue
        raw_edges.append((source.strip(), target.strip(), source_role, target_role))

    edges: List[DataFlowEdge] = []
    for source, target, source_role, target_role in raw_edges:
        if source not in names or target not in names:
            missing = source if source not in names else target
            problems.append(f"data flow {source} -> {target} references unknown module '{missing}'")
            continue
        if source == target:
            problems.append(f"module '{source}' cannot feed itself")
            continue
        edge = DataFlowEdge(source, target, source_role, target_role)
        if edge not in edges:
            edges.append(edge)

    if problems:
        raise PlanningError("Blueprint rejected: " + "; ".join(problems))

    cycle = _find_cycle(names, edges)
    if cycle:
        raise PlanningError(f"Blueprint rejected: modules form a cycle ({', '.join(cycle)})")

    for edge in edges:
        if names.index(edge.source) > names.index(edge.target):
            problems.append(
                f"module '{edge.target}' is listed before its upstream module '{edge.source}'"
            )
    if problems:
        raise PlanningError("Blueprint rejected: module order is not a topological order: "
                            + "; ".join(problems))

    modules = tuple(
        ModuleSpec(
            upstream=tuple(e for e in edges if e.target == draft["name"]),
            downstream=tuple(e for e in edges if e.source == draft["name"]),
            **draft,
        )
        for draft in drafts
    )

    return Blueprint(
        title=data.get("title") if isinstance(data.get("title"), str) else "Untitled workflow",
        description=data.get("description") if isinstance(data.get("description"), str) else "",
        modules=modules,
        data_flow=tuple(edges),
        error_handling=data.get("error_handling") if isinstance(data.get("error_handling"), str) else "",
    )


def _find_cycle(names: Sequence[str], edges: Sequence[DataFlowEdge]) -> List[str]:
    """Modules left over by Kahn's algorithm; empty when the graph is acyclic."""
    indegree = {name: 0 for name in names}
    for edge in edges:
        indegree[edge.target] += 1

    queue = deque(name for name in names if indegree[name] == 0)
    visited = 0
    while queue:
        current = queue.popleft()
        visited += 1
        for edge in edges:
            if edge.source == current:
                indegree[edge.target] -= 1
                if indegree[edge.target] == 0:
                    queue.append(edge.target)

    if visited == len(names):
        return []
    return [name for name in names if indegree[name] > 0]


class BlueprintArchitect:
    """Plans the module structure of a workflow with one inference call."""

    def __init__(self, gateway: InferenceGateway, config: PipelineConfig):
        self.gateway = gateway
        self.config = config

    def plan(
        self,
        request: GenerationRequest,
        exemplars: Sequence[Exemplar],
        deadline: Deadline,
        meter: UsageMeter,
    ) -> Blueprint:
        """Produce a validated Blueprint.

        Raises:
            PlanningError: Gateway failure, unparsable output or invalid structure
            PipelineTimeout: The run deadline expired
        """
        attempt = StageAttempt("blueprint", max_attempts=2 if self.config.architect.retry else 1)
        system = prompts.architect_system(exemplars, request.platform)
        user_prompt = prompts.architect_prompt(request)

        while not attempt.done:
            deadline.check("architect")
            number = attempt.begin()
            prompt = user_prompt
            if attempt.last_failure:
                prompt += "\n\n# Correction\n" + prompts.corrective_note(attempt.last_failure)

            logger.info("Planning blueprint for request %s (attempt %d)", request.request_id, number)
            try:
                result = self.gateway.complete(
                    Role.ARCHITECT,
                    system,
                    prompt,
                    self.config.architect.max_tokens,
                    deadline.call_timeout(self.config.gateway.timeout_seconds),
                )
            except InferenceError as e:
                deadline.check("architect")
                attempt.fail(f"inference failed: {e}")
                continue

            meter.record(Role.ARCHITECT.value, result.usage)
            try:
                blueprint = parse_blueprint(parse_json_object(result.text))
            except ValueError as e:
                attempt.fail(f"unparsable blueprint: {e}")
                continue
            except PlanningError as e:
                attempt.fail(e.detail)
                continue

            attempt.succeed()
            low, high = blueprint.node_range
            logger.info("Blueprint '%s': %d modules, %d data-flow edges, %d-%d nodes",
                        blueprint.title, len(blueprint.modules), len(blueprint.data_flow), low, high)
            return blueprint

        logger.error("Blueprint planning failed for request %s: %s",
                     request.request_id, attempt.last_failure)
        raise PlanningError(attempt.last_failure or "blueprint planning failed")
