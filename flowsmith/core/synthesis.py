"""
Module synthesizer.

Generates one subgraph per blueprint module. Modules are independent at
this point (wiring happens during assembly), so they all run in a
bounded thread pool and are joined before assembly starts.

Per module:
1. One inference call with a budget proportional to the node range
2. Parse and validate the output
3. On failure, one retry with a corrective note; a second failure aborts the run
"""

import logging
import math
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Sequence

from flowsmith.config.loader import PipelineConfig
from flowsmith.sdk.inference import InferenceError, InferenceGateway, Role

from . import prompts
from .deadline import Deadline, StageAttempt
from .errors import ModuleError, PipelineTimeout
from .exemplars import Exemplar
from .models import Blueprint, Connection, ModuleGraph, ModuleSpec, Node, has_cycle
from .parsing import parse_json_object
from .token_counter import UsageMeter

logger = logging.getLogger(__name__)

EXEMPLARS_PER_MODULE = 2


def parse_module_graph(data: Dict[str, Any], module_index: int, module_name: str) -> ModuleGraph:
    """Build a ModuleGraph from raw model output.

    Connections may be a list of ``{"from": id, "to": id}`` objects or the
    platform's native mapping keyed by source node name. Structural
    problems are left for ``validate_module_graph``.

    Raises:
        ValueError: If the output has no usable node list
    """
    raw_nodes = data.get("nodes")
    if not isinstance(raw_nodes, list) or not raw_nodes:
        raise ValueError("module output has no 'nodes' list")

    nodes: List[Node] = []
    for position, raw in enumerate(raw_nodes, start=1):
        if not isinstance(raw, dict):
            raise ValueError(f"node {position} is not an object")
        node_id = raw.get("id")
        node_id = str(node_id).strip() if node_id is not None else ""
        node_type = raw.get("type")
        if not isinstance(node_type, str) or not node_type:
            raise ValueError(f"node {position} has no type")
        parameters = raw.get("parameters")
        role = raw.get("role")
        version = raw.get("typeVersion", 1)
        nodes.append(Node(
            id=node_id,
            name=str(raw.get("name") or node_id or f"Node {position}"),
            type=node_type,
            parameters=parameters if isinstance(parameters, dict) else {},
            role=role if isinstance(role, str) and role else None,
            type_version=version if isinstance(version, (int, float)) else 1,
        ))

    raw_connections = data.get("connections", [])
    connections: List[Connection] = []
    if isinstance(raw_connections, list):
        for position, raw in enumerate(raw_connections, start=1):
            if not isinstance(raw, dict) or "from" not in raw or "to" not in raw:
                raise ValueError(f"connection {position} needs 'from' and 'to'")
            output = raw.get("output", 0)
            connections.append(Connection(
                source=str(raw["from"]),
                target=str(raw["to"]),
                output_index=output if isinstance(output, int) else 0,
            ))
    elif isinstance(raw_connections, dict):
        ids_by_name = {node.name: node.id for node in nodes}
        for source_name, outputs in raw_connections.items():
            main = outputs.get("main", []) if isinstance(outputs, dict) else []
            for output_index, targets in enumerate(main):
                for target in targets or []:
                    target_name = target.get("node") if isinstance(target, dict) else None
                    if not isinstance(target_name, str):
                        raise ValueError(f"connection from '{source_name}' has no target node")
                    connections.append(Connection(
                        source=ids_by_name.get(source_name, source_name),
                        target=ids_by_name.get(target_name, target_name),
                        output_index=output_index,
                    ))
    else:
        raise ValueError("'connections' must be a list or an object")

    return ModuleGraph(
        module_index=module_index,
        module_name=module_name,
        nodes=tuple(nodes),
        connections=tuple(connections),
    )


def node_count_bounds(spec: ModuleSpec, tolerance: float) -> tuple:
    return (
        math.floor(spec.min_nodes * (1 - tolerance)),
        math.ceil(spec.max_nodes * (1 + tolerance)),
    )


def validate_module_graph(graph: ModuleGraph, spec: ModuleSpec, tolerance: float) -> List[str]:
    """Problems with a synthesized module; empty when it is acceptable.

    - node count within the declared range, widened by ``tolerance``
    - every node has a non-empty id, unique within the module
    - every connection references existing local ids
    - internal connections form no cycle
    """
    problems: List[str] = []

    low, high = node_count_bounds(spec, tolerance)
    if not low <= len(graph.nodes) <= high:
        problems.append(f"has {len(graph.nodes)} nodes, expected {low}-{high}")

    ids = [node.id for node in graph.nodes]
    if any(not node_id for node_id in ids):
        problems.append("some nodes have no id")
    duplicates = sorted({node_id for node_id in ids if node_id and ids.count(node_id) > 1})
    if duplicates:
        problems.append(f"duplicate node ids: {', '.join(duplicates)}")

    known = set(ids)
    dangling = sorted({
        endpoint
        for connection in graph.connections
        for endpoint in (connection.source, connection.target)
        if endpoint not in known
    })
    if dangling:
        problems.append(f"connections reference unknown nodes: {', '.join(dangling)}")
    elif has_cycle(ids, graph.connections):
        problems.append("connections form a cycle")

    return problems


def exemplars_for_module(spec: ModuleSpec, exemplars: Sequence[Exemplar]) -> List[Exemplar]:
    """The run's exemplars most related to one module's integrations."""
    wanted = {name.lower() for name in spec.integrations} | set(spec.name.lower().split())
    ranked = sorted(
        enumerate(exemplars),
        key=lambda item: (-len(wanted & set(item[1].tags)), item[0]),
    )
    return [exemplar for _, exemplar in ranked[:EXEMPLARS_PER_MODULE]]


class ModuleSynthesizer:
    """Builds every module of a blueprint with bounded parallelism."""

    def __init__(self, gateway: InferenceGateway, config: PipelineConfig):
        self.gateway = gateway
        self.config = config

    def token_budget(self, spec: ModuleSpec) -> int:
        synthesis = self.config.synthesis
        return min(spec.max_nodes * synthesis.tokens_per_node, synthesis.max_tokens)

    def synthesize(
        self,
        blueprint: Blueprint,
        module_index: int,
        exemplars: Sequence[Exemplar],
        deadline: Deadline,
        meter: UsageMeter,
        platform: str,
        cancelled: Optional[threading.Event] = None,
    ) -> ModuleGraph:
        """Synthesize and validate one module.

        Raises:
            ModuleError: Both attempts failed, or the run was cancelled
            PipelineTimeout: The run deadline expired
        """
        spec = blueprint.modules[module_index]
        attempt = StageAttempt(spec.name, max_attempts=2)
        system = prompts.module_system(exemplars_for_module(spec, exemplars), platform)
        tolerance = self.config.synthesis.node_tolerance

        while not attempt.done:
            if cancelled is not None and cancelled.is_set():
                attempt.abandon("cancelled")
                break
            deadline.check("synthesis")
            number = attempt.begin()
            note = prompts.corrective_note(attempt.last_failure) if attempt.last_failure else ""
            if number > 1:
                logger.warning("Retrying module '%s': %s", spec.name, attempt.last_failure)

            try:
                result = self.gateway.complete(
                    Role.MODULE_BUILDER,
                    system,
                    prompts.module_prompt(spec, blueprint, note),
                    self.token_budget(spec),
                    deadline.call_timeout(self.config.gateway.timeout_seconds),
                )
            except InferenceError as e:
                deadline.check("synthesis")
                attempt.fail(f"inference failed: {e}")
                continue

            meter.record(Role.MODULE_BUILDER.value, result.usage)
            try:
                graph = parse_module_graph(parse_json_object(result.text), module_index, spec.name)
            except ValueError as e:
                attempt.fail(f"unparsable module: {e}")
                continue

            problems = validate_module_graph(graph, spec, tolerance)
            if problems:
                attempt.fail("; ".join(problems))
                continue

            attempt.succeed()
            logger.info("Module %d '%s' synthesized: %d nodes, %d connections",
                        module_index + 1, spec.name, len(graph.nodes), len(graph.connections))
            return graph

        raise ModuleError(
            f"Module '{spec.name}' failed after {attempt.attempts} attempt(s): {attempt.last_failure}",
            module_name=spec.name,
            attempts=attempt.attempts,
        )

    def synthesize_all(
        self,
        blueprint: Blueprint,
        exemplars: Sequence[Exemplar],
        deadline: Deadline,
        meter: UsageMeter,
        platform: str,
    ) -> List[ModuleGraph]:
        """Fan out one synthesis per module and join before returning.

        Results are ordered by module index, not completion order. The
        first failure cancels queued modules and stops retries of running
        ones; calls already in flight end at their own timeout.

        Raises:
            ModuleError: The lowest-indexed failing module's error
            PipelineTimeout: Not every module finished before the deadline
        """
        module_count = len(blueprint.modules)
        workers = min(module_count, self.config.synthesis.max_in_flight)
        cancelled = threading.Event()
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="flowsmith-module")
        logger.info("Synthesizing %d modules with up to %d in flight", module_count, workers)

        futures: Dict[Future, int] = {}
        try:
            for index in range(module_count):
                future = executor.submit(
                    self.synthesize, blueprint, index, exemplars, deadline, meter, platform, cancelled
                )
                futures[future] = index

            done, pending = wait(futures, timeout=deadline.remaining(), return_when=FIRST_EXCEPTION)

            failed = [future for future in done if future.exception() is not None]
            if failed:
                first = min(failed, key=lambda future: futures[future])
                raise first.exception()
            if pending:
                raise PipelineTimeout(
                    f"{len(pending)} of {module_count} modules unfinished at the deadline",
                    stage="synthesis",
                )

            graphs: List[Optional[ModuleGraph]] = [None] * module_count
            for future in done:
                graphs[futures[future]] = future.result()
            return graphs
        except BaseException:
            cancelled.set()
            for future in futures:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
