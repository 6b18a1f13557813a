"""
Graph assembler.

Merges module graphs into one workflow without any inference call:
node ids are namespaced per module, display names get a module prefix,
inter-module edges come from the blueprint's declared data flow, and
positions are laid out left to right in module order.

The result is checked by ``validate_workflow_graph`` before it leaves
this module.
"""

import logging
from typing import Dict, List, Sequence, Set, Tuple

from .errors import AssemblyError
from .models import (
    Blueprint,
    Connection,
    ModuleBoundary,
    ModuleGraph,
    Node,
    WorkflowGraph,
    has_cycle,
)

logger = logging.getLogger(__name__)

ROWS_PER_COLUMN = 5
ORIGIN = (240, 300)
X_SPACING = 220
Y_SPACING = 160
MODULE_GAP = 1  # empty columns between modules


def global_id(module_index: int, local_id: str) -> str:
    return f"m{module_index}.{local_id}"


def display_name(module_index: int, name: str) -> str:
    return f"[{module_index + 1}] {name}"


def layout(module_graphs: Sequence[ModuleGraph]) -> Dict[Tuple[int, str], Tuple[int, int]]:
    """Canvas positions keyed by (module index, local id).

    Modules go left to right in blueprint order; nodes within a module
    fill columns of ``ROWS_PER_COLUMN`` in synthesis order.
    """
    positions: Dict[Tuple[int, str], Tuple[int, int]] = {}
    column_offset = 0
    for graph in module_graphs:
        for position, node in enumerate(graph.nodes):
            column, row = divmod(position, ROWS_PER_COLUMN)
            positions[(graph.module_index, node.id)] = (
                ORIGIN[0] + (column_offset + column) * X_SPACING,
                ORIGIN[1] + row * Y_SPACING,
            )
        columns = -(-len(graph.nodes) // ROWS_PER_COLUMN)
        column_offset += columns + MODULE_GAP
    return positions


def assemble(blueprint: Blueprint, module_graphs: Sequence[ModuleGraph], platform: str) -> WorkflowGraph:
    """Build the validated WorkflowGraph for a blueprint.

    Args:
        blueprint: The plan the modules were synthesized from
        module_graphs: One graph per module, in blueprint order
        platform: Target platform name recorded on the graph

    Raises:
        AssemblyError: Missing modules, missing data-flow roles or an invalid result
    """
    if len(module_graphs) != len(blueprint.modules):
        raise AssemblyError(
            f"Expected {len(blueprint.modules)} module graphs, got {len(module_graphs)}"
        )
    for index, (spec, graph) in enumerate(zip(blueprint.modules, module_graphs)):
        if graph.module_index != index or graph.module_name != spec.name:
            raise AssemblyError(
                f"Module graph {graph.module_index} '{graph.module_name}' does not match "
                f"blueprint module {index} '{spec.name}'"
            )

    positions = layout(module_graphs)
    nodes: List[Node] = []
    connections: List[Connection] = []
    boundaries: List[ModuleBoundary] = []
    used_names: Set[str] = set()

    for graph in module_graphs:
        index = graph.module_index
        node_ids = []
        for node in graph.nodes:
            name = display_name(index, node.name)
            suffix = 2
            while name in used_names:
                name = f"{display_name(index, node.name)} ({suffix})"
                suffix += 1
            used_names.add(name)

            node_ids.append(global_id(index, node.id))
            nodes.append(Node(
                id=global_id(index, node.id),
                name=name,
                type=node.type,
                parameters=dict(node.parameters),
                role=node.role,
                type_version=node.type_version,
                position=positions[(index, node.id)],
            ))

        for connection in graph.connections:
            connections.append(Connection(
                source=global_id(index, connection.source),
                target=global_id(index, connection.target),
                output_index=connection.output_index,
            ))
        boundaries.append(ModuleBoundary(index=index, name=graph.module_name, node_ids=tuple(node_ids)))

    for edge in blueprint.data_flow:
        source_index = blueprint.module_index(edge.source)
        target_index = blueprint.module_index(edge.target)
        source_nodes = module_graphs[source_index].nodes_with_role(edge.source_role)
        target_nodes = module_graphs[target_index].nodes_with_role(edge.target_role)
        if not source_nodes:
            raise AssemblyError(f"Module '{edge.source}' has no node with role '{edge.source_role}'")
        if not target_nodes:
            raise AssemblyError(f"Module '{edge.target}' has no node with role '{edge.target_role}'")
        connections.append(Connection(
            source=global_id(source_index, source_nodes[0].id),
            target=global_id(target_index, target_nodes[0].id),
        ))

    workflow = WorkflowGraph(
        name=blueprint.title,
        platform=platform,
        nodes=tuple(nodes),
        connections=tuple(connections),
        modules=tuple(boundaries),
    )

    problems = validate_workflow_graph(workflow, blueprint)
    if problems:
        logger.error("Assembled graph rejected: %s", "; ".join(problems))
        raise AssemblyError("Assembled graph rejected: " + "; ".join(problems))

    logger.info("Assembled '%s': %d nodes, %d connections across %d modules",
                workflow.name, len(workflow.nodes), len(workflow.connections), len(boundaries))
    return workflow


def validate_workflow_graph(graph: WorkflowGraph, blueprint: Blueprint) -> List[str]:
    """Problems with an assembled (or re-loaded) graph; empty when valid.

    - node ids and display names are unique
    - every connection references existing nodes
    - module boundaries match the blueprint and cover every node once
    - edges crossing modules only join pairs declared in the data flow
    - the whole graph is acyclic
    """
    problems: List[str] = []

    ids = [node.id for node in graph.nodes]
    names = [node.name for node in graph.nodes]
    duplicate_ids = sorted({node_id for node_id in ids if ids.count(node_id) > 1})
    if duplicate_ids:
        problems.append(f"duplicate node ids: {', '.join(duplicate_ids)}")
    duplicate_names = sorted({name for name in names if names.count(name) > 1})
    if duplicate_names:
        problems.append(f"duplicate node names: {', '.join(duplicate_names)}")

    known = set(ids)
    dangling = sorted({
        endpoint
        for connection in graph.connections
        for endpoint in (connection.source, connection.target)
        if endpoint not in known
    })
    if dangling:
        problems.append(f"connections reference unknown nodes: {', '.join(dangling)}")

    expected = [(index, spec.name) for index, spec in enumerate(blueprint.modules)]
    actual = [(boundary.index, boundary.name) for boundary in graph.modules]
    if actual != expected:
        problems.append("module boundaries do not match the blueprint")
    covered = [node_id for boundary in graph.modules for node_id in boundary.node_ids]
    if sorted(covered) != sorted(ids):
        problems.append("module boundaries do not cover every node exactly once")

    declared = {(edge.source, edge.target) for edge in blueprint.data_flow}
    module_names = {boundary.index: boundary.name for boundary in graph.modules}
    for connection in graph.connections:
        source_module = graph.module_of(connection.source)
        target_module = graph.module_of(connection.target)
        if source_module is None or target_module is None or source_module == target_module:
            continue
        pair = (module_names[source_module], module_names[target_module])
        if pair not in declared:
            problems.append(f"undeclared data flow {pair[0]} -> {pair[1]}")

    if not dangling and has_cycle(ids, graph.connections):
        problems.append("connections form a cycle")

    return problems
