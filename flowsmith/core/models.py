"""
Domain models for blueprints and workflow graphs.

Everything here is immutable. Stages produce new objects; only the
assembler builds a WorkflowGraph out of module graphs, and nothing is
changed after it is handed to the caller.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class DataFlowEdge:
    """Declared data flow from one module to a later one.

    The roles name the nodes the assembler wires together: the node with
    ``source_role`` in the source module feeds the node with
    ``target_role`` in the target module.
    """
    source: str
    target: str
    source_role: str = "output"
    target_role: str = "input"


@dataclass(frozen=True)
class ModuleSpec:
    """One module of a blueprint."""
    name: str
    description: str
    integrations: Tuple[str, ...]
    min_nodes: int
    max_nodes: int
    error_handling: str = ""
    upstream: Tuple[DataFlowEdge, ...] = ()
    downstream: Tuple[DataFlowEdge, ...] = ()


@dataclass(frozen=True)
class Blueprint:
    """Ordered decomposition of a request into modules."""
    title: str
    description: str
    modules: Tuple[ModuleSpec, ...]
    data_flow: Tuple[DataFlowEdge, ...] = ()
    error_handling: str = ""

    def module_index(self, name: str) -> int:
        for index, module in enumerate(self.modules):
            if module.name == name:
                return index
        raise KeyError(name)

    @property
    def node_range(self) -> Tuple[int, int]:
        return (
            sum(module.min_nodes for module in self.modules),
            sum(module.max_nodes for module in self.modules),
        )


@dataclass(frozen=True)
class Node:
    id: str
    name: str
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    role: Optional[str] = None
    type_version: float = 1
    position: Tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class Connection:
    source: str
    target: str
    output_index: int = 0


@dataclass(frozen=True)
class ModuleGraph:
    """Subgraph synthesized for one ModuleSpec. Ids are module-local."""
    module_index: int
    module_name: str
    nodes: Tuple[Node, ...]
    connections: Tuple[Connection, ...]

    def nodes_with_role(self, role: str) -> List[Node]:
        return [node for node in self.nodes if node.role == role]


@dataclass(frozen=True)
class ModuleBoundary:
    """Which global node ids came from which blueprint module."""
    index: int
    name: str
    node_ids: Tuple[str, ...]


@dataclass(frozen=True)
class WorkflowGraph:
    """The assembled workflow, ready to hand to a platform connector."""
    name: str
    platform: str
    nodes: Tuple[Node, ...]
    connections: Tuple[Connection, ...]
    modules: Tuple[ModuleBoundary, ...]

    def node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def module_of(self, node_id: str) -> Optional[int]:
        for boundary in self.modules:
            if node_id in boundary.node_ids:
                return boundary.index
        return None

    def to_payload(self) -> Dict[str, Any]:
        """Platform-shaped JSON: nodes plus connections keyed by source node name."""
        names = {node.id: node.name for node in self.nodes}
        connections: Dict[str, Dict[str, List[List[Dict[str, Any]]]]] = {}
        for connection in self.connections:
            source_name = names.get(connection.source, connection.source)
            outputs = connections.setdefault(source_name, {"main": []})["main"]
            while len(outputs) <= connection.output_index:
                outputs.append([])
            outputs[connection.output_index].append({
                "node": names.get(connection.target, connection.target),
                "type": "main",
                "index": 0,
            })

        return {
            "name": self.name,
            "nodes": [
                {
                    "id": node.id,
                    "name": node.name,
                    "type": node.type,
                    "typeVersion": node.type_version,
                    "position": list(node.position),
                    "parameters": dict(node.parameters),
                }
                for node in self.nodes
            ],
            "connections": connections,
            "settings": {"executionOrder": "v1"},
            "meta": {
                "platform": self.platform,
                "modules": [
                    {"index": b.index, "name": b.name, "nodeIds": list(b.node_ids)}
                    for b in self.modules
                ],
                "roles": {node.id: node.role for node in self.nodes if node.role},
            },
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WorkflowGraph":
        """Rebuild a graph from ``to_payload`` output.

        Connections naming unknown nodes are kept as-is so a validator can
        report them.
        """
        meta = payload.get("meta", {})
        roles = meta.get("roles", {})
        nodes = tuple(
            Node(
                id=raw["id"],
                name=raw["name"],
                type=raw["type"],
                parameters=dict(raw.get("parameters", {})),
                role=roles.get(raw["id"]),
                type_version=raw.get("typeVersion", 1),
                position=tuple(raw.get("position", (0, 0))),
            )
            for raw in payload.get("nodes", [])
        )
        ids_by_name = {node.name: node.id for node in nodes}

        connections: List[Connection] = []
        for source_name, outputs in payload.get("connections", {}).items():
            for output_index, targets in enumerate(outputs.get("main", [])):
                for target in targets or []:
                    connections.append(Connection(
                        source=ids_by_name.get(source_name, source_name),
                        target=ids_by_name.get(target["node"], target["node"]),
                        output_index=output_index,
                    ))

        return cls(
            name=payload.get("name", ""),
            platform=meta.get("platform", ""),
            nodes=nodes,
            connections=tuple(connections),
            modules=tuple(
                ModuleBoundary(index=m["index"], name=m["name"], node_ids=tuple(m["nodeIds"]))
                for m in meta.get("modules", [])
            ),
        )


def has_cycle(node_ids: Sequence[str], connections: Sequence[Connection]) -> bool:
    """True when the connections between ``node_ids`` contain a directed cycle."""
    indegree = {node_id: 0 for node_id in node_ids}
    outgoing: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for connection in connections:
        if connection.source in outgoing and connection.target in indegree:
            outgoing[connection.source].append(connection.target)
            indegree[connection.target] += 1

    ready = [node_id for node_id, degree in indegree.items() if degree == 0]
    visited = 0
    while ready:
        current = ready.pop()
        visited += 1
        for target in outgoing[current]:
            indegree[target] -= 1
            if indegree[target] == 0:
                ready.append(target)
    return visited != len(indegree)
