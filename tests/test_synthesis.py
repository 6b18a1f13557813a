"""
Unit tests for module synthesis: parsing, validation, retries and fan-out.
"""

import json
import threading

import pytest

from flowsmith.config.loader import PipelineConfig, SynthesisConfig
from flowsmith.core.blueprint import parse_blueprint
from flowsmith.core.deadline import Deadline
from flowsmith.core.errors import ModuleError, PipelineTimeout
from flowsmith.core.models import Connection, ModuleGraph, ModuleSpec, Node
from flowsmith.core.synthesis import (
    ModuleSynthesizer,
    node_count_bounds,
    parse_module_graph,
    validate_module_graph,
)
from flowsmith.core.token_counter import TokenUsage, UsageMeter
from flowsmith.sdk.inference import InferenceGateway, InferenceResult, InferenceTimeout

from conftest import ScriptedGateway, blueprint_payload, module_payload

SPEC = ModuleSpec(name="Intake", description="", integrations=("slack",), min_nodes=10, max_nodes=12)


def _graph(node_count, connections=None, ids=None):
    ids = ids or [f"n{i}" for i in range(1, node_count + 1)]
    nodes = tuple(Node(id=node_id, name=node_id, type="n8n-nodes-base.set") for node_id in ids)
    if connections is None:
        connections = [(ids[i], ids[i + 1]) for i in range(len(ids) - 1)]
    return ModuleGraph(
        module_index=0,
        module_name="Intake",
        nodes=nodes,
        connections=tuple(Connection(source, target) for source, target in connections),
    )


class TestParseModuleGraph:

    def test_list_connections(self):
        graph = parse_module_graph(module_payload(3), 1, "Scoring")
        assert graph.module_index == 1
        assert [node.id for node in graph.nodes] == ["n1", "n2", "n3"]
        assert graph.nodes[0].role == "input"
        assert graph.nodes[2].role == "output"
        assert graph.connections == (Connection("n1", "n2"), Connection("n2", "n3"))

    def test_platform_mapping_connections(self):
        data = {
            "nodes": [
                {"id": "a", "name": "Start", "type": "t"},
                {"id": "b", "name": "Check", "type": "t"},
                {"id": "c", "name": "Yes", "type": "t"},
                {"id": "d", "name": "No", "type": "t"},
            ],
            "connections": {
                "Start": {"main": [[{"node": "Check", "type": "main", "index": 0}]]},
                "Check": {"main": [[{"node": "Yes"}], [{"node": "No"}]]},
            },
        }
        graph = parse_module_graph(data, 0, "Intake")
        assert graph.connections == (
            Connection("a", "b", 0),
            Connection("b", "c", 0),
            Connection("b", "d", 1),
        )

    def test_numeric_ids_become_strings(self):
        data = {"nodes": [{"id": 1, "type": "t"}, {"id": 2, "type": "t"}],
                "connections": [{"from": 1, "to": 2}]}
        graph = parse_module_graph(data, 0, "Intake")
        assert graph.nodes[0].id == "1"
        assert graph.connections[0] == Connection("1", "2")

    def test_missing_nodes(self):
        with pytest.raises(ValueError, match="no 'nodes'"):
            parse_module_graph({"connections": []}, 0, "Intake")

    def test_node_without_type(self):
        with pytest.raises(ValueError, match="has no type"):
            parse_module_graph({"nodes": [{"id": "a"}]}, 0, "Intake")

    def test_bad_connection(self):
        with pytest.raises(ValueError, match="needs 'from' and 'to'"):
            parse_module_graph({"nodes": [{"id": "a", "type": "t"}], "connections": [{"from": "a"}]}, 0, "x")


class TestValidateModuleGraph:

    def test_tolerance_window(self):
        assert node_count_bounds(SPEC, 0.2) == (8, 15)

    @pytest.mark.parametrize("count", [8, 10, 15])
    def test_counts_inside_window(self, count):
        assert validate_module_graph(_graph(count), SPEC, 0.2) == []

    @pytest.mark.parametrize("count", [7, 16])
    def test_counts_outside_window(self, count):
        problems = validate_module_graph(_graph(count), SPEC, 0.2)
        assert problems == [f"has {count} nodes, expected 8-15"]

    def test_duplicate_ids(self):
        ids = ["n1"] * 2 + [f"n{i}" for i in range(3, 11)]
        problems = validate_module_graph(_graph(10, connections=[], ids=ids), SPEC, 0.2)
        assert problems == ["duplicate node ids: n1"]

    def test_dangling_connection(self):
        graph = _graph(10, connections=[("n1", "n99")])
        assert validate_module_graph(graph, SPEC, 0.2) == ["connections reference unknown nodes: n99"]

    def test_cycle(self):
        graph = _graph(10, connections=[("n1", "n2"), ("n2", "n3"), ("n3", "n1")])
        assert validate_module_graph(graph, SPEC, 0.2) == ["connections form a cycle"]


class TestModuleSynthesizer:
    """Test per-module retries and the bounded fan-out."""

    def setup_method(self):
        self.blueprint = parse_blueprint(blueprint_payload(module_count=3))
        self.config = PipelineConfig()

    def test_all_modules_in_blueprint_order(self):
        gateway = ScriptedGateway()
        meter = UsageMeter()
        graphs = ModuleSynthesizer(gateway, self.config).synthesize_all(
            self.blueprint, [], Deadline(60), meter, "n8n"
        )

        assert [graph.module_name for graph in graphs] == ["Module 1", "Module 2", "Module 3"]
        assert [graph.module_index for graph in graphs] == [0, 1, 2]
        assert meter.calls_by_role() == {"module_builder": 3}

    def test_token_budget(self):
        synthesizer = ModuleSynthesizer(ScriptedGateway(), self.config)
        assert synthesizer.token_budget(self.blueprint.modules[0]) == 12 * 350

        small = PipelineConfig(synthesis=SynthesisConfig(max_tokens=1000))
        assert ModuleSynthesizer(ScriptedGateway(), small).token_budget(self.blueprint.modules[0]) == 1000

    def test_invalid_module_retried_once(self):
        gateway = ScriptedGateway(modules={
            "Module 2": [json.dumps(module_payload(3)), json.dumps(module_payload(10))],
        })
        graphs = ModuleSynthesizer(gateway, self.config).synthesize_all(
            self.blueprint, [], Deadline(60), UsageMeter(), "n8n"
        )

        assert len(graphs[1].nodes) == 10
        calls = gateway.calls_for("Module 2")
        assert len(calls) == 2
        assert "has 3 nodes" in calls[1]["prompt"]

    def test_second_failure_raises_module_error(self):
        gateway = ScriptedGateway(modules={"Module 2": ["garbage", "still garbage"]})
        with pytest.raises(ModuleError) as exc_info:
            ModuleSynthesizer(gateway, self.config).synthesize_all(
                self.blueprint, [], Deadline(60), UsageMeter(), "n8n"
            )

        error = exc_info.value
        assert error.module_name == "Module 2"
        assert error.attempts == 2
        assert error.stage == "synthesis"
        assert len(gateway.calls_for("Module 2")) == 2

    def test_gateway_timeout_counts_as_attempt(self):
        gateway = ScriptedGateway(modules={
            "Module 1": [InferenceTimeout("slow"), json.dumps(module_payload(10))],
        })
        graphs = ModuleSynthesizer(gateway, self.config).synthesize_all(
            self.blueprint, [], Deadline(60), UsageMeter(), "n8n"
        )
        assert len(graphs) == 3
        assert len(gateway.calls_for("Module 1")) == 2

    def test_in_flight_calls_bounded(self):
        gateway = _ConcurrencyGateway()
        config = PipelineConfig(synthesis=SynthesisConfig(max_in_flight=2))
        blueprint = parse_blueprint(blueprint_payload(module_count=6))

        ModuleSynthesizer(gateway, config).synthesize_all(blueprint, [], Deadline(60), UsageMeter(), "n8n")

        assert gateway.calls == 6
        assert gateway.peak <= 2

    def test_deadline_expiry_raises_timeout(self):
        gateway = _BlockingGateway()
        deadline = Deadline(0.2)
        try:
            with pytest.raises(PipelineTimeout):
                ModuleSynthesizer(gateway, self.config).synthesize_all(
                    self.blueprint, [], deadline, UsageMeter(), "n8n"
                )
        finally:
            gateway.release.set()


class _ConcurrencyGateway(InferenceGateway):
    """Tracks how many calls run at the same time."""

    def __init__(self):
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls = 0

    def complete(self, role, system, prompt, max_tokens, timeout):
        with self._lock:
            self.active += 1
            self.calls += 1
            self.peak = max(self.peak, self.active)
        try:
            threading.Event().wait(0.02)
            return InferenceResult(role=role, text=json.dumps(module_payload(10)),
                                   usage=TokenUsage(100, 100))
        finally:
            with self._lock:
                self.active -= 1


class _BlockingGateway(InferenceGateway):
    """Never answers until released."""

    def __init__(self):
        self.release = threading.Event()

    def complete(self, role, system, prompt, max_tokens, timeout):
        self.release.wait(5)
        return InferenceResult(role=role, text=json.dumps(module_payload(10)),
                               usage=TokenUsage(100, 100))
