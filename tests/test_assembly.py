"""
Unit tests for graph assembly, final validation and setup instructions.
"""

import dataclasses

import pytest

from flowsmith.core.assembly import (
    ROWS_PER_COLUMN,
    assemble,
    validate_workflow_graph,
)
from flowsmith.core.blueprint import parse_blueprint
from flowsmith.core.errors import AssemblyError
from flowsmith.core.instructions import render_setup_instructions
from flowsmith.core.models import Connection, WorkflowGraph
from flowsmith.core.synthesis import parse_module_graph

from conftest import blueprint_payload, module_payload


def _module_graphs(blueprint, node_count=10):
    return [
        parse_module_graph(module_payload(node_count), index, spec.name)
        for index, spec in enumerate(blueprint.modules)
    ]


class TestAssemble:
    """Test namespacing, wiring and layout."""

    def setup_method(self):
        self.blueprint = parse_blueprint(blueprint_payload(module_count=3))
        self.graphs = _module_graphs(self.blueprint)

    def test_merges_every_module(self):
        graph = assemble(self.blueprint, self.graphs, "n8n")

        assert graph.name == "Lead Pipeline"
        assert graph.platform == "n8n"
        assert len(graph.nodes) == 30
        assert len(graph.connections) == 9 * 3 + 2
        assert [boundary.name for boundary in graph.modules] == ["Module 1", "Module 2", "Module 3"]

    def test_ids_are_namespaced(self):
        graph = assemble(self.blueprint, self.graphs, "n8n")
        assert graph.nodes[0].id == "m0.n1"
        assert graph.module_of("m2.n5") == 2
        assert graph.node("m1.n1").name == "[2] Step 1"

    def test_data_flow_wired_by_role(self):
        graph = assemble(self.blueprint, self.graphs, "n8n")
        assert Connection("m0.n10", "m1.n1") in graph.connections
        assert Connection("m1.n10", "m2.n1") in graph.connections

    def test_layout(self):
        graph = assemble(self.blueprint, self.graphs, "n8n")
        assert graph.node("m0.n1").position == (240, 300)
        assert graph.node(f"m0.n{ROWS_PER_COLUMN}").position == (240, 300 + 4 * 160)
        assert graph.node(f"m0.n{ROWS_PER_COLUMN + 1}").position == (460, 300)
        # two columns for module 0, then one empty column
        assert graph.node("m1.n1").position == (240 + 3 * 220, 300)

    def test_layout_is_deterministic(self):
        first = assemble(self.blueprint, self.graphs, "n8n")
        second = assemble(self.blueprint, self.graphs, "n8n")
        assert first == second

    def test_missing_role(self):
        graphs = list(self.graphs)
        payload = module_payload(10)
        del payload["nodes"][9]["role"]
        graphs[0] = parse_module_graph(payload, 0, "Module 1")

        with pytest.raises(AssemblyError, match="no node with role 'output'"):
            assemble(self.blueprint, graphs, "n8n")

    def test_module_count_mismatch(self):
        with pytest.raises(AssemblyError, match="Expected 3 module graphs"):
            assemble(self.blueprint, self.graphs[:2], "n8n")

    def test_duplicate_display_names_get_suffix(self):
        payload = module_payload(10)
        payload["nodes"][1]["name"] = payload["nodes"][0]["name"]
        graphs = list(self.graphs)
        graphs[0] = parse_module_graph(payload, 0, "Module 1")

        graph = assemble(self.blueprint, graphs, "n8n")
        assert graph.node("m0.n1").name == "[1] Step 1"
        assert graph.node("m0.n2").name == "[1] Step 1 (2)"


class TestValidateWorkflowGraph:
    """Test the final validator, including on re-loaded payloads."""

    def setup_method(self):
        self.blueprint = parse_blueprint(blueprint_payload(module_count=3))
        self.graph = assemble(self.blueprint, _module_graphs(self.blueprint), "n8n")

    def test_payload_round_trip_still_valid(self):
        payload = self.graph.to_payload()
        restored = WorkflowGraph.from_payload(payload)

        assert validate_workflow_graph(restored, self.blueprint) == []
        assert set(restored.connections) == set(self.graph.connections)
        assert restored.node("m0.n1").role == "input"
        assert restored.modules == self.graph.modules

    def test_payload_shape(self):
        payload = self.graph.to_payload()
        assert payload["name"] == "Lead Pipeline"
        assert payload["nodes"][0]["position"] == [240, 300]
        assert payload["connections"]["[1] Step 1"]["main"][0][0]["node"] == "[1] Step 2"
        assert payload["meta"]["modules"][0]["nodeIds"][0] == "m0.n1"

    def test_undeclared_inter_module_edge(self):
        tampered = dataclasses.replace(
            self.graph, connections=self.graph.connections + (Connection("m0.n3", "m2.n4"),)
        )
        assert validate_workflow_graph(tampered, self.blueprint) == [
            "undeclared data flow Module 1 -> Module 3"
        ]

    def test_cycle_across_modules(self):
        tampered = dataclasses.replace(
            self.graph, connections=self.graph.connections + (Connection("m2.n10", "m0.n1"),)
        )
        problems = validate_workflow_graph(tampered, self.blueprint)
        assert "connections form a cycle" in problems
        assert "undeclared data flow Module 3 -> Module 1" in problems

    def test_dangling_endpoint(self):
        tampered = dataclasses.replace(
            self.graph, connections=self.graph.connections + (Connection("m0.n1", "m9.n1"),)
        )
        assert validate_workflow_graph(tampered, self.blueprint) == [
            "connections reference unknown nodes: m9.n1"
        ]

    def test_boundaries_must_match_blueprint(self):
        tampered = dataclasses.replace(self.graph, modules=self.graph.modules[:2])
        problems = validate_workflow_graph(tampered, self.blueprint)
        assert "module boundaries do not match the blueprint" in problems
        assert "module boundaries do not cover every node exactly once" in problems

    def test_duplicate_ids(self):
        tampered = dataclasses.replace(self.graph, nodes=self.graph.nodes + (self.graph.nodes[0],))
        problems = validate_workflow_graph(tampered, self.blueprint)
        assert "duplicate node ids: m0.n1" in problems


class TestSetupInstructions:

    def test_document_sections(self):
        blueprint = parse_blueprint(blueprint_payload(module_count=3))
        graph = assemble(blueprint, _module_graphs(blueprint), "n8n")

        text = render_setup_instructions(blueprint, graph)

        assert text.startswith("# Setup Instructions for Lead Pipeline")
        assert "- Slack\n- Hubspot" in text
        assert "### 2. Module 2" in text
        assert "- **Nodes**: 10" in text
        assert "- Module 1 (output) -> Module 2 (input)" in text
        assert "Alert on any module failure" in text
        assert "30 nodes, 29 connections" in text
