"""
Role prompts for the inference-backed stages.
"""

import json
from typing import Sequence

from .exemplars import Exemplar
from .models import Blueprint, ModuleSpec
from .request import GenerationRequest


ARCHITECT_FORMAT = {
    "title": "Workflow title",
    "description": "Brief overview",
    "modules": [
        {
            "name": "Lead Intake",
            "description": "What this module does",
            "integrations": ["hubspot", "slack"],
            "min_nodes": 10,
            "max_nodes": 16,
            "error_handling": "How this module handles failures",
        }
    ],
    "data_flow": [
        {"from": "Lead Intake", "to": "Lead Scoring", "from_role": "output", "to_role": "input"}
    ],
    "error_handling": "Overall error handling strategy",
}

MODULE_FORMAT = {
    "name": "Module name",
    "nodes": [
        {"id": "n1", "name": "Receive Lead", "type": "n8n-nodes-base.webhook",
         "parameters": {}, "role": "input"},
        {"id": "n2", "name": "Notify Sales", "type": "n8n-nodes-base.slack",
         "parameters": {}, "role": "output"},
    ],
    "connections": [{"from": "n1", "to": "n2"}],
}


def render_exemplar(exemplar: Exemplar) -> str:
    return (
        f"### {exemplar.name} ({exemplar.complexity.name.lower()}, {exemplar.node_count} nodes)\n"
        f"Category: {exemplar.category}\n"
        f"Description: {exemplar.description}\n"
        f"Tags: {', '.join(exemplar.tags)}\n"
        f"Typical node types: {', '.join(exemplar.node_types)}"
    )


def architect_system(exemplars: Sequence[Exemplar], platform: str) -> str:
    references = "\n\n".join(render_exemplar(e) for e in exemplars) or "(none available)"
    return f"""You are an expert {platform} workflow architect for complex, multi-module automations.

# Task
Break the user's requirements into logical, independently buildable modules.

# Reference workflows
{references}

# Rules
1. Use between 3 and 7 modules, listed in execution order.
2. Every module needs at least one integration and a node range within 10-30 nodes.
3. Data may only flow forward: a module may only feed modules listed after it.
4. Each data_flow edge connects the node with role `from_role` in the source module
   to the node with role `to_role` in the target module.
5. Describe an error handling approach for every module.

Respond with exactly one JSON object in this format and nothing else:
{json.dumps(ARCHITECT_FORMAT, indent=2)}"""


def architect_prompt(request: GenerationRequest) -> str:
    lines = ["# Workflow requirements", "", f"Description: {request.prompt}"]
    if request.workflow_type:
        lines.append(f"Type: {request.workflow_type}")
    if request.integrations:
        lines.append(f"Integrations: {', '.join(request.integrations)}")
    lines.append("")
    lines.append("Create the architectural blueprint for this workflow.")
    return "\n".join(lines)


def module_system(exemplars: Sequence[Exemplar], platform: str) -> str:
    references = "\n\n".join(render_exemplar(e) for e in exemplars) or "(none available)"
    return f"""You are an expert {platform} workflow builder producing production-ready modules.

# Reference workflows
{references}

# Rules
1. Produce only the nodes of the requested module, with credentials left as placeholders.
2. Node ids are short and unique within the module.
3. Connections only reference node ids of this module and never form a loop.
4. Mark data-flow points with a `role` field exactly as requested.
5. Include error handling and data transformation nodes where needed.

Respond with exactly one JSON object in this format and nothing else:
{json.dumps(MODULE_FORMAT, indent=2)}"""


def module_prompt(spec: ModuleSpec, blueprint: Blueprint, note: str = "") -> str:
    roles = sorted(
        {edge.source_role for edge in spec.downstream}
        | {edge.target_role for edge in spec.upstream}
    )
    lines = [
        "# Module specification",
        "",
        f"Name: {spec.name}",
        f"Description: {spec.description}",
        f"Target nodes: {spec.min_nodes}-{spec.max_nodes}",
        f"Integrations: {', '.join(spec.integrations)}",
    ]
    if spec.upstream:
        lines.append(f"Receives data from: {', '.join(edge.source for edge in spec.upstream)}")
    if spec.downstream:
        lines.append(f"Sends data to: {', '.join(edge.target for edge in spec.downstream)}")
    if roles:
        lines.append(f"Required node roles: {', '.join(roles)}")
    if spec.error_handling:
        lines.append(f"Error handling: {spec.error_handling}")
    lines += [
        "",
        "# Blueprint context",
        f"{blueprint.title}: {blueprint.description}",
    ]
    if note:
        lines += ["", "# Correction", note]
    lines += ["", "Generate this module as a complete, working workflow fragment."]
    return "\n".join(lines)


def corrective_note(problem: str) -> str:
    return (
        "Your previous answer for this module was rejected: "
        f"{problem}. Return a corrected JSON object that fixes this."
    )
