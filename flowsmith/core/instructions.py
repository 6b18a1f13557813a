"""
Setup instructions rendered from a blueprint and its assembled graph.
"""

from typing import List

from .models import Blueprint, WorkflowGraph


def render_setup_instructions(blueprint: Blueprint, graph: WorkflowGraph) -> str:
    """Markdown setup guide for a generated workflow."""
    integrations: List[str] = []
    for module in blueprint.modules:
        for integration in module.integrations:
            if integration.lower() not in (i.lower() for i in integrations):
                integrations.append(integration)

    lines = [
        f"# Setup Instructions for {blueprint.title}",
        "",
        "## Overview",
        blueprint.description or "No description provided.",
        "",
        "## Required Integrations",
    ]
    lines += [f"- {integration[:1].upper()}{integration[1:]}" for integration in integrations]

    lines += ["", "## Module Breakdown"]
    for boundary, module in zip(graph.modules, blueprint.modules):
        lines += [
            "",
            f"### {boundary.index + 1}. {module.name}",
            module.description or "",
            f"- **Nodes**: {len(boundary.node_ids)}",
            f"- **Integrations**: {', '.join(module.integrations)}",
        ]

    lines += [
        "",
        "## Setup Steps",
        "",
        "1. **Configure Credentials**",
        f"   - Set up credentials for each integration in {graph.platform}",
        "   - Test each connection before proceeding",
        "",
        "2. **Import Workflow**",
        f"   - Import the generated JSON into {graph.platform}",
        "",
        "3. **Configure Each Module**",
    ]
    lines += [
        f"   {index}. **{module.name}**: Review and customize parameters"
        for index, module in enumerate(blueprint.modules, start=1)
    ]
    lines += [
        "",
        "4. **Test Data Flow**",
        "   - Run the workflow manually first",
        "   - Verify data passes correctly between modules",
        "   - Check error handling",
        "",
        "5. **Activate**",
        "   - Activate the workflow once tested and monitor the first runs",
        "",
        "## Total Nodes",
        f"{len(graph.nodes)} nodes, {len(graph.connections)} connections",
        "",
        "## Data Flow",
    ]
    if blueprint.data_flow:
        lines += [
            f"- {edge.source} ({edge.source_role}) -> {edge.target} ({edge.target_role})"
            for edge in blueprint.data_flow
        ]
    else:
        lines.append("Modules run independently.")

    lines += [
        "",
        "## Error Handling",
        blueprint.error_handling or "Standard error handling configured between module boundaries",
    ]
    return "\n".join(lines) + "\n"
