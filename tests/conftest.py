"""
Shared fixtures: a scripted inference gateway and payload builders.
"""

import json
import os
import shutil
import tempfile
import threading
from typing import Dict, List, Optional

import pytest

from flowsmith.config.loader import LedgerConfig
from flowsmith.core.ledger import Ledger
from flowsmith.core.token_counter import TokenUsage
from flowsmith.sdk.inference import InferenceGateway, InferenceResult, Role
from flowsmith.storage.repository import LedgerRepository


def blueprint_payload(module_count: int = 3, min_nodes: int = 10, max_nodes: int = 12) -> Dict:
    """A valid architect answer: a chain of modules Module 1 -> Module 2 -> ..."""
    modules = [
        {
            "name": f"Module {i}",
            "description": f"Step {i} of the workflow",
            "integrations": ["slack"] if i % 2 else ["hubspot"],
            "min_nodes": min_nodes,
            "max_nodes": max_nodes,
            "error_handling": "retry then alert",
        }
        for i in range(1, module_count + 1)
    ]
    data_flow = [
        {"from": f"Module {i}", "to": f"Module {i + 1}"}
        for i in range(1, module_count)
    ]
    return {
        "title": "Lead Pipeline",
        "description": "Captures, scores and routes leads",
        "modules": modules,
        "data_flow": data_flow,
        "error_handling": "Alert on any module failure",
    }


def module_payload(node_count: int = 10, prefix: str = "Step") -> Dict:
    """A valid module answer: a linear chain with input and output roles."""
    nodes = []
    for i in range(1, node_count + 1):
        node = {
            "id": f"n{i}",
            "name": f"{prefix} {i}",
            "type": "n8n-nodes-base.set",
            "parameters": {"step": i},
        }
        if i == 1:
            node["role"] = "input"
        if i == node_count:
            node["role"] = "output"
        nodes.append(node)
    connections = [{"from": f"n{i}", "to": f"n{i + 1}"} for i in range(1, node_count)]
    return {"name": prefix, "nodes": nodes, "connections": connections}


class ScriptedGateway(InferenceGateway):
    """Deterministic gateway driven by per-role scripts.

    Each script entry is response text or an exception to raise. Module
    scripts are keyed by module name; unscripted modules get a valid
    10-node answer.
    """

    def __init__(
        self,
        architect: Optional[List] = None,
        modules: Optional[Dict[str, List]] = None,
        usage: TokenUsage = TokenUsage(prompt_tokens=1000, completion_tokens=1000),
    ):
        self.architect = list(architect) if architect is not None else [json.dumps(blueprint_payload())]
        self.modules = {name: list(script) for name, script in (modules or {}).items()}
        self.usage = usage
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def complete(self, role, system, prompt, max_tokens, timeout):
        with self._lock:
            module_name = None
            if role is Role.ARCHITECT:
                response = self.architect.pop(0) if self.architect else json.dumps(blueprint_payload())
            else:
                module_name = _module_name(prompt)
                script = self.modules.get(module_name)
                response = script.pop(0) if script else json.dumps(module_payload(prefix=module_name))
            self.calls.append({
                "role": role,
                "module": module_name,
                "prompt": prompt,
                "max_tokens": max_tokens,
                "timeout": timeout,
            })
        if isinstance(response, BaseException):
            raise response
        return InferenceResult(role=role, text=response, usage=self.usage)

    def calls_for(self, module_name: str) -> List[Dict]:
        return [call for call in self.calls if call["module"] == module_name]


def _module_name(prompt: str) -> str:
    for line in prompt.splitlines():
        if line.startswith("Name: "):
            return line[len("Name: "):]
    return ""


@pytest.fixture
def temp_dir():
    path = tempfile.mkdtemp()
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def ledger(temp_dir):
    """Ledger over a fresh database, no retry backoff."""
    db_path = os.path.join(temp_dir, "ledger.db")
    repository = LedgerRepository(db_path)
    repository.initialize_schema()
    return Ledger(repository, LedgerConfig(db_path=db_path, retry_backoff_seconds=0))
