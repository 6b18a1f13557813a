"""
Configuration management and loading.

Pipeline, pricing and ledger settings. Every section is optional in the
YAML file; missing values fall back to the dataclass defaults, unknown
keys are rejected.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


class OveragePolicy(Enum):
    """What settlement does when the actual cost exceeds the whole balance."""
    RECORD = "record"  # charge down to zero, record the shortfall
    REJECT = "reject"  # charge nothing, withhold the graph


TIER_NAMES = ("low", "medium", "high", "very_high")


@dataclass(frozen=True)
class PipelineSettings:
    """Run-level limits."""
    deadline_seconds: float = 300.0
    exemplar_count: int = 3
    platform: str = "n8n"

    def __post_init__(self):
        if self.deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be > 0")
        if self.exemplar_count < 0:
            raise ValueError("exemplar_count must be >= 0")
        if not self.platform:
            raise ValueError("platform cannot be empty")


@dataclass(frozen=True)
class GatewayConfig:
    """Inference service settings."""
    model: str = "gpt-4o"
    timeout_seconds: float = 90.0

    def __post_init__(self):
        if not self.model:
            raise ValueError("model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class ArchitectConfig:
    max_tokens: int = 4096
    retry: bool = False

    def __post_init__(self):
        if self.max_tokens <= 0:
            raise ValueError("architect max_tokens must be > 0")


@dataclass(frozen=True)
class SynthesisConfig:
    """Module fan-out and per-module token budgets."""
    max_in_flight: int = 3
    tokens_per_node: int = 350
    max_tokens: int = 8192
    node_tolerance: float = 0.2

    def __post_init__(self):
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        if self.tokens_per_node <= 0:
            raise ValueError("tokens_per_node must be > 0")
        if self.max_tokens <= 0:
            raise ValueError("synthesis max_tokens must be > 0")
        if not 0 <= self.node_tolerance < 1:
            raise ValueError("node_tolerance must be in [0, 1)")


@dataclass(frozen=True)
class PricingConfig:
    """Pre-check tiers and settlement pricing."""
    tier_bands: Tuple[int, int, int] = (10, 20, 35)
    tier_costs: Dict[str, int] = field(default_factory=lambda: {
        "low": 5,
        "medium": 8,
        "high": 12,
        "very_high": 18,
    })
    tokens_per_credit: int = 5000
    minimum_charge: int = 1
    maximum_charge: int = 18

    def __post_init__(self):
        if len(self.tier_bands) != 3 or list(self.tier_bands) != sorted(self.tier_bands):
            raise ValueError("tier_bands must be three ascending scores")
        if any(band <= 0 for band in self.tier_bands):
            raise ValueError("tier_bands must be > 0")
        if set(self.tier_costs) != set(TIER_NAMES):
            raise ValueError(f"tier_costs must define exactly: {list(TIER_NAMES)}")
        if any(cost < 0 for cost in self.tier_costs.values()):
            raise ValueError("tier_costs must be >= 0")
        if self.tokens_per_credit <= 0:
            raise ValueError("tokens_per_credit must be > 0")
        if self.minimum_charge < 0:
            raise ValueError("minimum_charge must be >= 0")
        if self.maximum_charge < self.minimum_charge:
            raise ValueError("maximum_charge must be >= minimum_charge")


@dataclass(frozen=True)
class AdmissionConfig:
    """Subscription tiers allowed to run the pipeline."""
    allowed_tiers: Tuple[str, ...] = ("pro", "growth", "agency", "enterprise")

    def __post_init__(self):
        if not self.allowed_tiers:
            raise ValueError("allowed_tiers cannot be empty")


@dataclass(frozen=True)
class LedgerConfig:
    db_path: str = "flowsmith.db"
    settle_attempts: int = 3
    retry_backoff_seconds: float = 0.05
    overage_policy: OveragePolicy = OveragePolicy.RECORD

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path cannot be empty")
        if self.settle_attempts < 1:
            raise ValueError("settle_attempts must be >= 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")


@dataclass(frozen=True)
class PipelineConfig:
    """Complete pipeline configuration."""
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    architect: ArchitectConfig = field(default_factory=ArchitectConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)


_SECTION_KEYS = {
    "pipeline": {"deadline_seconds", "exemplar_count", "platform"},
    "gateway": {"model", "timeout_seconds"},
    "architect": {"max_tokens", "retry"},
    "synthesis": {"max_in_flight", "tokens_per_node", "max_tokens", "node_tolerance"},
    "pricing": {"tier_bands", "tier_costs", "tokens_per_credit", "minimum_charge", "maximum_charge"},
    "admission": {"allowed_tiers"},
    "ledger": {"db_path", "settle_attempts", "retry_backoff_seconds", "overage_policy"},
}


def load_pipeline_config(path: Optional[str] = None) -> PipelineConfig:
    """Load and validate pipeline configuration from a YAML file.

    Args:
        path: Path to YAML configuration file. None returns the defaults.

    Returns:
        Validated PipelineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return PipelineConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Pipeline config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {name: _section(raw_config, name) for name in _SECTION_KEYS}

    return PipelineConfig(
        pipeline=PipelineSettings(
            deadline_seconds=_number(sections["pipeline"], "deadline_seconds", "pipeline", 300.0),
            exemplar_count=_integer(sections["pipeline"], "exemplar_count", "pipeline", 3),
            platform=_string(sections["pipeline"], "platform", "pipeline", "n8n"),
        ),
        gateway=GatewayConfig(
            model=_string(sections["gateway"], "model", "gateway", "gpt-4o"),
            timeout_seconds=_number(sections["gateway"], "timeout_seconds", "gateway", 90.0),
        ),
        architect=ArchitectConfig(
            max_tokens=_integer(sections["architect"], "max_tokens", "architect", 4096),
            retry=_boolean(sections["architect"], "retry", "architect", False),
        ),
        synthesis=SynthesisConfig(
            max_in_flight=_integer(sections["synthesis"], "max_in_flight", "synthesis", 3),
            tokens_per_node=_integer(sections["synthesis"], "tokens_per_node", "synthesis", 350),
            max_tokens=_integer(sections["synthesis"], "max_tokens", "synthesis", 8192),
            node_tolerance=_number(sections["synthesis"], "node_tolerance", "synthesis", 0.2),
        ),
        pricing=_parse_pricing(sections["pricing"]),
        admission=_parse_admission(sections["admission"]),
        ledger=_parse_ledger(sections["ledger"]),
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _number(data: Dict, key: str, path: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict, key: str, path: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _boolean(data: Dict, key: str, path: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be true or false")
    return value


def _string(data: Dict, key: str, path: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value


def _parse_pricing(data: Dict) -> PricingConfig:
    defaults = PricingConfig()

    bands: Any = data.get("tier_bands", list(defaults.tier_bands))
    if (not isinstance(bands, list) or len(bands) != 3
            or not all(isinstance(b, int) and not isinstance(b, bool) for b in bands)):
        raise ValueError("'tier_bands' in pricing must be a list of three integers")

    costs: Any = data.get("tier_costs", dict(defaults.tier_costs))
    if not isinstance(costs, dict):
        raise ValueError("'tier_costs' in pricing must be a dictionary")
    unknown_tiers = set(costs.keys()) - set(TIER_NAMES)
    if unknown_tiers:
        raise ValueError(f"Unknown tiers in pricing.tier_costs: {unknown_tiers}")
    merged_costs = dict(defaults.tier_costs)
    for tier, cost in costs.items():
        if isinstance(cost, bool) or not isinstance(cost, int):
            raise ValueError(f"pricing.tier_costs.{tier} must be an integer")
        merged_costs[tier] = cost

    return PricingConfig(
        tier_bands=(bands[0], bands[1], bands[2]),
        tier_costs=merged_costs,
        tokens_per_credit=_integer(data, "tokens_per_credit", "pricing", defaults.tokens_per_credit),
        minimum_charge=_integer(data, "minimum_charge", "pricing", defaults.minimum_charge),
        maximum_charge=_integer(data, "maximum_charge", "pricing", defaults.maximum_charge),
    )


def _parse_admission(data: Dict) -> AdmissionConfig:
    if "allowed_tiers" not in data:
        return AdmissionConfig()
    tiers = data["allowed_tiers"]
    if not isinstance(tiers, list) or not all(isinstance(t, str) for t in tiers):
        raise ValueError("'allowed_tiers' in admission must be a list of strings")
    return AdmissionConfig(allowed_tiers=tuple(t.lower() for t in tiers))


def _parse_ledger(data: Dict) -> LedgerConfig:
    policy_str = data.get("overage_policy", OveragePolicy.RECORD.value)
    if not isinstance(policy_str, str):
        raise ValueError("'overage_policy' in ledger must be a string")
    try:
        policy = OveragePolicy(policy_str.lower())
    except ValueError:
        valid_policies = [policy.value for policy in OveragePolicy]
        raise ValueError(f"'overage_policy' in ledger must be one of: {valid_policies}")

    return LedgerConfig(
        db_path=_string(data, "db_path", "ledger", "flowsmith.db"),
        settle_attempts=_integer(data, "settle_attempts", "ledger", 3),
        retry_backoff_seconds=_number(data, "retry_backoff_seconds", "ledger", 0.05),
        overage_policy=policy,
    )
