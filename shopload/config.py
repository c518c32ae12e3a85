"""
Configuration management for shop-load CLI.

Loads configuration from YAML files and environment variables.
"""

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or strings made of unit parts such as
    "500ms", "100s", "1m30s", "2h".
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().replace(" ", "")
    if not text:
        raise ValueError("Invalid duration: empty string")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def parse_bool(value: Union[str, bool]) -> bool:
    """Parse a YAML or environment flag. Strings like "false" and "off" are False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ValueError(f"Invalid boolean: {value!r}")


@dataclass
class TargetConfig:
    """Target server configuration."""
    url: str = "http://localhost:8080"
    request_timeout: float = 10.0
    retries: int = 0

    def __post_init__(self):
        self.url = self.url.rstrip("/")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")


@dataclass
class LoadConfig:
    """Constant-arrival-rate load shape. Durations are in seconds."""
    arrival_rate: float = 250
    time_unit: float = 1.0
    duration: float = 100.0
    preallocated_workers: int = 300
    max_workers: int = 100000
    graceful_stop: float = 30.0

    def __post_init__(self):
        self.time_unit = parse_duration(self.time_unit)
        self.duration = parse_duration(self.duration)
        self.graceful_stop = parse_duration(self.graceful_stop)

        if self.arrival_rate <= 0:
            raise ValueError(f"arrival_rate must be > 0, got {self.arrival_rate}")
        if self.time_unit <= 0:
            raise ValueError(f"time_unit must be > 0, got {self.time_unit}")
        if self.duration <= 0:
            raise ValueError(f"duration must be > 0, got {self.duration}")
        if self.graceful_stop < 0:
            raise ValueError(f"graceful_stop must be >= 0, got {self.graceful_stop}")
        if self.preallocated_workers < 1:
            raise ValueError("preallocated_workers must be >= 1")
        if self.preallocated_workers > self.max_workers:
            raise ValueError(
                f"preallocated_workers ({self.preallocated_workers}) "
                f"exceeds max_workers ({self.max_workers})"
            )

    @property
    def interval(self) -> float:
        """Seconds between two consecutive iteration starts."""
        return self.time_unit / self.arrival_rate

    @property
    def expected_iterations(self) -> int:
        return int(self.arrival_rate * self.duration / self.time_unit + 1e-9)


@dataclass
class FlowConfig:
    """Request data used by the shop flow."""
    password: str = "testpassword"
    username_template: str = "testuser{id}"
    recipient: str = "testuser"
    amount: int = 1
    item: str = "pen"
    abort_on_auth_failure: bool = False

    def __post_init__(self):
        try:
            self.username_template.format(id=1)
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(
                f"Invalid username_template {self.username_template!r}: "
                f"only the {{id}} placeholder is supported"
            ) from e

    def username_for(self, worker_id: int) -> str:
        return self.username_template.format(id=worker_id)


@dataclass
class OutputConfig:
    """Output configuration."""
    directory: str = "./results"
    format: str = "json"

    def __post_init__(self):
        if self.format not in ("json", "markdown", "both"):
            raise ValueError(f"Invalid output format: {self.format}")


DEFAULT_THRESHOLDS: Dict[str, List[str]] = {
    "http_req_failed": ["rate<0.0001"],
    "http_req_duration": ["med<50"],
}


@dataclass
class Config:
    """Complete configuration for shop-load."""
    target: TargetConfig = field(default_factory=TargetConfig)
    load: LoadConfig = field(default_factory=LoadConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    thresholds: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_THRESHOLDS.items()}
    )
    output: OutputConfig = field(default_factory=OutputConfig)

    # Metadata
    config_path: Optional[str] = None


@dataclass
class ProfileConfig:
    """Named load shape. Overrides the load section of the config."""
    description: str
    load: LoadConfig


# Default profiles
DEFAULT_PROFILES = {
    "smoke": ProfileConfig(
        description="Short sanity run at a low rate",
        load=LoadConfig(
            arrival_rate=5, duration=10, preallocated_workers=5, max_workers=50,
            graceful_stop=5,
        ),
    ),
    "load": ProfileConfig(
        description="Steady 250 flows/s for 100s (~1000 req/s)",
        load=LoadConfig(
            arrival_rate=250, duration=100, preallocated_workers=300, max_workers=100000,
        ),
    ),
    "stress": ProfileConfig(
        description="Steady 1000 flows/s for 5 minutes",
        load=LoadConfig(
            arrival_rate=1000, duration=300, preallocated_workers=1000, max_workers=100000,
        ),
    ),
}

# Scenario metadata
SCENARIOS = {
    "shop-flow": {
        "description": "auth -> info -> sendCoin -> buy, one flow per iteration",
        "steps": ["auth", "info", "sendCoin", "buy"],
    },
}


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (SHOPLOAD_*)
    2. Config file
    3. Defaults
    """
    config = Config()

    # Find config file
    if config_path is None:
        search_paths = [
            Path.cwd() / "shop-load.yaml",
            Path.cwd() / "shop-load.yml",
            Path.home() / ".shop-load.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break
    elif not Path(config_path).exists():
        raise ValueError(f"Config file not found: {config_path}")

    # Load from file
    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        config = _parse_config(data)
        config.config_path = config_path

    return _apply_env_overrides(config)


def _parse_config(data: Dict[str, Any]) -> Config:
    """Parse configuration from dictionary."""
    config = Config()

    # Target
    if "target" in data:
        t = data["target"] or {}
        config.target = TargetConfig(
            url=t.get("url", config.target.url),
            request_timeout=parse_duration(t.get("request_timeout", config.target.request_timeout)),
            retries=int(t.get("retries", config.target.retries)),
        )

    # Load shape
    if "load" in data:
        ld = data["load"] or {}
        defaults = LoadConfig()
        config.load = LoadConfig(
            arrival_rate=float(ld.get("arrival_rate", defaults.arrival_rate)),
            time_unit=ld.get("time_unit", defaults.time_unit),
            duration=ld.get("duration", defaults.duration),
            preallocated_workers=int(ld.get("preallocated_workers", defaults.preallocated_workers)),
            max_workers=int(ld.get("max_workers", defaults.max_workers)),
            graceful_stop=ld.get("graceful_stop", defaults.graceful_stop),
        )

    # Flow
    if "flow" in data:
        fl = data["flow"] or {}
        defaults = FlowConfig()
        config.flow = FlowConfig(
            password=fl.get("password", defaults.password),
            username_template=fl.get("username_template", defaults.username_template),
            recipient=fl.get("recipient", defaults.recipient),
            amount=int(fl.get("amount", defaults.amount)),
            item=fl.get("item", defaults.item),
            abort_on_auth_failure=parse_bool(
                fl.get("abort_on_auth_failure", defaults.abort_on_auth_failure)
            ),
        )

    # Thresholds
    if "thresholds" in data:
        config.thresholds = {}
        for metric, predicates in (data["thresholds"] or {}).items():
            if isinstance(predicates, str):
                predicates = [predicates]
            config.thresholds[metric] = [str(p) for p in predicates]

    # Output
    if "output" in data:
        o = data["output"] or {}
        config.output = OutputConfig(
            directory=o.get("directory", "./results"),
            format=o.get("format", "json"),
        )

    return config


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides."""
    # Target URL
    if url := os.environ.get("SHOPLOAD_URL"):
        config.target.url = url.rstrip("/")

    config.load = apply_load_env_overrides(config.load)

    if abort := os.environ.get("SHOPLOAD_ABORT_ON_AUTH_FAILURE"):
        config.flow.abort_on_auth_failure = parse_bool(abort)

    # Output directory
    if output_dir := os.environ.get("SHOPLOAD_OUTPUT_DIR"):
        config.output.directory = output_dir

    return config


def apply_load_env_overrides(load: LoadConfig) -> LoadConfig:
    """
    Apply SHOPLOAD_RATE and SHOPLOAD_DURATION to a load shape.

    Also used on profile shapes, which replace the file's load section but
    still yield to the environment.
    """
    if rate := os.environ.get("SHOPLOAD_RATE"):
        load = replace(load, arrival_rate=float(rate))
    if duration := os.environ.get("SHOPLOAD_DURATION"):
        load = replace(load, duration=duration)
    return load


def get_scenario_info(name: str) -> Optional[Dict[str, Any]]:
    """Get scenario metadata by name."""
    return SCENARIOS.get(name)


def list_scenarios() -> List[str]:
    """List all available scenario names."""
    return sorted(SCENARIOS)


def list_profiles() -> List[str]:
    """List all available profile names."""
    return list(DEFAULT_PROFILES.keys())
