"""
Output formatting and result persistence for shop-load CLI.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class ScenarioOutput:
    """Output from a single scenario run."""
    name: str
    success: bool
    duration_secs: float
    metrics: Dict[str, Any] = field(default_factory=dict)
    checks: Dict[str, Dict[str, int]] = field(default_factory=dict)
    steps: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    executor: Dict[str, Any] = field(default_factory=dict)
    thresholds: List[Dict[str, Any]] = field(default_factory=list)
    timeline: List[Dict] = field(default_factory=list)
    error_messages: List[str] = field(default_factory=list)

    @property
    def http_reqs(self) -> int:
        return self.metrics.get("http_reqs", {}).get("count", 0)

    @property
    def failed_rate(self) -> float:
        return self.metrics.get("http_req_failed", {}).get("rate", 0.0)

    @property
    def med_ms(self) -> float:
        return self.metrics.get("http_req_duration", {}).get("med", 0.0)

    @property
    def p95_ms(self) -> float:
        return self.metrics.get("http_req_duration", {}).get("p(95)", 0.0)

    @property
    def dropped(self) -> int:
        return self.executor.get("dropped", 0)

    @property
    def violations(self) -> List[Dict[str, Any]]:
        return [t for t in self.thresholds if not t["passed"]]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "success": self.success,
            "duration_secs": self.duration_secs,
            "metrics": self.metrics,
            "checks": self.checks,
            "steps": self.steps,
            "executor": self.executor,
            "thresholds": self.thresholds,
            "timeline": self.timeline,
            "error_messages": self.error_messages,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioOutput":
        return cls(
            name=data["name"],
            success=data["success"],
            duration_secs=data.get("duration_secs", 0.0),
            metrics=data.get("metrics", {}),
            checks=data.get("checks", {}),
            steps=data.get("steps", {}),
            executor=data.get("executor", {}),
            thresholds=data.get("thresholds", []),
            timeline=data.get("timeline", []),
            error_messages=data.get("error_messages", []),
        )


@dataclass
class RunMetadata:
    """Metadata for a test run."""
    run_id: str
    profile: Optional[str] = None
    start_time: str = ""
    end_time: str = ""
    duration_secs: float = 0.0
    url: str = ""
    load: Dict[str, Any] = field(default_factory=dict)
    config_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "profile": self.profile,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_secs": self.duration_secs,
            "url": self.url,
            "load": self.load,
            "config_path": self.config_path,
        }


@dataclass
class RunSummary:
    """Summary of a test run."""
    passed: int = 0
    failed: int = 0
    dropped_iterations: int = 0
    interrupted_iterations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "total": self.passed + self.failed,
            "dropped_iterations": self.dropped_iterations,
            "interrupted_iterations": self.interrupted_iterations,
            "status": "PASS" if self.failed == 0 else "FAIL",
        }


@dataclass
class RunOutput:
    """Complete output from a test run."""
    metadata: RunMetadata
    summary: RunSummary = field(default_factory=RunSummary)
    scenarios: List[ScenarioOutput] = field(default_factory=list)

    def add(self, result: ScenarioOutput):
        self.scenarios.append(result)
        if result.success:
            self.summary.passed += 1
        else:
            self.summary.failed += 1
        self.summary.dropped_iterations += result.dropped
        self.summary.interrupted_iterations += result.executor.get("interrupted", 0)

    @property
    def success(self) -> bool:
        return self.summary.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "summary": self.summary.to_dict(),
            "scenarios": [s.to_dict() for s in self.scenarios],
        }


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def save_results(output: RunOutput, output_dir: str, format: str = "json") -> str:
    """
    Save test results to files.

    Returns the path to the summary file.
    """
    run_dir = Path(output_dir) / f"{output.metadata.run_id}_{output.metadata.profile or 'custom'}"
    run_dir.mkdir(parents=True, exist_ok=True)

    summary_path = run_dir / "summary.json"
    export_summary(output, str(summary_path))

    if format in ("markdown", "both"):
        md_path = run_dir / "summary.md"
        with open(md_path, "w") as f:
            f.write(format_markdown(output))

    return str(summary_path)


def export_summary(output: RunOutput, path: str) -> str:
    """Write the JSON summary to an arbitrary path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        json.dump(output.to_dict(), f, indent=2)
    return str(target)


def format_markdown(output: RunOutput) -> str:
    """Format results as markdown."""
    lines = []

    # Header
    lines.append("# Shop Load Test Report")
    lines.append("")
    lines.append(f"**Run ID:** {output.metadata.run_id}")
    lines.append(f"**Profile:** {output.metadata.profile or 'custom'}")
    lines.append(f"**Target:** {output.metadata.url}")
    lines.append(f"**Date:** {output.metadata.start_time}")
    lines.append(f"**Duration:** {output.metadata.duration_secs:.1f}s")
    lines.append(f"**Status:** {'PASS' if output.success else 'FAIL'}")
    lines.append("")

    for s in output.scenarios:
        lines.append(f"## {s.name}")
        lines.append("")
        lines.append("| Metric | Value |")
        lines.append("|--------|-------|")
        lines.append(f"| Requests | {s.http_reqs:,} |")
        lines.append(f"| Failed rate | {s.failed_rate:.4%} |")
        lines.append(f"| Median (ms) | {s.med_ms:.1f} |")
        lines.append(f"| P95 (ms) | {s.p95_ms:.1f} |")
        lines.append(f"| Iterations | {s.executor.get('completed', 0):,} |")
        lines.append(f"| Dropped iterations | {s.dropped:,} |")
        lines.append(f"| Interrupted iterations | {s.executor.get('interrupted', 0):,} |")
        lines.append("")

        lines.append("### Thresholds")
        lines.append("")
        lines.append("| Metric | Predicate | Observed | Status |")
        lines.append("|--------|-----------|----------|--------|")
        for t in s.thresholds:
            observed = "n/a" if t["observed"] is None else f"{t['observed']:.4g}"
            status = "PASS" if t["passed"] else "FAIL"
            lines.append(f"| {t['metric']} | {t['predicate']} | {observed} | {status} |")
        lines.append("")

        lines.append("### Checks")
        lines.append("")
        lines.append("| Check | Passes | Fails |")
        lines.append("|-------|--------|-------|")
        for check_name, c in s.checks.items():
            lines.append(f"| {check_name} | {c['passes']:,} | {c['fails']:,} |")
        lines.append("")

        lines.append("### Steps")
        lines.append("")
        lines.append("| Step | Requests | Failed | Median (ms) | P95 (ms) |")
        lines.append("|------|----------|--------|-------------|----------|")
        for step, st in s.steps.items():
            lines.append(
                f"| {step} | {st['count']:,} | {st['failed']:,} | "
                f"{st['med_ms']:.1f} | {st['p95_ms']:.1f} |"
            )
        lines.append("")

        if s.error_messages:
            lines.append("**Errors:**")
            for err in s.error_messages[:5]:
                lines.append(f"- {err}")
            lines.append("")

    return "\n".join(lines)


def print_summary(output: RunOutput):
    """Print a concise summary to console."""
    print()
    print("=" * 70)
    print("SHOP LOAD TEST SUMMARY")
    print("=" * 70)
    print(f"Run ID:   {output.metadata.run_id}")
    print(f"Profile:  {output.metadata.profile or 'custom'}")
    print(f"Target:   {output.metadata.url}")
    print(f"Duration: {output.metadata.duration_secs:.1f}s")
    print()

    for s in output.scenarios:
        print(f"{s.name}")
        print("-" * 70)
        print(f"  requests:   {s.http_reqs:,}  failed: {s.failed_rate:.4%}")
        print(f"  latency:    med {s.med_ms:.1f}ms  p95 {s.p95_ms:.1f}ms")
        print(
            f"  iterations: {s.executor.get('completed', 0):,} completed, "
            f"{s.dropped:,} dropped, {s.executor.get('interrupted', 0):,} interrupted"
        )
        for check_name, c in s.checks.items():
            mark = "ok " if c["fails"] == 0 else "X  "
            print(f"  {mark}{check_name:<24} {c['passes']:>8,} / {c['fails']:>6,} failed")
        print()
        for t in s.thresholds:
            status = "PASS" if t["passed"] else "FAIL"
            observed = "n/a" if t["observed"] is None else f"{t['observed']:.4g}"
            print(f"  [{status}] {t['metric']}: {t['predicate']} (observed {observed})")
        if s.dropped:
            print()
            print(f"  WARNING: {s.dropped:,} iterations dropped; the worker pool hit max_workers,")
            print("           so the load generator, not the target, limited throughput.")
        print("-" * 70)
        print()

    overall = "PASSED" if output.success else "FAILED"
    print(f"Overall: {overall}")
    print("=" * 70)


def load_results(path: str) -> RunOutput:
    """Load results from a JSON file."""
    with open(path) as f:
        data = json.load(f)

    meta = data["metadata"]
    metadata = RunMetadata(
        run_id=meta["run_id"],
        profile=meta.get("profile"),
        start_time=meta.get("start_time", ""),
        end_time=meta.get("end_time", ""),
        duration_secs=meta.get("duration_secs", 0),
        url=meta.get("url", ""),
        load=meta.get("load", {}),
        config_path=meta.get("config_path"),
    )

    summary = RunSummary(
        passed=data["summary"]["passed"],
        failed=data["summary"]["failed"],
        dropped_iterations=data["summary"].get("dropped_iterations", 0),
        interrupted_iterations=data["summary"].get("interrupted_iterations", 0),
    )

    scenarios = [ScenarioOutput.from_dict(s) for s in data.get("scenarios", [])]
    return RunOutput(metadata=metadata, summary=summary, scenarios=scenarios)
