from __future__ import annotations
from collections import defaultdict
from typing import Dict


class Metrics:
    def __init__(self) -> None:
        # Global counters
        self._global: Dict[str, float] = defaultdict(float)

        # Per-model counters
        self._per_model: Dict[str, Dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )

        # Latency histogram buckets (ms)
        self._latency_buckets = {
            100: 0,
            500: 0,
            1000: 0,
            5000: 0,
            30000: 0,
            float("inf"): 0,
        }

    # Counter increment
    def inc(self, key: str, value: float = 1.0, model: str | None = None):
        self._global[key] += value
        if model:
            self._per_model[model][key] += value

    # Latency observation
    def observe_latency(self, latency_ms: float):
        for bucket in sorted(self._latency_buckets.keys()):
            if latency_ms <= bucket:
                self._latency_buckets[bucket] += 1
                break

        self._global["total_latency_ms"] += latency_ms
        self._global["max_latency_ms"] = max(
            self._global["max_latency_ms"], latency_ms
        )

    def get(self, key: str) -> float:
        return self._global.get(key, 0.0)

    def reset(self) -> None:
        self._global.clear()
        self._per_model.clear()
        for bucket in self._latency_buckets:
            self._latency_buckets[bucket] = 0

    # Snapshot (JSON view)
    def snapshot(self, model: str | None = None):
        if model:
            return {
                "model": model,
                "metrics": dict(self._per_model.get(model, {})),
            }

        total = self._global.get("total_requests", 0)
        avg_latency = (
            self._global.get("total_latency_ms", 0) / total if total else 0
        )

        return {
            "global": {
                **self._global,
                "avg_latency_ms": avg_latency,
            },
            "per_model": {k: dict(v) for k, v in self._per_model.items()},
        }

    # Prometheus format
    def prometheus(self) -> str:
        lines = []

        for key, value in self._global.items():
            lines.append(f"# TYPE relay_{key} counter")
            lines.append(f"relay_{key} {value}")

        for model, data in self._per_model.items():
            for key, value in data.items():
                lines.append(f'relay_{key}{{model="{model}"}} {value}')

        lines.append("# TYPE relay_request_latency_ms histogram")
        cumulative = 0
        for bucket in sorted(self._latency_buckets.keys()):
            cumulative += self._latency_buckets[bucket]
            label = "+Inf" if bucket == float("inf") else bucket
            lines.append(
                f'relay_request_latency_ms_bucket{{le="{label}"}} {cumulative}'
            )

        return "\n".join(lines) + "\n"


metrics = Metrics()
