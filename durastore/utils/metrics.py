from typing import Dict, Any, Optional, Sequence
from prometheus_client import CollectorRegistry, Counter, Gauge

class MetricsManager:
    """Registry for store metrics, backed by a private Prometheus registry."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(MetricsManager, cls).__new__(cls)
            cls._instance.metrics: Dict[str, Any] = {}
            cls._instance.registry = CollectorRegistry()
        return cls._instance

    def counter(self, name: str, documentation: str = "", labelnames: Sequence[str] = ("strategy",)) -> Counter:
        if name not in self.metrics:
            self.metrics[name] = Counter(
                name, documentation or f"Counter for {name}", labelnames, registry=self.registry
            )
        return self.metrics[name]

    def gauge(self, name: str, documentation: str = "", labelnames: Sequence[str] = ("strategy",)) -> Gauge:
        if name not in self.metrics:
            self.metrics[name] = Gauge(
                name, documentation or f"Gauge for {name}", labelnames, registry=self.registry
            )
        return self.metrics[name]

    def value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 if it was never recorded."""
        # Counters are exposed with a _total suffix
        sample = self.registry.get_sample_value(name, labels or {})
        if sample is None and name.endswith("_total"):
            sample = self.registry.get_sample_value(name[: -len("_total")], labels or {})
        return sample or 0.0

    def get_all(self) -> Dict[str, float]:
        res = {}
        for family in self.registry.collect():
            for sample in family.samples:
                if sample.name.endswith("_created"):
                    continue
                label_str = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                res[f"{sample.name}{{{label_str}}}"] = sample.value
        return res


class StoreMetrics:
    """Named metric handles shared by coalescers and gateways."""

    def __init__(self, strategy: str):
        manager = MetricsManager()
        self.strategy = strategy
        self.writes_submitted = manager.counter(
            "durastore_writes_submitted", "Snapshots handed to the write coalescer"
        ).labels(strategy=strategy)
        self.writes_suppressed = manager.counter(
            "durastore_writes_suppressed", "Snapshots skipped inside a debounce window"
        ).labels(strategy=strategy)
        self.writes_coalesced = manager.counter(
            "durastore_writes_coalesced", "Queued snapshots superseded by a later one for the same identifier"
        ).labels(strategy=strategy)
        self.backend_upserts = manager.counter(
            "durastore_backend_upserts", "Successful backend upserts"
        ).labels(strategy=strategy)
        self.flush_failures = manager.counter(
            "durastore_flush_failures", "Backend upserts that failed during a flush"
        ).labels(strategy=strategy)
        self.dropped_writes = manager.counter(
            "durastore_dropped_writes", "Queued snapshots evicted because the queue was full"
        ).labels(strategy=strategy)
        self.pending_writes = manager.gauge(
            "durastore_pending_writes", "Snapshots waiting in the write queue"
        ).labels(strategy=strategy)
