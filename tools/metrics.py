from __future__ import annotations
import threading
from typing import Dict, Iterable, List, Tuple

from prometheus_client import CollectorRegistry
from prometheus_client.utils import floatToGoString
from prometheus_client.core import GaugeMetricFamily

from broker.base import LABEL_NAMES, Account, MetricSample

# metric name -> (Account attribute, HELP text); order is the render order
GAUGES: Dict[str, Tuple[str, str]] = {
    "wealthsimple_deposited": ("total_deposits", "the total amount deposited"),
    "wealthsimple_withdrawn": ("total_withdrawals", "the total amount withdrawn"),
    "wealthsimple_net_liquidation": (
        "net_liquidation",
        "the value of the account if it were to be liquidated",
    ),
    "wealthsimple_gross_position": ("gross_position", "sum of all positions in the account"),
}


def accounts_to_samples(accounts: Iterable[Account]) -> List[MetricSample]:
    """Four samples per account, minus any figure that failed to parse."""
    out: List[MetricSample] = []
    for acct in accounts:
        labels = acct.labels()
        for name, (attr, _help) in GAUGES.items():
            value = getattr(acct, attr)
            if value is not None:
                out.append(MetricSample(name, dict(labels), float(value)))
    return out


class GaugeStore:
    """
    Latest account gauges, replaced wholesale once per poll cycle.

    Readers always see one complete cycle: replace_all() builds the new map
    off-lock and swaps it in under the lock. Doubles as a prometheus_client
    custom collector.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._samples: Dict[tuple, MetricSample] = {}

    def replace_all(self, samples: Iterable[MetricSample]) -> None:
        fresh: Dict[tuple, MetricSample] = {}
        for s in samples:
            fresh[s.key()] = s
        with self._lock:
            self._samples = fresh

    def snapshot(self) -> Tuple[MetricSample, ...]:
        with self._lock:
            return tuple(self._samples.values())

    def collect(self):
        by_name: Dict[str, List[MetricSample]] = {}
        for s in self.snapshot():
            by_name.setdefault(s.name, []).append(s)
        for name, (_attr, help_text) in GAUGES.items():
            if name not in by_name:
                continue
            fam = GaugeMetricFamily(name, help_text, labels=list(LABEL_NAMES))
            for s in by_name[name]:
                fam.add_metric([s.labels.get(n, "") for n in LABEL_NAMES], s.value)
            yield fam


def build_registry(store: GaugeStore) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(store)
    return registry


def _escape_label(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def _escape_help(text: str) -> str:
    return text.replace("\\", r"\\").replace("\n", r"\n")


def _label_order(labels) -> List[str]:
    known = [n for n in LABEL_NAMES if n in labels]
    return known + sorted(n for n in labels if n not in LABEL_NAMES)


def render_metrics(registry: CollectorRegistry) -> bytes:
    """
    Text exposition of everything the registry collects.

    Labels are written in LABEL_NAMES order (account_id, account_type,
    account_name); generate_latest in recent prometheus_client sorts them.
    """
    lines: List[str] = []
    for fam in registry.collect():
        lines.append(f"# HELP {fam.name} {_escape_help(fam.documentation)}")
        lines.append(f"# TYPE {fam.name} {fam.type}")
        for s in fam.samples:
            value = floatToGoString(s.value)
            if s.labels:
                pairs = ",".join(
                    f'{n}="{_escape_label(str(s.labels[n]))}"' for n in _label_order(s.labels)
                )
                lines.append(f"{s.name}{{{pairs}}} {value}")
            else:
                lines.append(f"{s.name} {value}")
    if not lines:
        return b""
    return ("\n".join(lines) + "\n").encode("utf-8")
