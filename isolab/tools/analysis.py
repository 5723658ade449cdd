import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

# ------------------------ Records ------------------------

@dataclass(frozen=True)
class Outcome:
    request_id: str
    latency_ms: int
    ok: bool
    error: Optional[str] = None
    kind: str = "ok"          # ok | transport | status | decode
    phase: str = ""
    finished_at: float = 0.0


@dataclass(frozen=True)
class Report:
    path: str
    total: int
    succeeded: int
    failed: int
    error_rate: str
    unique: int
    duplicates: int
    leaked: bool
    duplicate_ids: List[str] = field(default_factory=list)
    latency: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, int] = field(default_factory=dict)

    def duplicate_sample(self, limit: int = 3) -> Tuple[List[str], int]:
        """First `limit` duplicated ids and how many were left out (display only)."""
        shown = self.duplicate_ids[:limit]
        return shown, len(self.duplicate_ids) - len(shown)

# ------------------------ Percentiles ------------------------

def percentile(samples: Iterable[float], p: float) -> int:
    """Nearest-rank percentile; 0 for no samples."""
    ordered = sorted(samples)
    n = len(ordered)
    if n == 0:
        return 0
    idx = math.ceil((p / 100.0) * n) - 1
    idx = max(0, min(n - 1, idx))
    return ordered[idx]

def latency_summary(latencies: List[int]) -> Dict[str, int]:
    return {
        "p50": percentile(latencies, 50),
        "p95": percentile(latencies, 95),
        "p99": percentile(latencies, 99),
        "max": percentile(latencies, 100),
    }

# ------------------------ Leak analysis ------------------------

def analyze(path: str, outcomes: List[Outcome]) -> Report:
    succeeded = [o for o in outcomes if o.ok]
    failed = [o for o in outcomes if not o.ok]

    ids = [o.request_id for o in succeeded]
    counts = Counter(ids)  # keeps first-seen order
    duplicate_ids = [rid for rid, c in counts.items() if c > 1]

    total = len(outcomes)
    rate = (len(failed) / total * 100.0) if total else 0.0

    return Report(
        path=path,
        total=total,
        succeeded=len(succeeded),
        failed=len(failed),
        error_rate=f"{rate:.1f}%",
        unique=len(counts),
        duplicates=len(ids) - len(counts),
        leaked=len(counts) < len(ids),
        duplicate_ids=duplicate_ids,
        latency=latency_summary([o.latency_ms for o in outcomes]),
        failures=dict(Counter(o.kind for o in failed)),
    )

# ------------------------ Breakdowns ------------------------

BUCKET_COLUMNS = ["rps", "avg_ms", "p50_ms", "p95_ms", "ok", "err"]

def _frame(outcomes: List[Outcome]) -> pd.DataFrame:
    return pd.DataFrame({
        "ts": [int(o.finished_at) for o in outcomes],
        "phase": [o.phase for o in outcomes],
        "latency_ms": [o.latency_ms for o in outcomes],
        "ok": [o.ok for o in outcomes],
    })

def _bucket(df: pd.DataFrame, keys: List[str]) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=keys + BUCKET_COLUMNS)
    rows = []
    for key, g in df.groupby(keys, sort=False):
        key = key if isinstance(key, tuple) else (key,)
        lats = g["latency_ms"].tolist()
        ok = int(g["ok"].sum())
        rows.append(list(key) + [
            len(lats),
            round(sum(lats) / len(lats), 1),
            percentile(lats, 50),
            percentile(lats, 95),
            ok,
            len(lats) - ok,
        ])
    return pd.DataFrame(rows, columns=keys + BUCKET_COLUMNS)

def per_second(outcomes: List[Outcome]) -> pd.DataFrame:
    """Completions bucketed by the wall-clock second they landed in."""
    out = _bucket(_frame(outcomes), ["ts", "phase"])
    return out.sort_values(["ts", "phase"]).reset_index(drop=True) if not out.empty else out

def per_phase(outcomes: List[Outcome]) -> pd.DataFrame:
    """One row per schedule phase, in the order the phases completed."""
    return _bucket(_frame(outcomes), ["phase"])
