"""
Correlation Analysis service.

Provides:
  1. Pairwise Pearson correlation between product price series, aligned
     by date (inner join) over a trailing window
  2. Sector composites (mean of rebased constituent series) and the same
     pairwise procedure across sectors
  3. Explicit symmetric correlation matrices over a product id list

Every unordered pair is computed exactly once, in canonical (sorted id)
order, so corr(A, B) and corr(B, A) are the same float. Pairs without
enough overlap or with a constant series report ``coefficient = None``
plus a reason instead of a numeric artifact.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ComputationError, DataInsufficiencyError, ValidationError
from app.services.metric_store import ProductInfo, load_products, load_series
from app.services.outcomes import BatchResult, ItemOutcome

logger = logging.getLogger("tradewatch.services.correlation")

Series = Dict[date, float]

MIN_OVERLAP = 5
MIN_WINDOW_DAYS = 7
MAX_WINDOW_DAYS = 365
DEFAULT_WINDOW_DAYS = 90

INSUFFICIENT_DATA = "insufficient_data"
ZERO_VARIANCE = "zero_variance"

STRONG_COEFFICIENT = 0.6
REBASE_INDEX = 100.0


# ═══════════════════════════════════════════════════════════════════
#  1. NUMERIC CORE
# ═══════════════════════════════════════════════════════════════════

def validate_window(window_days: int) -> int:
    if isinstance(window_days, bool) or not isinstance(window_days, int):
        raise ValidationError("timeWindow must be an integer number of days")
    if not MIN_WINDOW_DAYS <= window_days <= MAX_WINDOW_DAYS:
        raise ValidationError(
            f"timeWindow must be between {MIN_WINDOW_DAYS} and {MAX_WINDOW_DAYS} days (got {window_days})"
        )
    return window_days


def window_bounds(as_of: date, window_days: int) -> Tuple[date, date]:
    """Inclusive [start, end] covering ``window_days`` calendar days ending at ``as_of``."""
    return as_of - timedelta(days=window_days - 1), as_of


def align(a: Series, b: Series) -> Tuple[List[float], List[float]]:
    """Inner join on date, in date order."""
    common = sorted(a.keys() & b.keys())
    return [a[d] for d in common], [b[d] for d in common]


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson's r = Σ(x-x̄)(y-ȳ) / sqrt(Σ(x-x̄)² · Σ(y-ȳ)²).

    Raises DataInsufficiencyError when fewer than MIN_OVERLAP points are
    given or either side is constant.
    """
    if len(x) != len(y):
        raise ValueError("series must be aligned before correlating")
    if len(x) < MIN_OVERLAP:
        raise DataInsufficiencyError(INSUFFICIENT_DATA, f"{len(x)} overlapping points, need {MIN_OVERLAP}")

    xa = np.asarray(x, dtype=float)
    ya = np.asarray(y, dtype=float)
    if xa.max() == xa.min() or ya.max() == ya.min():
        raise DataInsufficiencyError(ZERO_VARIANCE, "constant series over the window")

    dx = xa - xa.mean()
    dy = ya - ya.mean()
    sxy = float(np.sum(dx * dy))
    denom = math.sqrt(float(np.sum(dx * dx)) * float(np.sum(dy * dy)))
    if denom == 0 or not math.isfinite(denom):
        raise DataInsufficiencyError(ZERO_VARIANCE, "degenerate variance")
    r = sxy / denom
    return max(-1.0, min(1.0, r))


def strength_label(r: Optional[float]) -> Optional[str]:
    if r is None:
        return None
    abs_r = abs(r)
    if abs_r > 0.8:
        return "very_strong"
    if abs_r >= 0.6:
        return "strong"
    if abs_r >= 0.3:
        return "moderate"
    return "weak"


def direction_label(r: Optional[float]) -> Optional[str]:
    if r is None:
        return None
    if r > 0.3:
        return "positive"
    if r < -0.3:
        return "negative"
    return "neutral"


def _interpretation(r: Optional[float], reason: Optional[str], group_a: Optional[str], group_b: Optional[str]) -> str:
    if r is None:
        if reason == ZERO_VARIANCE:
            return "No correlation computed - at least one series is constant over the window"
        return "No correlation computed - too few overlapping observations"

    strength = strength_label(r).replace("_", " ")
    sign = "positive" if r > 0 else "negative"
    if group_a and group_a == group_b:
        if abs(r) >= STRONG_COEFFICIENT:
            return f"{strength.capitalize()} {sign} correlation within {group_a} - prices move together"
        return f"{strength.capitalize()} correlation within {group_a}"
    a, b = group_a or "one series", group_b or "the other"
    if r > 0.5:
        return f"{a} and {b} tend to move together - likely shared supply chain or market factors"
    if r < -0.5:
        return f"{a} and {b} move inversely - potential substitution effect"
    return f"{strength.capitalize()} correlation between {a} and {b}"


# ═══════════════════════════════════════════════════════════════════
#  2. PAIRWISE BATCH
# ═══════════════════════════════════════════════════════════════════

def correlate_pair(
    id_a: str,
    id_b: str,
    series: Dict[str, Series],
    window_days: int,
    groups: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Correlation record for one unordered pair, in canonical id order."""
    a, b = sorted((id_a, id_b))
    groups = groups or {}
    x, y = align(series.get(a, {}), series.get(b, {}))
    reason = None
    try:
        r = round(pearson(x, y), 4)
    except DataInsufficiencyError as e:
        r, reason = None, e.reason

    return {
        "series_a": a,
        "series_b": b,
        "coefficient": r,
        "n": len(x),
        "strength": strength_label(r),
        "direction": direction_label(r),
        "reason": reason,
        "window_days": window_days,
        "group_a": groups.get(a),
        "group_b": groups.get(b),
        "interpretation": _interpretation(r, reason, groups.get(a), groups.get(b)),
    }


def _pair_outcome(a, b, series, window_days, groups) -> ItemOutcome:
    key = f"{a}|{b}"
    try:
        return ItemOutcome.success(key, correlate_pair(a, b, series, window_days, groups))
    except (ArithmeticError, ValueError) as e:
        err = ComputationError(f"pair {key}: {e}")
        logger.warning("Correlation failed for %s: %s", key, err.message)
        return ItemOutcome.skipped(key, "computation_error", str(e))


def _rank_key(result: Dict[str, Any]):
    r = result["coefficient"]
    return (r is None, -abs(r) if r is not None else 0.0, result["series_a"], result["series_b"])


def run_pairwise(
    series: Dict[str, Series],
    ids: Sequence[str],
    window_days: int,
    groups: Optional[Dict[str, str]] = None,
    max_workers: Optional[int] = None,
    deadline_seconds: Optional[float] = None,
) -> BatchResult:
    """
    Correlate every unordered pair of ``ids`` on a bounded worker pool.

    Pairs still pending when the deadline passes are dropped and the
    batch is marked truncated. Completed outcomes are ranked by |r|
    descending, then by series ids, regardless of completion order.
    """
    ordered = sorted(set(ids))
    pairs = [(a, b) for i, a in enumerate(ordered) for b in ordered[i + 1:]]
    workers = max_workers if max_workers is not None else settings.correlation_max_workers
    outcomes: List[ItemOutcome] = []
    truncated = False

    if workers <= 1 or len(pairs) <= 1:
        started = time.monotonic()
        for a, b in pairs:
            if deadline_seconds is not None and time.monotonic() - started > deadline_seconds:
                truncated = True
                break
            outcomes.append(_pair_outcome(a, b, series, window_days, groups))
    else:
        pool = ThreadPoolExecutor(max_workers=workers)
        try:
            futures = [pool.submit(_pair_outcome, a, b, series, window_days, groups) for a, b in pairs]
            done, not_done = wait(futures, timeout=deadline_seconds)
            truncated = bool(not_done)
            outcomes = [f.result() for f in done]
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    if truncated:
        logger.warning("Correlation deadline hit: %d/%d pairs computed", len(outcomes), len(pairs))

    ok = sorted((o for o in outcomes if o.ok), key=lambda o: _rank_key(o.value))
    failed = sorted((o for o in outcomes if not o.ok), key=lambda o: o.key)
    return BatchResult(outcomes=ok + failed, total=len(pairs), truncated=truncated)


def _batch_summary(batch: BatchResult) -> Dict[str, Any]:
    return {
        "total_pairs": batch.total,
        "computed_pairs": sum(1 for o in batch.outcomes if o.ok),
        "skipped": batch.skipped,
        "partial": batch.partial,
        "truncated": batch.truncated,
    }


def analyze_correlations(
    series: Dict[str, Series],
    groups: Dict[str, str],
    window_days: int = DEFAULT_WINDOW_DAYS,
    min_abs_coefficient: float = 0.0,
    max_workers: Optional[int] = None,
    deadline_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """Ranked correlations across every pair of series in ``groups``."""
    validate_window(window_days)
    batch = run_pairwise(series, list(groups), window_days, groups, max_workers, deadline_seconds)
    correlations = [
        c for c in batch.values
        if min_abs_coefficient <= 0 or (c["coefficient"] is not None and abs(c["coefficient"]) >= min_abs_coefficient)
    ]
    return {"correlations": correlations, "count": len(correlations), "window_days": window_days, **_batch_summary(batch)}


# ═══════════════════════════════════════════════════════════════════
#  3. SECTOR COMPOSITES
# ═══════════════════════════════════════════════════════════════════

def rebase(s: Series) -> Optional[Series]:
    """Index a series to REBASE_INDEX at its first observation; None if it starts at 0."""
    if not s:
        return None
    dates = sorted(s)
    first = s[dates[0]]
    if first == 0:
        return None
    return {d: s[d] / first * REBASE_INDEX for d in dates}


def build_sector_composites(
    series: Dict[str, Series],
    products: Dict[str, ProductInfo],
) -> Tuple[Dict[str, Series], Dict[str, int]]:
    """
    One composite per sector: simple mean of the constituent series over
    the dates every constituent reports, each rebased to REBASE_INDEX on
    the first of those common dates. Members never change mid-series, so
    a product starting or stopping inside the window cannot shift the
    composite level.

    Constituents worth 0 on the common base date are dropped and the
    common dates recomputed. A sector whose members share no date gets
    an empty composite.

    Returns (composites, constituent_counts).
    """
    members: Dict[str, List[Series]] = {}
    for pid in sorted(products):
        s = series.get(pid)
        if s:
            members.setdefault(products[pid].category, []).append(s)

    composites: Dict[str, Series] = {}
    counts: Dict[str, int] = {}
    for sector, constituent in members.items():
        common = _common_dates(constituent)
        while common:
            kept = [c for c in constituent if c[common[0]] != 0]
            if len(kept) == len(constituent):
                break
            constituent = kept
            common = _common_dates(constituent)
        if not constituent:
            continue

        rebased = [rebase({d: c[d] for d in common}) or {} for c in constituent]
        composites[sector] = {
            d: sum(r[d] for r in rebased) / len(rebased) for d in common
        }
        counts[sector] = len(constituent)
    return composites, counts


def _common_dates(constituent: List[Series]) -> List[date]:
    if not constituent:
        return []
    return sorted(set.intersection(*(set(c) for c in constituent)))


def _trend_direction(s: Series) -> str:
    """Sign of the least-squares slope, 'stable' under 2% drift over the window."""
    values = np.array([s[d] for d in sorted(s)], dtype=float)
    n = len(values)
    if n < 2:
        return "stable"
    slope = float(np.polyfit(np.arange(n), values, 1)[0])
    y_mean = float(values.mean())
    if abs(slope * (n - 1)) / (abs(y_mean) + 1e-9) < 0.02:
        return "stable"
    return "increasing" if slope > 0 else "decreasing"


def sector_correlations(
    series: Dict[str, Series],
    products: Dict[str, ProductInfo],
    window_days: int = DEFAULT_WINDOW_DAYS,
    max_workers: Optional[int] = None,
    deadline_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    validate_window(window_days)
    composites, counts = build_sector_composites(series, products)
    sectors = sorted(composites)
    batch = run_pairwise(composites, sectors, window_days, {s: s for s in sectors}, max_workers, deadline_seconds)
    pairs = batch.values

    summaries = []
    for sector in sectors:
        peers = []
        for c in pairs:
            r = c["coefficient"]
            if r is None or abs(r) < STRONG_COEFFICIENT or sector not in (c["series_a"], c["series_b"]):
                continue
            other = c["series_b"] if c["series_a"] == sector else c["series_a"]
            peers.append({"sector": other, "coefficient": r, "strength": c["strength"]})
        summaries.append({
            "sector": sector,
            "product_count": counts[sector],
            "observation_days": len(composites[sector]),
            "trend_direction": _trend_direction(composites[sector]),
            "correlated_sectors": peers,
        })

    return {"sectors": summaries, "correlations": pairs, "window_days": window_days, **_batch_summary(batch)}


# ═══════════════════════════════════════════════════════════════════
#  4. CORRELATION MATRIX
# ═══════════════════════════════════════════════════════════════════

def generate_correlation_matrix(
    product_ids: Sequence[str],
    series: Dict[str, Series],
    products: Dict[str, ProductInfo],
    window_days: int = DEFAULT_WINDOW_DAYS,
    max_workers: Optional[int] = None,
    deadline_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """
    NxN matrix over ``product_ids`` (caller order, duplicates dropped).

    Diagonal is 1.0; each off-diagonal pair is computed once and
    mirrored. Cells without a coefficient stay None with a reason.
    """
    ids = list(dict.fromkeys(pid.strip() for pid in product_ids if pid and pid.strip()))
    if len(ids) < 2:
        raise ValidationError("At least 2 distinct product IDs are required for a correlation matrix")
    validate_window(window_days)

    known = [pid for pid in ids if pid in products]
    not_found = [pid for pid in ids if pid not in products]
    groups = {pid: products[pid].category for pid in known}
    batch = run_pairwise(series, known, window_days, groups, max_workers, deadline_seconds)
    by_pair = {(c["series_a"], c["series_b"]): c for c in batch.values}

    n = len(ids)
    cells: List[List[Optional[float]]] = [[None] * n for _ in range(n)]
    reasons: List[List[Optional[str]]] = [[None] * n for _ in range(n)]
    for i in range(n):
        cells[i][i] = 1.0
        for j in range(i + 1, n):
            pair = by_pair.get(tuple(sorted((ids[i], ids[j]))))
            if pair is None:
                reason = "not_found" if ids[i] in not_found or ids[j] in not_found else "not_computed"
                value = None
            else:
                value, reason = pair["coefficient"], pair["reason"]
            cells[i][j] = cells[j][i] = value
            reasons[i][j] = reasons[j][i] = reason

    summary = _batch_summary(batch)
    summary["partial"] = summary["partial"] or bool(not_found)
    return {
        "products": [
            {"id": pid, "hs_code": products[pid].hs_code if pid in products else None,
             "category": products[pid].category if pid in products else None}
            for pid in ids
        ],
        "ids": ids,
        "cells": cells,
        "reasons": reasons,
        "not_found": not_found,
        "insights": _matrix_insights(batch.values, groups),
        "window_days": window_days,
        **summary,
    }


def _matrix_insights(pairs: List[Dict[str, Any]], groups: Dict[str, str]) -> List[str]:
    strong = [c for c in pairs if c["coefficient"] is not None and abs(c["coefficient"]) >= STRONG_COEFFICIENT]
    insights = []
    if strong:
        insights.append(f"Found {len(strong)} strong product correlations - these items tend to move together in price")
    inverse = [c for c in strong if c["coefficient"] < 0]
    if inverse:
        insights.append(
            f"{len(inverse)} strong negative correlations detected - potential substitution effects or inverse price relationships"
        )
    for category in sorted(set(groups.values())):
        internal = [c for c in strong if groups.get(c["series_a"]) == category == groups.get(c["series_b"])]
        if len(internal) > 2:
            insights.append(f"{category} sector shows {len(internal)} strong internal correlations - high sector cohesion")
    return insights


# ═══════════════════════════════════════════════════════════════════
#  5. STORE-BACKED ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════

def product_correlations(
    db: Session,
    as_of: date,
    category: Optional[str] = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
    min_abs_coefficient: float = 0.0,
    deadline_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    validate_window(window_days)
    products = load_products(db, category=category)
    start, end = window_bounds(as_of, window_days)
    series = load_series(db, start, end, product_ids=list(products))
    result = analyze_correlations(
        series, {pid: p.category for pid, p in products.items()}, window_days,
        min_abs_coefficient=min_abs_coefficient, deadline_seconds=deadline_seconds,
    )
    result["category"] = category or "all"
    return result


def sector_correlations_from_store(
    db: Session,
    as_of: date,
    window_days: int = DEFAULT_WINDOW_DAYS,
    deadline_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    validate_window(window_days)
    products = load_products(db)
    start, end = window_bounds(as_of, window_days)
    series = load_series(db, start, end, product_ids=list(products))
    return sector_correlations(series, products, window_days, deadline_seconds=deadline_seconds)


def correlation_matrix_from_store(
    db: Session,
    product_ids: Sequence[str],
    as_of: date,
    window_days: int = DEFAULT_WINDOW_DAYS,
    deadline_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    ids = [pid.strip() for pid in product_ids if pid and pid.strip()]
    if len(set(ids)) < 2:
        raise ValidationError("At least 2 distinct product IDs are required for a correlation matrix")
    validate_window(window_days)
    products = load_products(db, product_ids=ids)
    start, end = window_bounds(as_of, window_days)
    series = load_series(db, start, end, product_ids=list(products))
    return generate_correlation_matrix(ids, series, products, window_days, deadline_seconds=deadline_seconds)
