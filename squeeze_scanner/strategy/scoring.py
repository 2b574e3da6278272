"""
Deterministic squeeze/momentum scoring.

Ranking criteria:
1) Momentum: size of today's move, bonuses near the 52-week high and for catalyst/news
2) Volume: RVOL against the filter's ignition/active/base thresholds
3) Technical: proximity to the high and follow-through
4) Squeeze pressure: short interest, days to cover, float size, borrow fee
5) Risk: penalty for overextended moves

Score formula (each sub-score clamped to 0-100 first):
score = 0.30*momentum + 0.25*volume + 0.15*technical + 0.20*squeeze + 0.10*risk

The second filtering pass here is independent of the staging qualified flag
and uses the stricter active RVOL threshold.
"""
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from pydantic import BaseModel, Field

from ..config import Variant
from ..discovery.market_data import FundamentalsLookup
from ..discovery.ledger import FUNDAMENTAL_FIELDS
from ..discovery.qualification import (
    categorize,
    has_market_data,
    in_price_range,
    passes_fundamentals,
)
from ..schemas import (
    Category,
    FilterSpec,
    MarketCacheRow,
    SignalLabel,
    TradeSignal,
)


logger = logging.getLogger(__name__)

NEWS_SCORE_BONUS_MIN = 7.0


class ScoringConfig(BaseModel):
    """Weights and trade-plan constants for the scoring engine."""
    momentum_weight: float = 0.30
    volume_weight: float = 0.25
    technical_weight: float = 0.15
    squeeze_weight: float = 0.20
    risk_weight: float = 0.10

    top_n: int = Field(default=10, description="Signals kept after ranking")

    entry_markup: float = Field(default=0.0025, description="Entry above last price")
    squeeze_entry_markup: float = Field(default=0.005, description="Entry markup for SQUEEZE setups")
    ignition_stop_pct: float = Field(default=0.08, description="Stop distance when ignition thresholds are met")
    base_stop_pct: float = Field(default=0.05, description="Stop distance otherwise")

    target_offsets: Tuple[float, float, float] = (0.10, 0.15, 0.25)
    squeeze_target_offsets: Tuple[float, float, float] = (0.10, 0.25, 0.40)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def momentum_score(
    change_pct: float,
    distance_to_high: float,
    catalyst: Optional[str] = None,
    news_score: Optional[float] = None,
) -> float:
    if change_pct > 0.07:
        score = 45
    elif change_pct > 0.04:
        score = 35
    elif change_pct > 0.02:
        score = 25
    elif change_pct > 0:
        score = 10
    else:
        score = 0
    if distance_to_high < 0.05:
        score += 20
    if catalyst:
        score += 15
    if news_score is not None and news_score >= NEWS_SCORE_BONUS_MIN:
        score += 10
    return clamp(score)


def volume_score(rvol: float, spec: FilterSpec) -> float:
    if rvol >= spec.ignition_rvol:
        return 100
    if rvol >= spec.min_rvol_active:
        return 80
    if rvol >= spec.min_rvol_base:
        return 60
    if rvol >= 1.0:
        return 40
    return 0


def squeeze_score(candidate: MarketCacheRow) -> float:
    score = 0

    si = candidate.short_interest_pct
    if si is not None:
        if si >= 30:
            score += 35
        elif si >= 20:
            score += 25
        elif si >= 10:
            score += 15

    dtc = candidate.days_to_cover
    if dtc is not None:
        if dtc >= 5:
            score += 25
        elif dtc >= 3:
            score += 15
        elif dtc >= 1:
            score += 5

    # Smaller float -> more pressure
    float_m = candidate.float_shares
    if float_m is not None:
        if float_m < 10:
            score += 25
        elif float_m < 20:
            score += 15
        elif float_m < 50:
            score += 5

    borrow = candidate.borrow_fee_pct
    if borrow is not None:
        if borrow >= 50:
            score += 15
        elif borrow >= 20:
            score += 10
        elif borrow >= 5:
            score += 5

    return clamp(score)


def technical_score(change_pct: float, distance_to_high: float) -> float:
    score = 50
    if distance_to_high < 0.03:
        score += 20
    if change_pct > 0.03:
        score += 10
    return clamp(score)


def risk_score(change_pct: float) -> float:
    """Overextension penalty grows with the size of the move."""
    score = 90
    if change_pct > 0.15:
        score -= 50
    elif change_pct > 0.10:
        score -= 30
    elif change_pct > 0.07:
        score -= 15
    return clamp(score)


def is_ignition(candidate: MarketCacheRow, spec: FilterSpec) -> bool:
    return (
        candidate.relative_volume >= spec.ignition_rvol
        and candidate.change_pct >= spec.ignition_delta_pct
    )


class SqueezeScorer:
    """
    Filters, scores, classifies and ranks market-cache candidates.

    This is the ranking component - it does NOT place trades.
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        variant: Variant = Variant.FUNDAMENTALS,
    ):
        self.config = config or ScoringConfig()
        self.variant = variant

    def scan_candidates(
        self,
        cache_rows: Sequence[MarketCacheRow],
        spec: FilterSpec,
        fundamentals: Optional[FundamentalsLookup] = None,
    ) -> List[MarketCacheRow]:
        """
        Re-filter cache rows against the (stricter) scoring thresholds.

        Latest fundamentals from the lookup overlay whatever was cached at
        export time.
        """
        candidates = []
        for row in cache_rows:
            candidate = self._with_fundamentals(row, fundamentals)
            if not has_market_data(candidate):
                continue
            if not in_price_range(candidate.price, spec):
                continue
            if candidate.avg_volume_10d < spec.min_avg_vol_10d:
                continue
            if candidate.relative_volume < spec.min_rvol_active:
                continue
            if self.variant == Variant.FUNDAMENTALS and not passes_fundamentals(candidate, spec):
                continue
            candidates.append(candidate)

        logger.info(f"Scan under {spec.name!r}: {len(candidates)}/{len(cache_rows)} cache rows pass")
        return candidates

    def _with_fundamentals(
        self,
        row: MarketCacheRow,
        fundamentals: Optional[FundamentalsLookup],
    ) -> MarketCacheRow:
        if fundamentals is None:
            return row
        record = fundamentals.get(row.ticker)
        if record is None:
            return row
        update = {f: getattr(record, f) for f in FUNDAMENTAL_FIELDS if getattr(record, f) is not None}
        return row.model_copy(update=update)

    def sub_scores(self, candidate: MarketCacheRow, spec: FilterSpec) -> Dict[str, float]:
        change = candidate.change_pct
        distance = candidate.distance_to_high_pct
        return {
            "momentum": momentum_score(change, distance, candidate.catalyst, candidate.news_score),
            "volume": volume_score(candidate.relative_volume, spec),
            "technical": technical_score(change, distance),
            "squeeze": squeeze_score(candidate),
            "risk": risk_score(change),
        }

    def score(self, candidate: MarketCacheRow, spec: FilterSpec) -> int:
        """Weighted 0-100 score, rounded half up."""
        parts = self.sub_scores(candidate, spec)
        weighted = (
            self.config.momentum_weight * parts["momentum"]
            + self.config.volume_weight * parts["volume"]
            + self.config.technical_weight * parts["technical"]
            + self.config.squeeze_weight * parts["squeeze"]
            + self.config.risk_weight * parts["risk"]
        )
        return int(clamp(int(weighted + 0.5)))

    def pattern(self, candidate: MarketCacheRow, spec: FilterSpec) -> Category:
        return categorize(candidate, spec, self.variant)

    def signal_label(self, score: int, pattern: Category) -> SignalLabel:
        if score >= 85 and pattern == Category.SQUEEZE:
            return SignalLabel.STRONG_BUY
        if score >= 75:
            return SignalLabel.BUY
        if score >= 65:
            return SignalLabel.WATCH_CLOSELY if self.variant == Variant.SIMPLE else SignalLabel.SPEC_BUY
        return SignalLabel.WATCH

    def trade_plan(
        self,
        candidate: MarketCacheRow,
        spec: FilterSpec,
        pattern: Category,
    ) -> Dict[str, float]:
        """Entry/stop/targets derived multiplicatively from the last price."""
        cfg = self.config
        squeeze = pattern == Category.SQUEEZE

        markup = cfg.squeeze_entry_markup if squeeze else cfg.entry_markup
        entry = candidate.price * (1 + markup)

        stop_pct = cfg.ignition_stop_pct if is_ignition(candidate, spec) else cfg.base_stop_pct
        stop = entry * (1 - stop_pct)

        t1, t2, stretch = cfg.squeeze_target_offsets if squeeze else cfg.target_offsets
        target_1 = entry * (1 + t1)
        target_2 = entry * (1 + t2)
        stretch_target = entry * (1 + stretch)

        risk = entry - stop
        risk_reward = (target_1 - entry) / risk if risk > 0 else 0.0

        return {
            "entry": round(entry, 4),
            "stop": round(stop, 4),
            "target_1": round(target_1, 4),
            "target_2": round(target_2, 4),
            "stretch_target": round(stretch_target, 4),
            "risk_reward": round(risk_reward, 2),
            "expected_move_pct": round(t2 * 100, 2),
        }

    def notes(self, candidate: MarketCacheRow, spec: FilterSpec) -> str:
        parts = []
        if is_ignition(candidate, spec):
            parts.append(f"Ignition: RVOL {candidate.relative_volume:.1f}x, +{candidate.change_pct * 100:.1f}%")
        if candidate.distance_to_high_pct < 0.05:
            parts.append(f"{candidate.distance_to_high_pct * 100:.1f}% from 52w high")
        if candidate.short_interest_pct is not None:
            parts.append(f"SI {candidate.short_interest_pct:.0f}%")
        if candidate.catalyst:
            parts.append(f"Catalyst: {candidate.catalyst}")
        if candidate.news_score is not None:
            parts.append(f"News {candidate.news_score:g}")
        if spec.horizon_text:
            parts.append(f"Horizon: {spec.horizon_text}")
        return "; ".join(parts)

    def build_signal(self, rank: int, candidate: MarketCacheRow, spec: FilterSpec, score: int) -> TradeSignal:
        pattern = self.pattern(candidate, spec)
        return TradeSignal(
            rank=rank,
            ticker=candidate.ticker,
            company=candidate.company,
            score=score,
            signal=self.signal_label(score, pattern),
            price=candidate.price,
            pattern=pattern,
            notes=self.notes(candidate, spec),
            **self.trade_plan(candidate, spec, pattern),
        )

    def rank(
        self,
        candidates: Sequence[MarketCacheRow],
        spec: FilterSpec,
        top_n: Optional[int] = None,
    ) -> List[TradeSignal]:
        """
        Score every candidate, sort by score descending and keep the top N.

        The sort is stable, so equal scores keep their input order.
        """
        limit = top_n if top_n is not None else self.config.top_n
        scored = [(c, self.score(c, spec)) for c in candidates]
        scored.sort(key=lambda item: item[1], reverse=True)

        return [
            self.build_signal(rank, candidate, spec, score)
            for rank, (candidate, score) in enumerate(scored[:limit], start=1)
        ]


def score_and_rank(
    cache_rows: Sequence[MarketCacheRow],
    spec: FilterSpec,
    fundamentals: Optional[FundamentalsLookup] = None,
    variant: Variant = Variant.FUNDAMENTALS,
    config: Optional[ScoringConfig] = None,
) -> List[TradeSignal]:
    """
    Convenience function: scan the cache, then score and rank.

    Returns signals best first, ranks 1..N.
    """
    scorer = SqueezeScorer(config, variant)
    candidates = scorer.scan_candidates(cache_rows, spec, fundamentals)
    return scorer.rank(candidates, spec)
