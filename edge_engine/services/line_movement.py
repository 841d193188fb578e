"""
Line movement and sharp-money detection.

Compares the opening tick (first captured) with the latest tick for one
event, sportsbook and market:

    movement = current - opening

For spreads a negative move means the line went toward the home side
(sharps on HOME); for totals a negative move means the total dropped
(sharps on UNDER).

    |movement| >= 2.0   significant, medium confidence
    |movement| >= 3.5   major, high confidence
    steam move          significant move with the opener captured within
                        4 hours of kickoff

The model is nudged by 30% of the move toward the sharp side.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from edge_engine.core.types import AdjustmentFactor, MarketLine
from edge_engine.schemas import OddsTick

SHARP_THRESHOLD = 2.0
MAJOR_THRESHOLD = 3.5
STEAM_MOVE_HOURS = 4.0
FOLLOW_FRACTION = 0.3
MIN_TICKS = 5
MINOR_MOVE = 0.5

# Quoting side whose points define the market's line.
_LINE_SIDE = {"spread": "home", "total": "over"}


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class SharpSignal:
    signal: str  # sharp_home / sharp_away / sharp_over / sharp_under / neutral
    movement: float
    confidence: str
    description: str
    is_steam_move: bool = False

    @property
    def is_sharp(self) -> bool:
        return self.signal != "neutral"


@dataclass
class LineMovementImpact:
    spread_signal: SharpSignal
    total_signal: SharpSignal
    spread_adjustment: float = 0.0   # + helps home
    total_adjustment: float = 0.0    # + raises the total
    warnings: List[str] = field(default_factory=list)
    spread_line: Optional[MarketLine] = None
    total_line: Optional[MarketLine] = None

    def to_dict(self) -> Dict:
        def _line(ml: Optional[MarketLine]) -> Dict:
            if ml is None:
                return {"opening": None, "current": None, "movement": 0.0, "tick_count": 0}
            return {
                "opening": ml.opening,
                "current": ml.current,
                "movement": round(ml.movement or 0.0, 1),
                "tick_count": ml.tick_count,
            }

        return {
            "spread_signal": self.spread_signal.signal,
            "total_signal": self.total_signal.signal,
            "spread_adjustment": self.spread_adjustment,
            "total_adjustment": self.total_adjustment,
            "warnings": list(self.warnings),
            "spread": _line(self.spread_line),
            "total": _line(self.total_line),
        }


# ---------------------------------------------------------------------------
# Tick folding
# ---------------------------------------------------------------------------

def build_market_line(
    ticks: Iterable[OddsTick],
    event_id: str,
    sportsbook_id: str,
    market_type: str,
) -> Optional[MarketLine]:
    """Fold ticks for one event/book/market into opening and current numbers.

    Only ticks on the market's reference side (home for spreads, over for
    totals) carry the line.  Returns ``None`` when no usable tick exists.
    """
    side = _LINE_SIDE[market_type]
    relevant = [
        t for t in ticks
        if t.event_id == event_id
        and t.sportsbook_id == sportsbook_id
        and t.market_type == market_type
    ]
    priced = sorted(
        (t for t in relevant if t.side == side and t.points is not None),
        key=lambda t: t.captured_at,
    )
    if not priced:
        return None
    first, last = priced[0], priced[-1]
    return MarketLine(
        event_id=event_id,
        sportsbook_id=sportsbook_id,
        market_type=market_type,
        opening=first.points,
        current=last.points,
        price_american=last.price_american or -110,
        opening_at=first.captured_at,
        current_at=last.captured_at,
        tick_count=len(relevant),
    )


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def detect_sharp_signal(
    movement: float,
    market_type: str,
    opening_at: Optional[datetime] = None,
    kickoff: Optional[datetime] = None,
) -> SharpSignal:
    abs_move = abs(movement)

    is_steam = False
    if opening_at is not None and kickoff is not None:
        hours_to_game = (kickoff - opening_at).total_seconds() / 3600.0
        is_steam = hours_to_game <= STEAM_MOVE_HOURS and abs_move >= SHARP_THRESHOLD

    if abs_move >= MAJOR_THRESHOLD:
        confidence = "high"
    elif abs_move >= SHARP_THRESHOLD:
        confidence = "medium"
    else:
        confidence = "low"

    if market_type == "spread":
        if movement <= -SHARP_THRESHOLD:
            return SharpSignal(
                "sharp_home", movement, confidence,
                f"Line moved {abs_move:.1f} pts toward home - sharp money on HOME", is_steam,
            )
        if movement >= SHARP_THRESHOLD:
            return SharpSignal(
                "sharp_away", movement, confidence,
                f"Line moved {abs_move:.1f} pts toward away - sharp money on AWAY", is_steam,
            )
    else:
        if movement <= -SHARP_THRESHOLD:
            return SharpSignal(
                "sharp_under", movement, confidence,
                f"Total dropped {abs_move:.1f} pts - sharp money on UNDER", is_steam,
            )
        if movement >= SHARP_THRESHOLD:
            return SharpSignal(
                "sharp_over", movement, confidence,
                f"Total rose {abs_move:.1f} pts - sharp money on OVER", is_steam,
            )

    if abs_move > MINOR_MOVE:
        description = f"Minor movement ({movement:.1f} pts) - no clear signal"
    else:
        description = "Line stable - no significant movement"
    return SharpSignal("neutral", movement, "low", description, False)


def _follow(signal: SharpSignal, positive: str, negative: str) -> float:
    if signal.signal == positive:
        return round(abs(signal.movement) * FOLLOW_FRACTION, 1)
    if signal.signal == negative:
        return round(-abs(signal.movement) * FOLLOW_FRACTION, 1)
    return 0.0


def analyze_line_movement(
    spread_line: Optional[MarketLine],
    total_line: Optional[MarketLine],
    kickoff: Optional[datetime] = None,
) -> LineMovementImpact:
    """Classify both markets for one event and book."""
    spread_move = (spread_line.movement or 0.0) if spread_line else 0.0
    total_move = (total_line.movement or 0.0) if total_line else 0.0

    spread_signal = detect_sharp_signal(
        spread_move, "spread", spread_line.opening_at if spread_line else None, kickoff,
    )
    total_signal = detect_sharp_signal(
        total_move, "total", total_line.opening_at if total_line else None, kickoff,
    )

    impact = LineMovementImpact(
        spread_signal=spread_signal,
        total_signal=total_signal,
        spread_adjustment=_follow(spread_signal, "sharp_home", "sharp_away"),
        total_adjustment=_follow(total_signal, "sharp_over", "sharp_under"),
        spread_line=spread_line,
        total_line=total_line,
    )

    for signal in (spread_signal, total_signal):
        if signal.is_sharp:
            impact.warnings.append(f"SHARP MONEY: {signal.description}")
    if spread_signal.is_steam_move:
        impact.warnings.append("STEAM MOVE: Late sharp action on spread - high urgency")
    if total_signal.is_steam_move:
        impact.warnings.append("STEAM MOVE: Late sharp action on total - high urgency")

    spread_ticks = spread_line.tick_count if spread_line else 0
    total_ticks = total_line.tick_count if total_line else 0
    if spread_ticks < MIN_TICKS:
        impact.warnings.append(f"LIMITED DATA: Only {spread_ticks} spread ticks captured")
    if total_ticks < MIN_TICKS:
        impact.warnings.append(f"LIMITED DATA: Only {total_ticks} total ticks captured")

    return impact


def line_movement_factor(impact: LineMovementImpact, market_type: str) -> Optional[AdjustmentFactor]:
    """Composer factor following the sharp side, ``None`` when neutral."""
    if market_type == "spread":
        signal, magnitude = impact.spread_signal, impact.spread_adjustment
    else:
        # A rising total raises scoring, which is a negative line-lowering magnitude.
        signal, magnitude = impact.total_signal, -impact.total_adjustment
    if not signal.is_sharp or magnitude == 0:
        return None
    return AdjustmentFactor(
        kind="line_movement",
        magnitude=magnitude,
        confidence=signal.confidence,
        detail=signal.description,
    )


_ALIGNED = {
    ("home", "sharp_home"): "BET ALIGNS WITH SHARPS on Home",
    ("away", "sharp_away"): "BET ALIGNS WITH SHARPS on Away",
    ("over", "sharp_over"): "BET ALIGNS WITH SHARPS on Over",
    ("under", "sharp_under"): "BET ALIGNS WITH SHARPS on Under",
}
_OPPOSED = {
    ("home", "sharp_away"),
    ("away", "sharp_home"),
    ("over", "sharp_under"),
    ("under", "sharp_over"),
}


def bet_aligns_with_sharps(recommended_side: str, impact: LineMovementImpact) -> Tuple[bool, str]:
    signal = impact.spread_signal if recommended_side in ("home", "away") else impact.total_signal
    key = (recommended_side, signal.signal)
    if key in _ALIGNED:
        return True, _ALIGNED[key]
    if key in _OPPOSED:
        return False, "CAUTION: Betting AGAINST sharp money"
    return False, ""
