"""Market snapshot recording and trend summaries."""

import threading
import time
from collections import deque
from collections.abc import Callable
from decimal import Decimal

from moonwell_risk.core.models import (
    LiquidityTrend,
    MarketData,
    MarketSnapshot,
    MarketSnapshotSummary,
    RateTrend,
    VolumeTrend,
)
from moonwell_risk.errors import UnsupportedAssetError

DAY = 24 * 60 * 60
WEEK = 7 * DAY


class SnapshotRecorder:
    """
    Keeps a bounded, append-only series of snapshots per asset.

    Parameters
    ----------
    max_per_asset : int
        Oldest snapshots are dropped beyond this many per asset
    clock : Callable[[], float]
        Wall-clock time source in seconds

    """

    def __init__(self, max_per_asset: int = 2016, clock: Callable[[], float] = time.time) -> None:
        self.max_per_asset = max_per_asset
        self.clock = clock
        self._series: dict[str, deque[MarketSnapshot]] = {}
        self._lock = threading.Lock()

    def record(self, markets: list[MarketData]) -> list[MarketSnapshot]:
        """Freeze the given market data into snapshots stamped with the current time."""
        timestamp = self.clock()
        snapshots = [
            MarketSnapshot(
                asset=market.asset,
                symbol=market.symbol,
                timestamp=timestamp,
                supply_apy=market.supply_apy,
                borrow_apy=market.borrow_apy,
                total_supply=market.total_supply,
                total_borrow=market.total_borrow,
                utilization_rate=market.utilization_rate,
                liquidity_available=market.liquidity_available,
                price_in_usd=market.price_in_usd,
            )
            for market in markets
        ]
        with self._lock:
            for snapshot in snapshots:
                series = self._series.setdefault(snapshot.asset, deque(maxlen=self.max_per_asset))
                series.append(snapshot)
        return snapshots

    def add(self, snapshot: MarketSnapshot) -> None:
        with self._lock:
            self._series.setdefault(snapshot.asset, deque(maxlen=self.max_per_asset)).append(snapshot)

    def get(self, asset: str, since: float | None = None) -> list[MarketSnapshot]:
        """Snapshots of ``asset`` in time order, optionally only those at or after ``since``."""
        with self._lock:
            series = list(self._series.get(asset, ()))
        if since is not None:
            series = [s for s in series if s.timestamp >= since]
        return series


def _average(values: list[Decimal]) -> Decimal:
    return sum(values, Decimal("0")) / len(values) if values else Decimal("0")


def _percent_change(current: Decimal, previous: Decimal) -> Decimal:
    if previous == 0:
        return Decimal("0")
    return (current - previous) / previous * 100


def _reference(snapshots: list[MarketSnapshot], cutoff: float) -> MarketSnapshot:
    """Latest snapshot at or before ``cutoff``, else the oldest one."""
    candidates = [s for s in snapshots if s.timestamp <= cutoff]
    return candidates[-1] if candidates else snapshots[0]


def summarize_snapshots(asset: str, snapshots: list[MarketSnapshot]) -> MarketSnapshotSummary:
    """
    Derive price changes and rate, liquidity and volume trends from snapshots.

    Windows are measured back from the newest snapshot: 24 hours for the
    short price change, 7 days for averages and ranges. The
    ``avg_window`` figures cover every snapshot given.

    Raises
    ------
    UnsupportedAssetError
        If there are no snapshots for ``asset``

    """
    series = sorted((s for s in snapshots if s.asset == asset), key=lambda s: s.timestamp)
    if not series:
        raise UnsupportedAssetError(f"No market snapshots found for {asset}", details={"asset": asset})

    latest = series[-1]
    week = [s for s in series if s.timestamp > latest.timestamp - WEEK]

    def rate_trend(field: str) -> RateTrend:
        return RateTrend(
            current=getattr(latest, field),
            avg_7d=_average([getattr(s, field) for s in week]),
            avg_window=_average([getattr(s, field) for s in series]),
        )

    liquidity = [s.liquidity_available for s in week]

    return MarketSnapshotSummary(
        asset=asset,
        symbol=latest.symbol,
        current_price=latest.price_in_usd,
        price_change_24h=_percent_change(latest.price_in_usd, _reference(series, latest.timestamp - DAY).price_in_usd),
        price_change_7d=_percent_change(latest.price_in_usd, _reference(series, latest.timestamp - WEEK).price_in_usd),
        supply_apy_trend=rate_trend("supply_apy"),
        borrow_apy_trend=rate_trend("borrow_apy"),
        utilization_trend=rate_trend("utilization_rate"),
        liquidity_trend=LiquidityTrend(
            current=latest.liquidity_available,
            avg_7d=_average(liquidity),
            min_7d=min(liquidity),
            max_7d=max(liquidity),
        ),
        volume_trend=VolumeTrend(
            total_24h=latest.volume_24h,
            avg_7d=_average([s.volume_24h for s in week]),
            total_7d=sum((s.volume_24h for s in week), Decimal("0")),
        ),
        snapshots=series,
    )
