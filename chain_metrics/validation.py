"""
Validation Boundary - The only place raw provider data is touched.

Every raw category payload and every raw history page passes through
one function here. Past this boundary, internal types are non-optional
and consumers read fields without null checks.

Optional analysis sub-objects are normalised onto fixed templates, the
same templates the fallback synthesizer uses, so a live bundle and a
fallback bundle always share one key structure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from chain_metrics.clock import ClockProtocol, get_clock
from chain_metrics.exceptions import ValidationError
from chain_metrics.models import BUNDLE_TYPES, Category, MetricSeriesPoint, MetricSnapshot, Trend


logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Base for upstream payloads: camelCase on the wire, unknown keys ignored."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =======================
# SERIES & SNAPSHOTS
# =======================

class RawSeriesPoint(CamelModel):
    timestamp: datetime
    value: float
    volume: Optional[float] = None
    sample_count: Optional[int] = None


class RawSnapshot(CamelModel):
    value: float
    change: Optional[float] = None
    change_percent: Optional[float] = None
    trend: Trend = Trend.STABLE
    timestamp: Optional[datetime] = None


# =======================
# ANALYSIS TEMPLATES
# =======================

class TVLAnalysis(CamelModel):
    tvl_change_24h: float = Field(default=0, alias="tvlChange24h")
    tvl_change_7d: float = Field(default=0, alias="tvlChange7d")
    tvl_change_30d: float = Field(default=0, alias="tvlChange30d")
    top_protocols: list[Any] = Field(default_factory=list)
    chain_distribution: list[Any] = Field(default_factory=list)
    category_distribution: list[Any] = Field(default_factory=list)
    historical_trend: list[Any] = Field(default_factory=list)


class MiningEfficiency(CamelModel):
    current: float = 0
    average: float = 0
    peak: float = 0
    efficiency: float = 0


class FlowAnalysis(CamelModel):
    bridge_flow_patterns: list[Any] = Field(default_factory=list)
    exchange_flow_correlations: list[Any] = Field(default_factory=list)
    staking_trends: list[Any] = Field(default_factory=list)
    mining_efficiency: MiningEfficiency = Field(default_factory=MiningEfficiency)


class MarketCorrelations(CamelModel):
    matrix: list[Any] = Field(default_factory=list)
    assets: list[Any] = Field(default_factory=list)
    timeframe: str = "24h"


class LiquidityMetrics(CamelModel):
    total_liquidity: float = 0
    liquidity_score: float = 0
    volume_depth: float = 0
    spread: float = 0


class VolatilityMetrics(CamelModel):
    current: float = 0
    average: float = 0
    high: float = 0
    low: float = 0
    index: float = 0


class MarketAnalysis(CamelModel):
    sector_performance: list[Any] = Field(default_factory=list)
    market_correlations: MarketCorrelations = Field(default_factory=MarketCorrelations)
    liquidity_metrics: LiquidityMetrics = Field(default_factory=LiquidityMetrics)
    volatility_metrics: VolatilityMetrics = Field(default_factory=VolatilityMetrics)


def _hold_signals() -> list[dict[str, Any]]:
    return [{
        "type": "hold",
        "strength": 5,
        "confidence": 50,
        "description": "Insufficient data for analysis - recommend holding",
        "timeframe": "24h",
        "metrics": [],
    }]


def _hold_recommendations() -> list[dict[str, Any]]:
    return [{
        "id": "rec-fallback",
        "title": "Data Unavailable",
        "description": "AI analysis unavailable due to insufficient data",
        "action": "hold",
        "priority": "medium",
        "confidence": 50,
        "timeframe": "24h",
        "expectedImpact": "Maintain current position until data available",
    }]


def _limited_data_insights() -> list[dict[str, Any]]:
    return [{
        "id": "insight-fallback",
        "category": "Data Quality",
        "title": "Limited Data Available",
        "content": "Current data insufficient for comprehensive AI analysis",
        "importance": 5,
        "confidence": 50,
        "timeframe": "24h",
        "relatedMetrics": [],
    }]


class RiskAssessment(CamelModel):
    overall: str = "medium"
    factors: list[Any] = Field(default_factory=list)
    score: float = 5
    max_score: float = 10
    recommendations: list[Any] = Field(
        default_factory=lambda: ["Monitor for data availability"]
    )


# =======================
# CATEGORY PAYLOADS
# =======================

class CategoryPayload(CamelModel):
    """Identity fields shared by every category payload."""
    ANALYSIS_FIELDS: ClassVar[tuple[str, ...]] = ()

    id: str
    blockchain: str
    timeframe: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    history: dict[str, list[RawSeriesPoint]] = Field(default_factory=dict)


class UsagePayload(CategoryPayload):
    daily_active_addresses: RawSnapshot
    new_addresses: RawSnapshot
    daily_transactions: RawSnapshot
    transaction_volume: RawSnapshot
    average_fee: RawSnapshot
    hash_rate: RawSnapshot


class TVLPayload(CategoryPayload):
    ANALYSIS_FIELDS: ClassVar[tuple[str, ...]] = ("tvl_analysis",)

    total_tvl: RawSnapshot = Field(alias="totalTVL")
    chain_tvl: RawSnapshot = Field(alias="chainTVL")
    dominance: RawSnapshot
    protocol_count: RawSnapshot
    tvl_analysis: TVLAnalysis = Field(default_factory=TVLAnalysis)


class CashflowPayload(CategoryPayload):
    ANALYSIS_FIELDS: ClassVar[tuple[str, ...]] = ("flow_analysis",)

    bridge_flows: RawSnapshot
    exchange_flows: RawSnapshot
    staking_metrics: RawSnapshot
    mining_validation: RawSnapshot
    flow_analysis: FlowAnalysis = Field(default_factory=FlowAnalysis)


class MarketPayload(CategoryPayload):
    ANALYSIS_FIELDS: ClassVar[tuple[str, ...]] = ("market_analysis",)

    market_cap: RawSnapshot
    dominance: RawSnapshot
    volume_24h: RawSnapshot = Field(alias="volume24h")
    price_change_24h: RawSnapshot = Field(alias="priceChange24h")
    fear_greed_index: RawSnapshot
    market_analysis: MarketAnalysis = Field(default_factory=MarketAnalysis)


class AIPayload(CategoryPayload):
    """AI signals are decor data: carried through opaquely, never interpreted."""
    ANALYSIS_FIELDS: ClassVar[tuple[str, ...]] = (
        "sentiment",
        "confidence",
        "signals",
        "recommendations",
        "risk_assessment",
        "market_insights",
        "predictive_indicators",
    )

    sentiment: str = "neutral"
    confidence: float = 50
    signals: list[Any] = Field(default_factory=_hold_signals)
    recommendations: list[Any] = Field(default_factory=_hold_recommendations)
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    market_insights: list[Any] = Field(default_factory=_limited_data_insights)
    predictive_indicators: list[Any] = Field(default_factory=list)


PAYLOAD_MODELS: dict[Category, type[CategoryPayload]] = {
    Category.USAGE: UsagePayload,
    Category.TVL: TVLPayload,
    Category.CASHFLOW: CashflowPayload,
    Category.MARKET: MarketPayload,
    Category.AI: AIPayload,
}


# =======================
# VALIDATED RESULT
# =======================

@dataclass(frozen=True)
class ValidatedCategory:
    """A category payload that passed the boundary, before analytics."""
    category: Category
    id: str
    network_id: str
    timeframe: str
    created_at: datetime
    updated_at: datetime
    metrics: dict[str, MetricSnapshot]
    analysis: dict[str, Any]
    history: dict[str, list[MetricSeriesPoint]] = field(default_factory=dict)


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _fields_by_alias(model: type[CategoryPayload]) -> dict[str, str]:
    return {info.alias or name: name for name, info in model.model_fields.items()}


def _describe_errors(error: PydanticValidationError) -> tuple[list[str], list[str]]:
    missing: list[str] = []
    malformed: list[str] = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        if detail["type"] == "missing":
            missing.append(location)
        else:
            malformed.append(location)
    return missing, malformed


def _to_series(points: list[RawSeriesPoint], source: str) -> list[MetricSeriesPoint]:
    series = sorted(
        (
            MetricSeriesPoint(
                timestamp=_utc(point.timestamp),
                value=point.value,
                volume=point.volume,
                sample_count=point.sample_count,
            )
            for point in points
        ),
        key=lambda point: point.timestamp,
    )
    for previous, current in zip(series, series[1:]):
        if previous.timestamp == current.timestamp:
            raise ValidationError(
                f"Duplicate timestamp {current.timestamp.isoformat()} in {source}",
                source_name=source,
                context={"timestamp": current.timestamp.isoformat()},
            )
    return series


def analysis_template(category: Category) -> dict[str, Any]:
    """Default analysis sub-objects for a category, keyed as on the wire."""
    model = PAYLOAD_MODELS[category]
    template: dict[str, Any] = {}
    for name in model.ANALYSIS_FIELDS:
        info = model.model_fields[name]
        default = info.get_default(call_default_factory=True)
        key = info.alias or name
        template[key] = default.model_dump(by_alias=True) if isinstance(default, BaseModel) else default
    return template


def validate_category_payload(
    category: Category,
    network_id: str,
    timeframe: str,
    raw: Any,
    clock: Optional[ClockProtocol] = None,
) -> ValidatedCategory:
    """
    Check a raw category payload and convert it to internal types.

    Args:
        category: Category the payload was fetched for
        network_id: Requested network
        timeframe: Requested timeframe
        raw: Payload as returned by the provider
        clock: Used for timestamps the payload omits

    Raises:
        ValidationError: missing required fields or malformed values
    """
    if not isinstance(raw, dict):
        raise ValidationError(
            f"{category.value} payload must be an object, got {type(raw).__name__}",
            category=category.value,
            source_name=network_id,
        )

    model = PAYLOAD_MODELS[category]
    try:
        payload = model.model_validate(raw)
    except PydanticValidationError as e:
        missing, malformed = _describe_errors(e)
        problems = missing + malformed
        raise ValidationError(
            f"{category.value} payload failed validation: {', '.join(problems)}",
            category=category.value,
            missing_fields=missing,
            source_name=network_id,
            original_error=e,
            context={"malformed_fields": malformed},
        ) from e

    now = (clock or get_clock()).now()
    created_at = _utc(payload.created_at) if payload.created_at else now
    updated_at = _utc(payload.updated_at) if payload.updated_at else created_at

    by_alias = _fields_by_alias(model)
    bundle_metric_names = BUNDLE_TYPES[category].METRIC_NAMES
    metrics: dict[str, MetricSnapshot] = {}
    for name in bundle_metric_names:
        raw_snapshot: RawSnapshot = getattr(payload, by_alias[name])
        metrics[name] = MetricSnapshot(
            value=raw_snapshot.value,
            change=raw_snapshot.change,
            change_percent=raw_snapshot.change_percent,
            trend=raw_snapshot.trend,
            timestamp=_utc(raw_snapshot.timestamp) if raw_snapshot.timestamp else updated_at,
        )

    history = {
        name: _to_series(points, f"{category.value}.history.{name}")
        for name, points in payload.history.items()
        if name in bundle_metric_names
    }

    analysis = payload.model_dump(by_alias=True, include=set(model.ANALYSIS_FIELDS))

    return ValidatedCategory(
        category=category,
        id=payload.id,
        network_id=payload.blockchain,
        timeframe=payload.timeframe or timeframe,
        created_at=created_at,
        updated_at=updated_at,
        metrics=metrics,
        analysis=analysis,
        history=history,
    )


_series_adapter = TypeAdapter(list[RawSeriesPoint])


def validate_series(raw_points: Any, source: str = "series") -> list[MetricSeriesPoint]:
    """
    Check a raw history page and return it ascending by timestamp.

    Raises:
        ValidationError: not a list, malformed points, or duplicate timestamps
    """
    if not isinstance(raw_points, list):
        raise ValidationError(
            f"{source} must be a list of points, got {type(raw_points).__name__}",
            source_name=source,
        )

    try:
        points = _series_adapter.validate_python(raw_points)
    except PydanticValidationError as e:
        missing, malformed = _describe_errors(e)
        raise ValidationError(
            f"{source} has invalid points: {', '.join(missing + malformed)}",
            missing_fields=missing,
            source_name=source,
            original_error=e,
            context={"malformed_fields": malformed},
        ) from e

    return _to_series(points, source)

