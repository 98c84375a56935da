"""Scale telemetry ingestion.

Readings arrive from the broker (see ``subscriber``) or through the explicit
push endpoint, are normalised to grams and kept as the latest snapshot per
scale. Nothing here books weight against a batch: an operator reads the
latest sample and submits it as a box entry.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from shopfloor.core.errors import NotFoundError, TransientIngestionError, ValidationError
from weighing.telemetry.cache import SnapshotCache
from weighing.units import KILOGRAM, NormalizedReading, parse_reading

LOGGER = logging.getLogger(__name__)

DEFAULT_SCALE = os.getenv("DEFAULT_SCALE", "TBG01")
MQTT_WEIGHT_TOPIC = os.getenv("MQTT_WEIGHT_TOPIC", "scales/+/weight")

_SCALE_FIELDS = ("scale", "scale_id", "timbangan_name")


def cache_key(scale: str) -> str:
    return f"scale:{scale}"


def normalize_scale_id(scale: str | None) -> str:
    value = (scale or "").strip().upper()
    if not value:
        raise ValidationError("scale id is required")
    return value


@dataclass(frozen=True)
class TelemetrySample:
    scale: str
    weight_grams: Decimal
    raw_value: Decimal
    raw_unit: str
    stable: bool
    received_at: datetime

    @property
    def unit(self) -> str:
        return "g"

    def to_snapshot(self) -> dict:
        return {
            "scale": self.scale,
            "weight": str(self.weight_grams),
            "raw_value": str(self.raw_value),
            "raw_unit": self.raw_unit,
            "unit": self.unit,
            "timestamp": self.received_at.isoformat(),
            "stable": self.stable,
        }

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "TelemetrySample":
        return cls(
            scale=data["scale"],
            weight_grams=Decimal(data["weight"]),
            raw_value=Decimal(data["raw_value"]),
            raw_unit=data["raw_unit"],
            stable=bool(data["stable"]),
            received_at=datetime.fromisoformat(data["timestamp"]),
        )

    def to_dict(self) -> dict:
        out = self.to_snapshot()
        out["weight"] = self.weight_grams
        if self.raw_unit == KILOGRAM:
            out["weight_kg"] = self.raw_value
        return out


class TelemetryPipeline:
    """Latest-reading cache fed by scale messages."""

    def __init__(
        self,
        cache: Optional[SnapshotCache] = None,
        *,
        topic_filter: str = MQTT_WEIGHT_TOPIC,
        default_scale: str = DEFAULT_SCALE,
    ) -> None:
        self._cache = cache or SnapshotCache()
        self._topic_filter = topic_filter
        self._default_scale = default_scale.upper()

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    def publish(self, scale: str, weight_kg: Any, stable: bool = True) -> TelemetrySample:
        """Store a reading given in kilograms.

        Raises:
            ValidationError: missing scale id or a non-numeric / non-positive weight.
        """
        scale_id = normalize_scale_id(scale)
        if isinstance(weight_kg, bool) or weight_kg is None:
            raise ValidationError("weight_kg must be a number", scale=scale_id)
        try:
            reading = parse_reading({"weight": weight_kg, "unit": KILOGRAM})
        except TransientIngestionError as exc:
            raise ValidationError(exc.message, scale=scale_id) from exc
        return self._store(scale_id, reading, bool(stable))

    def ingest(self, topic: str, payload: Any) -> Optional[TelemetrySample]:
        """Handle one broker message. Malformed payloads are logged and dropped."""
        try:
            reading = parse_reading(payload)
            record = _as_record(payload)
            scale_id = self._resolve_scale(topic, record)
            stable = _stable_flag(record)
        except (TransientIngestionError, ValidationError) as exc:
            LOGGER.warning("Dropped telemetry on %s: %s", topic, exc.message)
            return None
        return self._store(scale_id, reading, stable)

    def get_latest(self, scale: str) -> TelemetrySample:
        """Return the current sample for a scale.

        Raises:
            NotFoundError: nothing received for this scale within the TTL.
        """
        scale_id = normalize_scale_id(scale)
        raw = self._cache.get(cache_key(scale_id))
        if raw is None:
            raise NotFoundError(f"No current weight data for {scale_id}", scale=scale_id)
        return TelemetrySample.from_snapshot(json.loads(raw))

    def scale_from_topic(self, topic: str) -> Optional[str]:
        """Pick the topic level that sits under a ``+`` wildcard in the subscription filter."""
        filter_levels = self._topic_filter.split("/")
        topic_levels = (topic or "").split("/")
        for index, level in enumerate(filter_levels):
            if level == "+" and index < len(topic_levels) and topic_levels[index]:
                return topic_levels[index]
        return None

    def _resolve_scale(self, topic: str, record: Optional[Mapping]) -> str:
        if record is not None:
            for field in _SCALE_FIELDS:
                if record.get(field):
                    return normalize_scale_id(str(record[field]))
        from_topic = self.scale_from_topic(topic)
        if from_topic:
            return normalize_scale_id(from_topic)
        return self._default_scale

    def _store(self, scale_id: str, reading: NormalizedReading, stable: bool) -> TelemetrySample:
        sample = TelemetrySample(
            scale=scale_id,
            weight_grams=reading.grams,
            raw_value=reading.value,
            raw_unit=reading.unit,
            stable=stable,
            received_at=self._cache.now(),
        )
        self._cache.setex(cache_key(scale_id), json.dumps(sample.to_snapshot()))
        LOGGER.debug("Telemetry %s = %s g (stable=%s)", scale_id, sample.weight_grams, stable)
        return sample


def _as_record(payload: Any) -> Optional[Mapping]:
    if isinstance(payload, Mapping):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except ValueError:
            return None
        return data if isinstance(data, Mapping) else None
    return None


def _stable_flag(record: Optional[Mapping]) -> bool:
    if record is None or "stable" not in record:
        return True
    value = record["stable"]
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "n", "")
    return bool(value)
