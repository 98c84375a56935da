from __future__ import annotations
from fastapi import APIRouter, Depends, Request

from weighing import commands
from weighing.responses import parse_bool, to_response
from weighing.telemetry.pipeline import TelemetryPipeline

router = APIRouter(prefix="/telemetry", tags=["telemetry"])

def get_pipeline(request: Request) -> TelemetryPipeline:
    return request.app.state.telemetry

@router.post("")
def publish(payload: dict, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    result = commands.publish_telemetry(
        pipeline,
        scale=payload.get("scale"),
        weight_kg=payload.get("weight_kg"),
        stable=parse_bool(payload.get("stable")),
    )
    return to_response(result)

@router.get("/{scale}/latest")
def latest(scale: str, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    return to_response(commands.get_latest_telemetry(pipeline, scale=scale))
