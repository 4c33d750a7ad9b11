"""Administrative triggers and status for the aggregation pipeline."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from aggregation.intervals import Level
from aggregation.pipeline import WindAggregationPipeline
from api.dependencies import get_pipeline

router = APIRouter(prefix="/api/v1/wind/aggregation")


def _report(report) -> dict:
    data = asdict(report)
    if "stations" in data:
        data["stations"] = sorted(data["stations"])
    if "level" in data:
        data["level"] = report.level.value
    return data


@router.post("/flush")
def force_flush(pipeline: WindAggregationPipeline = Depends(get_pipeline)):
    """Flush every open 1-minute bucket now, including the current minute."""
    return _report(pipeline.force_flush())


@router.post("/{level}/trigger")
def force_aggregate(level: Level, pipeline: WindAggregationPipeline = Depends(get_pipeline)):
    """Aggregate the last completed 10-minute or hourly interval for every station."""
    if level is Level.ONE_MINUTE:
        raise HTTPException(status_code=400, detail="Use /flush for 1-minute data")
    return _report(pipeline.force_aggregate(level))


@router.post("/catchup")
def force_catchup(pipeline: WindAggregationPipeline = Depends(get_pipeline)):
    """Fill in every elapsed but unaggregated interval within the catch-up horizon."""
    return {"reports": [_report(r) for r in pipeline.force_catchup()]}


@router.get("/status")
async def status(pipeline: WindAggregationPipeline = Depends(get_pipeline)):
    return pipeline.status()
