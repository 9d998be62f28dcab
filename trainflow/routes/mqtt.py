"""Status, last-value, spectrum and command endpoints for the MQTT-fed source."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import (
    CommandResponse,
    FftResponse,
    LastValueResponse,
    LastValuesResponse,
    MqttStatusResponse,
    PublishRequest,
    SubscribeRequest,
    TriggerTrainRequest,
)
from ..commands import PublishResult

if TYPE_CHECKING:
    from ..app import RuntimeState


def _command_response_or_503(result: PublishResult, ok_message: str) -> CommandResponse:
    if not result.ok:
        raise HTTPException(status_code=503, detail=result.reason or "not connected")
    return {"success": True, "message": ok_message}


def create_mqtt_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter(prefix="/api/mqtt")

    @router.get("/status", response_model=MqttStatusResponse)
    async def get_status() -> MqttStatusResponse:
        return {
            "connected": state.connected,
            "esp32Status": state.liveness.status(),
            "lastActivityAgeS": state.liveness.last_activity_age_s(),
            "observers": len(state.hub),
            "ingest": state.ingest.stats(),
        }

    @router.get("/data", response_model=LastValuesResponse)
    async def get_data() -> LastValuesResponse:
        train_state = state.last_values.train_state
        return {
            "success": True,
            "data": {
                topic: entry.as_dict() for topic, entry in state.last_values.snapshot().items()
            },
            "trainState": train_state.as_dict() if train_state is not None else None,
        }

    @router.get("/data/{topic:path}", response_model=LastValueResponse)
    async def get_topic_value(topic: str) -> LastValueResponse:
        entry = state.last_values.get(topic)
        if entry is None:
            raise HTTPException(status_code=404, detail="No value for topic")
        return entry.as_dict()

    @router.get("/fft", response_model=FftResponse)
    async def get_fft() -> FftResponse:
        results = await asyncio.to_thread(state.analyzer.analyze_all)
        data = {
            f"sensor{sensor_id}": (result.as_dict() if result is not None else None)
            for sensor_id, result in results.items()
        }
        return {
            "success": any(result is not None for result in results.values()),
            "data": data,
        }

    @router.post("/publish", response_model=CommandResponse)
    async def publish(req: PublishRequest) -> CommandResponse:
        result = state.publisher.publish(req.topic, req.message)
        return _command_response_or_503(result, f"Message published to {req.topic}")

    @router.post("/subscribe", response_model=CommandResponse)
    async def subscribe(req: SubscribeRequest) -> CommandResponse:
        result = state.publisher.subscribe(req.topic)
        return _command_response_or_503(result, f"Subscribed to {req.topic}")

    @router.post("/trigger-train", response_model=CommandResponse)
    async def trigger_train(req: TriggerTrainRequest) -> CommandResponse:
        result = state.publisher.trigger_train(req.direction)
        return _command_response_or_503(result, "Train trigger sent")

    return router
