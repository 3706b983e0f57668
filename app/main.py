from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Response, status

from app.config import Settings, get_settings
from app.models.api import (
    ArtworkUploadRequest,
    AudioResponse,
    BulkQueueRequest,
    ClipListResponse,
    ContentCreateRequest,
    ContentListResponse,
    ContentResponse,
    ContentSummaryResponse,
    ContentUpdateRequest,
    GenerationRequestListResponse,
    GenerationRequestResponse,
    VideoResponse,
)
from app.queue.queue import KafkaQueue, LocalQueue
from app.services.content_service import ContentService
from app.services.queueing import QueueingValidationError
from app.storage.repository import ContentRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="bgm-service")

_repo = ContentRepository()
_service: ContentService | None = None


def get_content_service(settings: Settings = Depends(get_settings)) -> ContentService:
    global _service
    if _service is None:
        service = ContentService(repo=_repo, settings=settings)
        queue = _build_queue(settings, service)
        service.bind_queue(queue)
        _service = service
    return _service


def _build_queue(settings: Settings, service: ContentService):
    if settings.kafka_enabled:
        return KafkaQueue(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_topic,
            group_id=settings.kafka_group_id,
            processor=service.process_job,
        )
    return LocalQueue(processor=service.process_job)


def _not_found(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.post("/contents", response_model=ContentResponse, status_code=status.HTTP_201_CREATED)
def create_content(
    payload: ContentCreateRequest,
    service: ContentService = Depends(get_content_service),
) -> ContentResponse:
    return ContentResponse(content=service.create_content(payload))


@app.get("/contents", response_model=ContentListResponse)
def list_contents(service: ContentService = Depends(get_content_service)) -> ContentListResponse:
    return ContentListResponse(items=service.list_contents())


@app.get("/contents/{content_id}", response_model=ContentSummaryResponse)
def get_content(content_id: UUID, service: ContentService = Depends(get_content_service)) -> ContentSummaryResponse:
    try:
        summary = service.content_summary(content_id)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return ContentSummaryResponse(**summary)


@app.patch("/contents/{content_id}", response_model=ContentResponse)
def update_content(
    content_id: UUID,
    payload: ContentUpdateRequest,
    service: ContentService = Depends(get_content_service),
) -> ContentResponse:
    try:
        content = service.update_content(content_id, payload)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return ContentResponse(content=content)


@app.delete("/contents/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_content(content_id: UUID, service: ContentService = Depends(get_content_service)) -> Response:
    try:
        service.delete_content(content_id)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put("/contents/{content_id}/artwork", response_model=ContentResponse)
def upload_artwork(
    content_id: UUID,
    payload: ArtworkUploadRequest,
    service: ContentService = Depends(get_content_service),
) -> ContentResponse:
    try:
        data = base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid base64 payload") from exc
    try:
        content = service.set_artwork(content_id, payload.filename, data)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ContentResponse(content=content)


@app.post(
    "/contents/{content_id}/generations:queue",
    response_model=GenerationRequestListResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def queue_batch(
    content_id: UUID,
    service: ContentService = Depends(get_content_service),
) -> GenerationRequestListResponse:
    try:
        items = service.queue_batch(content_id)
    except QueueingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ValueError as exc:
        raise _not_found(exc) from exc
    return GenerationRequestListResponse(items=items)


@app.post(
    "/contents/{content_id}/generations:single",
    response_model=GenerationRequestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def queue_single(
    content_id: UUID,
    service: ContentService = Depends(get_content_service),
) -> GenerationRequestResponse:
    try:
        request = service.queue_single(content_id)
    except QueueingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ValueError as exc:
        raise _not_found(exc) from exc
    return GenerationRequestResponse(request=request)


@app.post(
    "/contents/{content_id}/generations:bulk",
    response_model=GenerationRequestListResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def queue_bulk(
    content_id: UUID,
    payload: Optional[BulkQueueRequest] = None,
    service: ContentService = Depends(get_content_service),
) -> GenerationRequestListResponse:
    try:
        items = service.queue_bulk(content_id, payload.count if payload else None)
    except QueueingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ValueError as exc:
        raise _not_found(exc) from exc
    return GenerationRequestListResponse(items=items)


@app.get("/contents/{content_id}/generations", response_model=GenerationRequestListResponse)
def list_generations(
    content_id: UUID,
    service: ContentService = Depends(get_content_service),
) -> GenerationRequestListResponse:
    try:
        items = service.list_requests(content_id)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return GenerationRequestListResponse(items=items)


@app.get("/contents/{content_id}/clips", response_model=ClipListResponse)
def list_clips(content_id: UUID, service: ContentService = Depends(get_content_service)) -> ClipListResponse:
    try:
        items = service.list_clips(content_id)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return ClipListResponse(items=items)


@app.post("/contents/{content_id}/audio", response_model=AudioResponse, status_code=status.HTTP_202_ACCEPTED)
def create_audio(content_id: UUID, service: ContentService = Depends(get_content_service)) -> AudioResponse:
    try:
        audio = service.create_audio(content_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AudioResponse(audio=audio)


@app.get("/audio/{audio_id}", response_model=AudioResponse)
def get_audio(audio_id: UUID, service: ContentService = Depends(get_content_service)) -> AudioResponse:
    try:
        audio = service.get_audio(audio_id)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return AudioResponse(audio=audio)


@app.post("/contents/{content_id}/video", response_model=VideoResponse, status_code=status.HTTP_202_ACCEPTED)
def create_video(content_id: UUID, service: ContentService = Depends(get_content_service)) -> VideoResponse:
    try:
        video = service.create_video(content_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return VideoResponse(video=video)


@app.get("/videos/{video_id}", response_model=VideoResponse)
def get_video(video_id: UUID, service: ContentService = Depends(get_content_service)) -> VideoResponse:
    try:
        video = service.get_video(video_id)
    except ValueError as exc:
        raise _not_found(exc) from exc
    return VideoResponse(video=video)
