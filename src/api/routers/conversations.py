"""Tutoring conversation API endpoints."""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..models.conversation import (
    ConversationSummary,
    FinishConversationRequest,
    LearnerMessageRequest,
    StartConversationRequest,
)
from ..services.conversation_service import (
    ConversationNotFoundError,
    ConversationService,
    is_terminal_event,
)
from ..services.persona_config_service import PersonaConfigService
from ..services.turn_orchestration import ConversationCompletedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["conversations"])

_conversation_service: Optional[ConversationService] = None


def get_conversation_service() -> ConversationService:
    """Dependency injection: process-wide registry of live conversations"""
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService()
    return _conversation_service


def get_persona_service(
    service: ConversationService = Depends(get_conversation_service),
) -> PersonaConfigService:
    """Dependency injection: get persona configuration service instance"""
    return service.persona_service


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


@router.get("/personas")
async def list_personas(service: PersonaConfigService = Depends(get_persona_service)) -> List[Dict[str, Any]]:
    """List configured personas without their prompts"""
    personas = await service.get_personas()
    return [
        {
            "id": persona.id,
            "display_name": persona.display_name,
            "role": persona.role,
            "avatar": persona.avatar,
        }
        for persona in personas
    ]


@router.post("/conversations")
async def start_conversation(
    request: StartConversationRequest,
    service: ConversationService = Depends(get_conversation_service),
):
    """Start a conversation in the requested scenario mode.

    Raises:
        400: Unknown mode or persona selection not valid for the mode
    """
    try:
        orchestrator = await service.start(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return orchestrator.snapshot()


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
):
    """Current transcript and turn state"""
    try:
        return service.get(conversation_id).snapshot()
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.post("/conversations/{conversation_id}/messages")
async def post_learner_message(
    conversation_id: str,
    request: LearnerMessageRequest,
    service: ConversationService = Depends(get_conversation_service),
):
    """Submit a learner utterance; any in-flight generation is pre-empted."""
    try:
        return await service.submit_message(conversation_id, request.text)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except ConversationCompletedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/conversations/{conversation_id}/finish", response_model=ConversationSummary)
async def finish_conversation(
    conversation_id: str,
    request: FinishConversationRequest,
    service: ConversationService = Depends(get_conversation_service),
):
    """Submit the final answer and complete the conversation"""
    try:
        return await service.finish(conversation_id, request.final_answer)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/conversations/{conversation_id}")
async def close_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
):
    """Stop timers and drop the conversation from memory"""
    try:
        await service.close(conversation_id)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"success": True}


@router.get("/conversations/{conversation_id}/events")
async def stream_conversation_events(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
):
    """Stream conversation feed events as Server-Sent Events.

    The first event replays the transcript so far; later events follow the
    orchestrator's feed until the conversation completes or is closed.
    """
    try:
        subscriber_id, queue, messages = service.subscribe(conversation_id)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")

    async def event_generator():
        """Generate SSE data stream from the subscriber queue."""
        try:
            yield _sse({"type": "snapshot", "conversation_id": conversation_id, "messages": messages})
            while True:
                payload = await queue.get()
                yield _sse(payload)
                if is_terminal_event(payload):
                    return
        finally:
            service.unsubscribe(conversation_id, subscriber_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )
