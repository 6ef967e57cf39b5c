"""
Endpoint HTTP para webhooks de lotes de provedores
"""
import json
from typing import Callable, Optional
import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from .batch import OpenAIBatchProcessor, OPENAI_BATCH_EVENTS
from .validator import WebhookValidator

logger = structlog.get_logger(__name__)


def create_webhook_router(
    validator: Optional[WebhookValidator] = None,
    processor_factory: Optional[Callable[[], OpenAIBatchProcessor]] = None,
    prefix: str = "/webhooks"
) -> APIRouter:
    """Cria o router com POST {prefix}/openai

    O processador de lotes só é construído no primeiro evento batch.*
    recebido; os demais tipos de evento são confirmados e ignorados.
    """
    router = APIRouter(prefix=prefix)
    validator = validator or WebhookValidator()
    processor_factory = processor_factory or OpenAIBatchProcessor
    processors = []

    def get_processor() -> OpenAIBatchProcessor:
        if not processors:
            processors.append(processor_factory())
        return processors[0]

    @router.post("/openai")
    async def openai_webhook(request: Request, background_tasks: BackgroundTasks):
        """Recebe eventos de webhook da OpenAI"""
        body = await request.body()

        result = validator.validate(body, request.headers)
        if not result.valid:
            logger.info("Validação do webhook falhou", error=result.error_message)
            raise HTTPException(status_code=401, detail=result.error_message)

        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        event_type = payload.get('type')
        if event_type in OPENAI_BATCH_EVENTS:
            background_tasks.add_task(get_processor().process, payload.get('data') or {})
            return {"status": "accepted", "event_type": event_type}

        logger.info("Evento de webhook não tratado", event_type=event_type)
        return {"status": "ignored", "event_type": event_type}

    return router
