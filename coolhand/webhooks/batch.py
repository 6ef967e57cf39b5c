"""
Processamento de resultados de lotes (batch) de provedores
Cada par request/response de um lote vira um registro como se tivesse sido interceptado
"""
import json
import os
import re
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Union
import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..context import CorrelationStore, default_store
from ..delivery import CollectorClient
from ..records import RecordBuilder

logger = structlog.get_logger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"

OPENAI_BATCH_EVENTS = ("batch.completed", "batch.failed", "batch.expired", "batch.cancelled")
OPENAI_FAILED_STATUSES = ("failed", "expired", "cancelled")
OPENAI_PENDING_STATUSES = ("in_progress", "validating", "finalizing")

VERTEX_PENDING_STATES = ("JOB_STATE_PENDING", "JOB_STATE_RUNNING", "JOB_STATE_QUEUED")

_FRACTION_PATTERN = re.compile(r'\.(\d{6})\d+')


def parse_timestamp(value: Union[int, float, str, datetime, None]) -> Optional[datetime]:
    """Epoch em segundos ou ISO 8601 (aceita 'Z' e frações com nanossegundos)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text), tz=timezone.utc)

    text = _FRACTION_PATTERN.sub(r'.\1', text.replace('Z', '+00:00'))
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_jsonl(content: Union[str, bytes, List[Any]]) -> List[Dict[str, Any]]:
    """Uma linha JSON por item; listas já decodificadas passam direto"""
    if isinstance(content, list):
        return content
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='replace')

    items = []
    for line in content.splitlines():
        line = line.strip()
        if line:
            items.append(json.loads(line))
    return items


class OpenAIBatchProcessor:
    """Processa eventos batch.* de webhooks da OpenAI"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = OPENAI_API_BASE,
        http_client: Optional[httpx.Client] = None,
        collector: Optional[CollectorClient] = None,
        builder: Optional[RecordBuilder] = None,
        store: Optional[CorrelationStore] = None
    ):
        self.api_key = api_key or os.getenv('OPENAI_API_KEY')
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client or httpx.Client(timeout=httpx.Timeout(60))
        self.store = store or default_store
        self.collector = collector or CollectorClient(store=self.store)
        self.builder = builder or RecordBuilder()

        self.stats = {
            'batches_processed': 0,
            'records_sent': 0,
            'records_failed': 0
        }

    def process(self, event_data: Dict[str, Any]) -> int:
        """Despacha pelo status do lote; devolve quantos registros foram enviados"""
        logger.info("Processando lote OpenAI", batch_id=event_data.get('id'))

        try:
            batch_info = self.retrieve_batch(event_data['id'])
            status = batch_info.get('status')

            if status == "completed":
                return self._process_completed(batch_info)

            if status in OPENAI_FAILED_STATUSES:
                logger.error("Lote OpenAI falhou", batch_id=batch_info.get('id'), status=status, errors=batch_info.get('errors'))
            elif status in OPENAI_PENDING_STATUSES:
                logger.info("Lote OpenAI ainda em processamento", batch_id=batch_info.get('id'), status=status)
            else:
                logger.warning("Status de lote desconhecido", batch_id=batch_info.get('id'), status=status)

        except Exception as e:
            logger.error("Erro ao processar resultados do lote OpenAI", batch_id=event_data.get('id'), error=str(e))

        return 0

    def retrieve_batch(self, batch_id: str) -> Dict[str, Any]:
        return self._get(f"/batches/{batch_id}").json()

    def download_file(self, file_id: str) -> List[Dict[str, Any]]:
        """Baixa um arquivo JSONL de entrada ou saída do lote"""
        try:
            return parse_jsonl(self._get(f"/files/{file_id}/content").text)
        except json.JSONDecodeError as e:
            logger.error("Erro ao interpretar resultados do lote", file_id=file_id, error=str(e))
            return []
        except httpx.HTTPError as e:
            logger.error("Erro ao baixar resultados do lote", file_id=file_id, error=str(e))
            return []

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError)
    )
    def _get(self, path: str) -> httpx.Response:
        # Downloads do próprio processador não devem virar registros
        with self.store.claim():
            response = self.http_client.get(
                f"{self.base_url}{path}",
                headers={'Authorization': f"Bearer {self.api_key or ''}"}
            )
        response.raise_for_status()
        return response

    def _process_completed(self, batch_info: Dict[str, Any]) -> int:
        input_file_id = batch_info.get('input_file_id')
        output_file_id = batch_info.get('output_file_id')
        if not input_file_id or not output_file_id:
            return 0

        request_items = {item.get('custom_id'): item for item in self.download_file(input_file_id)}
        response_items = self.download_file(output_file_id)

        start_time = parse_timestamp(batch_info.get('in_progress_at'))
        end_time = parse_timestamp(batch_info.get('completed_at'))

        sent = 0
        for response_item in response_items:
            request_item = request_items.get(response_item.get('custom_id'))
            if request_item is None:
                continue

            try:
                response = response_item.get('response') or {}
                error = response_item.get('error')
                status_code = response.get('status_code')
                if status_code is None:
                    # Item sem resposta HTTP
                    status_code = 500 if error else 200
                response_body = response.get('body')
                if response_body is None and error:
                    response_body = {'error': error}

                call = self.builder.from_batch_item(
                    method=request_item.get('method'),
                    url=request_item.get('url'),
                    request_body=request_item.get('body'),
                    response_body=response_body,
                    status_code=status_code,
                    start_time=start_time,
                    end_time=end_time,
                    call_id=response.get('request_id')
                )
                if self.collector.send_request_log(call) is not None:
                    sent += 1
                    self.stats['records_sent'] += 1
                else:
                    self.stats['records_failed'] += 1
            except Exception as e:
                self.stats['records_failed'] += 1
                logger.error("Erro ao enviar registro do lote", custom_id=response_item.get('custom_id'), error=str(e))

        self.stats['batches_processed'] += 1
        logger.info("Lote OpenAI processado", batch_id=batch_info.get('id'), records=sent)
        return sent


class VertexBatchProcessor:
    """Processa resultados de jobs de predição em lote do Vertex AI"""

    def __init__(
        self,
        batch_info: Dict[str, Any],
        collector: Optional[CollectorClient] = None,
        builder: Optional[RecordBuilder] = None
    ):
        self.batch_info = batch_info
        self.collector = collector or CollectorClient()
        self.builder = builder or RecordBuilder()

    def process(self, batch_results: List[Dict[str, Any]]) -> int:
        state = self.batch_info.get('state')
        logger.info("Processando lote Vertex", batch=self.batch_info.get('displayName'), state=state)

        try:
            if state == "JOB_STATE_SUCCEEDED":
                return sum(1 for item in batch_results if self._process_item(item))

            if state == "JOB_STATE_FAILED":
                error = self.batch_info.get('error') or {}
                logger.error("Lote Vertex falhou", batch=self.batch_info.get('displayName'), error=error.get('message'))
            elif state in VERTEX_PENDING_STATES:
                logger.info("Lote Vertex ainda em processamento", batch=self.batch_info.get('displayName'), state=state)
            else:
                logger.warning("Status de lote desconhecido", batch=self.batch_info.get('displayName'), state=state)

        except Exception as e:
            logger.error("Erro ao processar resultados do lote Vertex", batch=self.batch_info.get('displayName'), error=str(e))

        return 0

    def _process_item(self, batch_item: Dict[str, Any]) -> bool:
        try:
            call = self.builder.from_batch_item(
                method="POST",
                url=self.batch_info.get('name'),
                request_body=batch_item.get('request'),
                response_body=batch_item.get('response'),
                status_code=200,
                start_time=parse_timestamp(self.batch_info.get('startTime')),
                end_time=parse_timestamp(self.batch_info.get('endTime'))
            )
            return self.collector.send_request_log(call) is not None
        except Exception as e:
            logger.error("Erro ao enviar registro do lote", batch=self.batch_info.get('displayName'), error=str(e))
            return False
