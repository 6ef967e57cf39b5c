#!/usr/bin/env python3
"""
Exemplo básico de uso do Coolhand.

Este exemplo demonstra como:
1. Configurar o SDK (em debug_mode os payloads são apenas logados)
2. Fazer chamadas a um provedor com requests e httpx
3. Encaminhar um webhook manualmente
4. Enviar feedback sobre uma resposta
"""

import os
import logging

import httpx
import requests

import coolhand

# Configurar logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def chat_payload(prompt: str, stream: bool = False):
    return {
        "model": "gpt-4o-mini",
        "messages": [{"role": "user", "content": prompt}],
        "stream": stream,
    }


def call_with_requests(api_key: str):
    """Chamada bufferizada via requests."""
    response = requests.post(
        OPENAI_URL,
        json=chat_payload("Diga olá em uma palavra."),
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=30
    )
    logger.info("requests: status %s", response.status_code)


def call_with_httpx_stream(api_key: str):
    """Chamada de streaming via httpx; o registro sai quando o stream termina."""
    with httpx.Client(timeout=30) as client:
        with client.stream(
            "POST",
            OPENAI_URL,
            json=chat_payload("Conte até três.", stream=True),
            headers={"Authorization": f"Bearer {api_key}"}
        ) as response:
            for line in response.iter_lines():
                if line.startswith("data: ") and line != "data: [DONE]":
                    logger.info("httpx: %s", line[:80])


def main():
    coolhand.configure(
        api_key=os.getenv("COOLHAND_API_KEY", "demo-key"),
        debug_mode=True,
        environment="development",
        log_format="console"
    )

    openai_key = os.getenv("OPENAI_API_KEY")
    if openai_key:
        call_with_requests(openai_key)
        call_with_httpx_stream(openai_key)
    else:
        logger.info("OPENAI_API_KEY não definido, pulando chamadas ao provedor")

    coolhand.forward_webhook(
        {"conversation_id": "conv-1", "transcript": "Olá!", "full_audio": "UklGRg=="},
        "elevenlabs",
        event_type="post_call_transcription",
        headers={"Content-Type": "application/json", "X-Webhook-Secret": "não vai para o log"},
        conversation_id="conv-1"
    )

    coolhand.create_feedback(
        llm_request_log_id=123,
        like=True,
        explanation="Resposta correta e curta"
    )

    logger.info("Estatísticas: %s", coolhand.get_monitor().get_stats())


if __name__ == "__main__":
    main()
