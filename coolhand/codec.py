"""
Codec de bodies capturados
Decodificação JSON tolerante e serialização segura para o envio ao collector
"""
import json
from datetime import date, datetime
from typing import Any


def decode(raw: Any) -> Any:
    """Tenta interpretar o body como JSON, devolvendo o texto original em caso de falha

    Bytes são decodificados como UTF-8 (com substituição) antes do parse.
    Entradas vazias viram None e tipos que não são texto passam inalterados.
    """
    if raw is None:
        return None

    if isinstance(raw, (bytes, bytearray, memoryview)):
        raw = bytes(raw)
        if not raw:
            return None
        text = raw.decode('utf-8', errors='replace')
    elif isinstance(raw, str):
        if not raw:
            return None
        text = raw
    else:
        return raw

    try:
        return json.loads(text)
    except ValueError:
        return text


def encode(value: Any) -> bytes:
    """Serializa para JSON em UTF-8 sem falhar em bytes ou strings inválidas"""
    text = json.dumps(value, default=_json_default, ensure_ascii=False)
    # Surrogates isolados não são UTF-8 válido
    return text.encode('utf-8', errors='replace')


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).decode('utf-8', errors='replace')
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)
