"""
JSON-кодек конвертов запроса и ответа.

Обе стороны одного развертывания должны использовать один и тот же кодек;
побайтовая совместимость с другими реализациями не требуется.
"""
import json
from typing import Any, Dict, Optional, Union

from callback_rpc.domain.exceptions import ProtocolError
from callback_rpc.domain.value_objects import CountRequest, CountResponse

RawMessage = Union[bytes, bytearray, str, Dict[str, Any]]


def encode_message(envelope: Union[CountRequest, CountResponse]) -> bytes:
    return json.dumps(envelope.to_dict(), separators=(",", ":")).encode("utf-8")


def _load(raw: RawMessage) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw

    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
        raise ProtocolError(f"Message is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Message must be a JSON object, got {type(data).__name__}")
    return data


def decode_request(raw: RawMessage) -> CountRequest:
    data = _load(raw)
    try:
        return CountRequest.from_dict(data)
    except (KeyError, ValueError, TypeError) as e:
        raise ProtocolError(f"Malformed request envelope: {e}") from e


def decode_response(raw: RawMessage) -> CountResponse:
    data = _load(raw)
    try:
        return CountResponse.from_dict(data)
    except (ValueError, TypeError) as e:
        raise ProtocolError(f"Malformed response envelope: {e}") from e


def extract_reply_to(raw: RawMessage) -> Optional[str]:
    """ Достать очередь ответа из запроса, который не удалось разобрать целиком """
    try:
        data = _load(raw)
    except ProtocolError:
        return None

    reply_to = data.get('callback')
    return reply_to if isinstance(reply_to, str) and reply_to else None
