import base64
import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Response:
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self, payload: dict[str, Any]) -> 'Response':
        headers = dict(self.headers)
        headers['content-type'] = 'application/json'

        return Response(
            status=self.status,
            headers=headers,
            body=json.dumps(payload).encode()
        )

    def text(self, content: str) -> 'Response':
        headers = dict(self.headers)
        headers['content-type'] = 'text/plain; charset=utf-8'

        return Response(status=self.status, headers=headers, body=content.encode())


def response(status_code: int = 200, headers: dict[str, str] | None = None) -> Response:
    return Response(
        status=status_code,
        headers={} if headers is None else headers
    )


def error(status_code: int, message: str) -> Response:
    return response(status_code).json({"error": message})


def key_text(key: bytes) -> str:
    """Keys travel as text; undecodable bytes are escaped."""
    return key.decode('utf-8', errors='backslashreplace')


def value_b64(value: bytes) -> str:
    """Values are opaque and travel base64 encoded."""
    return base64.b64encode(value).decode('ascii')
