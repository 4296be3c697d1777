import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any


@dataclass
class Request:
    method: str
    path: str
    headers: dict[str, str]
    query_params: dict[str, list]
    body: bytes
    version: str

    def __post_init__(self):
        try:
            payload = json.loads(self.body) if self.body else None
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = None
        self._dict = payload if isinstance(payload, dict) else None

    def has(self, field: str) -> bool:
        if not field:
            raise ValueError("Field cannot be empty")

        if field in self.query_params:
            return True

        return self._dict is not None and field in self._dict

    def get(self, field: str, default: Any = None) -> Any:
        """Look a field up in the query string first, then in the JSON body."""
        if not field:
            raise ValueError("Field cannot be empty")

        if field in self.query_params and self.query_params[field]:
            return self.query_params[field][0]

        if self._dict is not None and field in self._dict:
            return self._dict[field]

        return default

    def missing(self, *fields: str) -> list[str]:
        """Return the names of ``fields`` absent from the request."""
        return [f for f in fields if not self.has(f)]

    def get_text(self, field: str) -> str:
        value = self.get(field, "")
        if not isinstance(value, str):
            raise ValueError(f"'{field}' must be a string")
        return value

    def get_bytes(self, field: str) -> bytes:
        """Return a text field encoded as UTF-8 (keys, prefixes)."""
        return self.get_text(field).encode("utf-8")

    def get_b64(self, field: str) -> bytes:
        """Return a base64 encoded field decoded to raw bytes (values)."""
        value = self.get(field)
        if not isinstance(value, str):
            raise ValueError(f"'{field}' must be a base64 string")
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"'{field}' is not valid base64: {e}") from e
