import asyncio
import json
import logging
import time
from http import HTTPStatus
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from .request import Request
from .response import Response, error

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[object]]


class BadRequest(Exception):
    """Raised while parsing; answered with ``status`` and the connection closed."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(message)


class HTTPServer:
    # Values are opaque blobs, so the body limit is configurable
    DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024

    HEADER_TIMEOUT = 5.0

    BODY_TIMEOUT = 30.0

    def __init__(
        self,
        host: str = '0.0.0.0',
        port: int = 8080,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ):
        if max_body_bytes <= 0:
            raise ValueError(f"max_body_bytes must be positive, got {max_body_bytes}")

        self.host = host
        self.port = port
        self.max_body_bytes = max_body_bytes
        self.routes: Dict[Tuple[str, str], Handler] = {}

    def route(self, path: str, methods: Optional[List[str]] = None):
        """Decorator for registering route handlers"""
        methods = methods or ['GET']

        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self.routes[(method.upper(), path)] = handler
            return handler
        return decorator

    async def parse_request(self, reader: asyncio.StreamReader) -> Optional[Request]:
        """
        Read one request from the stream.

        Returns None when the peer closed or went idle. Raises BadRequest
        when the request is malformed or its body exceeds max_body_bytes.
        """
        try:
            request_line = await asyncio.wait_for(reader.readline(), self.HEADER_TIMEOUT)
        except asyncio.TimeoutError:
            return None
        if not request_line:
            return None

        try:
            method, target, version = request_line.decode('latin-1').strip().split(' ', 2)
        except ValueError:
            raise BadRequest(400, "Malformed request line")

        headers = await self._read_headers(reader)
        body = await self._read_body(reader, headers)

        url = urlparse(target)
        return Request(
            method=method.upper(),
            path=url.path,
            headers=headers,
            query_params=parse_qs(url.query, keep_blank_values=True),
            body=body,
            version=version,
        )

    async def _read_headers(self, reader: asyncio.StreamReader) -> Dict[str, str]:
        headers = {}
        while True:
            try:
                line = await asyncio.wait_for(reader.readline(), self.HEADER_TIMEOUT)
            except asyncio.TimeoutError:
                raise BadRequest(400, "Timed out reading headers")
            if line in (b'\r\n', b'\n', b''):
                return headers

            name, sep, value = line.decode('latin-1').partition(':')
            if sep:
                headers[name.strip().lower()] = value.strip()

    async def _read_body(self, reader: asyncio.StreamReader, headers: Dict[str, str]) -> bytes:
        try:
            content_length = int(headers.get('content-length', 0))
        except ValueError:
            raise BadRequest(400, "Invalid Content-Length")

        if content_length <= 0:
            return b''
        if content_length > self.max_body_bytes:
            raise BadRequest(
                413, f"Request body too large: {content_length} > {self.max_body_bytes} bytes"
            )

        try:
            return await asyncio.wait_for(reader.readexactly(content_length), self.BODY_TIMEOUT)
        except (asyncio.TimeoutError, asyncio.IncompleteReadError):
            raise BadRequest(400, "Incomplete request body")

    def build_response(self, response: Response) -> bytes:
        """Build HTTP response bytes"""
        try:
            status_text = HTTPStatus(response.status).phrase
        except ValueError:
            status_text = 'Unknown'

        headers = {'content-type': 'text/plain', **response.headers}
        headers['content-length'] = str(len(response.body))
        headers.setdefault('connection', 'keep-alive')
        headers['server'] = 'KVStoreHttp/1.0'

        head = f"HTTP/1.1 {response.status} {status_text}\r\n" + ''.join(
            f"{key}: {value}\r\n" for key, value in headers.items()
        )
        return head.encode('latin-1') + b'\r\n' + response.body

    async def handle_request(self, request: Request) -> Response:
        """Route request to appropriate handler"""
        handler = self.routes.get((request.method, request.path))

        if handler is None:
            if any(path == request.path for _, path in self.routes):
                return Response(status=405, body=b'Method Not Allowed')
            return Response(status=404, body=b'Route Not Found')

        try:
            return self._coerce(await handler(request))
        except Exception as e:
            logger.error(f"Handler error on {request.method} {request.path}: {e!r}")
            return Response(status=500, body=b'Internal Server Error')

    @staticmethod
    def _coerce(result: object) -> Response:
        if isinstance(result, Response):
            return result
        if isinstance(result, dict):
            return Response(
                headers={'content-type': 'application/json'},
                body=json.dumps(result).encode(),
            )
        if isinstance(result, str):
            return Response(body=result.encode())
        if isinstance(result, bytes):
            return Response(body=result)
        raise TypeError(f"Cannot turn {type(result).__name__} into an HTTP response")

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle a single client connection with keep-alive"""
        peer = writer.get_extra_info('peername')

        try:
            while True:
                try:
                    request = await self.parse_request(reader)
                except BadRequest as e:
                    logger.debug(f"Rejected request from {peer}: {e}")
                    response = error(e.status, str(e))
                    response.headers['connection'] = 'close'
                    writer.write(self.build_response(response))
                    await writer.drain()
                    break

                if request is None:
                    break

                start_time = time.perf_counter()
                logger.debug(f"--> {request.method} {request.path}")

                response = await self.handle_request(request)
                writer.write(self.build_response(response))
                await writer.drain()

                elapsed_ms = (time.perf_counter() - start_time) * 1000
                logger.debug(
                    f"<-- {response.status} - {len(response.body)} bytes - {elapsed_ms:.2f}ms"
                )

                if request.headers.get('connection', '').lower() == 'close':
                    break

        except ConnectionResetError:
            pass
        except Exception as e:
            logger.error(f"Connection error from {peer}: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                # Peer already went away
                pass

    async def listen(self) -> asyncio.AbstractServer:
        """Bind the listening socket without serving forever"""
        server = await asyncio.start_server(self.handle_client, self.host, self.port)
        addr = server.sockets[0].getsockname()
        logger.info(f'KV Store HTTP Server listening on http://{addr[0]}:{addr[1]}')
        return server

    async def start(self):
        """Start the HTTP server"""
        server = await self.listen()

        try:
            async with server:
                await server.serve_forever()
        except asyncio.CancelledError:
            logger.info("Server shutdown requested")
        finally:
            await self.shutdown(server)

    async def shutdown(self, server):
        """Gracefully shutdown the server"""
        logger.info("Shutting down server...")
        server.close()
        await server.wait_closed()
        logger.info("Server shutdown complete")
