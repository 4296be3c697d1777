import asyncio
import functools
import logging
import os

from http_server.request import Request
from http_server.response import Response, error, key_text, response, value_b64
from http_server.server import HTTPServer
from kvstore import AsyncStore, ClosedError, NotFoundError, format_dump, new_store

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger()


async def main():
    engine = os.environ.get("KV_ENGINE", "btree")
    path = os.environ.get("KV_PATH", os.path.join("data", "store.db"))
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    server = HTTPServer(
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
    )
    async with AsyncStore(new_store(engine, path)) as store:
        await register_routes(server, store)
        logger.debug(f"Registered routes: {sorted(server.routes)}")
        await server.start()


def store_errors(handler):
    """Translate store errors raised by a handler into HTTP responses."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> Response:
        try:
            return await handler(request)
        except NotFoundError as e:
            return error(404, str(e))
        except ClosedError as e:
            return error(503, str(e))
        except ValueError as e:
            return error(400, str(e))

    return wrapper


def missing_error(request: Request, *fields: str) -> Response | None:
    missing = request.missing(*fields)
    if missing:
        names = ", ".join(f"'{f}'" for f in missing)
        return error(400, f"Missing {names} in request")
    return None


async def register_routes(server: HTTPServer, store: AsyncStore):

    @server.route('/keys', ['PUT'])
    @store_errors
    async def put(request: Request) -> Response:
        invalid = missing_error(request, "namespace", "key", "value")
        if invalid:
            return invalid

        await store.put(
            request.get_text("namespace"), request.get_bytes("key"), request.get_b64("value")
        )
        return response(status_code=200).json({"success": True})

    @server.route('/keys', ['GET'])
    @store_errors
    async def get(request: Request) -> Response:
        invalid = missing_error(request, "namespace", "key")
        if invalid:
            return invalid

        namespace = request.get_text("namespace")
        key = request.get_bytes("key")
        value = await store.get(namespace, key)
        return response(status_code=200).json(
            {"namespace": namespace, "key": key_text(key), "value": value_b64(value)}
        )

    @server.route('/keys', ['DELETE'])
    @store_errors
    async def delete(request: Request) -> Response:
        invalid = missing_error(request, "namespace", "key")
        if invalid:
            return invalid

        await store.delete(request.get_text("namespace"), request.get_bytes("key"))
        return response(status_code=200).json({"success": True})

    @server.route('/keys/list', ['GET'])
    @store_errors
    async def list_keys(request: Request) -> Response:
        invalid = missing_error(request, "namespace")
        if invalid:
            return invalid

        namespace = request.get_text("namespace")
        if request.has("prefix"):
            keys = await store.keys_by_prefix(namespace, request.get_bytes("prefix"))
        else:
            keys = await store.list_keys(namespace)
        return response(status_code=200).json(
            {"namespace": namespace, "keys": [key_text(k) for k in keys]}
        )

    @server.route('/namespaces', ['GET'])
    @store_errors
    async def namespaces(request: Request) -> Response:
        return response(status_code=200).json({"namespaces": await store.namespaces()})

    @server.route('/dump', ['GET'])
    @store_errors
    async def dump(request: Request) -> Response:
        entries = await store.dump()
        if request.get("format") == "text":
            return response(status_code=200).text("\n".join(format_dump(entries)) + "\n")

        return response(status_code=200).json({
            "entries": [
                {"namespace": e.namespace, "key": key_text(e.key), "value": value_b64(e.value)}
                for e in entries
            ]
        })


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
