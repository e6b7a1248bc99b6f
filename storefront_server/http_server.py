"""HTTP proxy in front of the storefront API and the webhook backend."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .config import API_PREFIX, Settings, get_settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront-http-server")

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept, domain-name",
}


def _preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


def _mirror(upstream: httpx.Response) -> Response:
    """Echo the upstream status and body; a body that is not JSON is sent as a JSON string."""
    text = upstream.text
    if not text:
        return Response(status_code=upstream.status_code, headers=CORS_HEADERS)
    try:
        content: Any = json.loads(text)
    except ValueError:
        content = text
    return JSONResponse(content=content, status_code=upstream.status_code, headers=CORS_HEADERS)


def _proxy_error(what: str, error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": f"Failed to proxy {what} request", "message": str(error) or type(error).__name__},
        headers=CORS_HEADERS,
    )


def _query_params(request: Request, drop: tuple[str, ...] = ()) -> dict[str, str]:
    """First value of every non-empty query parameter, minus internal ones."""
    params: dict[str, str] = {}
    for key, value in request.query_params.multi_items():
        if key in drop or not value or key in params:
            continue
        params[key] = value
    return params


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Proxy settings (defaults to the environment)
        transport: Optional httpx transport for the upstream client (used by tests)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        logger.info("Starting storefront proxy...")
        logger.info(f"Storefront upstream: {settings.api_base_url}{API_PREFIX} (domain {settings.domain_name})")
        logger.info(f"Webhook upstream: {settings.webhook_url}")
        if not settings.webhook_auth_key:
            logger.warning("WEBHOOK_AUTH_KEY is not set; webhook requests will be sent without a key")
        app.state.upstream = httpx.AsyncClient(timeout=settings.timeout, transport=transport)

        yield

        logger.info("Shutting down storefront proxy...")
        await app.state.upstream.aclose()

    app = FastAPI(
        title="Storefront Proxy",
        description="Forwards storefront and webhook calls, keeping credentials server side",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "backend": settings.backend.value}

    @app.api_route("/api/{path:path}", methods=ALL_METHODS)
    async def storefront_proxy(path: str, request: Request):
        """Forward a storefront API call, adding the store's domain headers."""
        if request.method == "OPTIONS":
            return _preflight()

        target_url = f"{settings.api_base_url.rstrip('/')}{API_PREFIX}/{path}"
        headers = {
            "Content-Type": request.headers.get("content-type", "application/json"),
            "Accept": "application/json",
            "domain-name": settings.domain_name,
            "X-Zoho-Domain": settings.domain_name,
            "Origin": f"https://{settings.domain_name}",
        }
        body = await request.body()
        try:
            upstream = await request.app.state.upstream.request(
                request.method,
                target_url,
                params=list(request.query_params.multi_items()),
                content=body or None,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Storefront proxy error: {e}", exc_info=True)
            return _proxy_error("storefront", e)

        logger.info(f"{request.method} /{path} -> {upstream.status_code}")
        return _mirror(upstream)

    async def forward_webhook(request: Request, drop: tuple[str, ...] = ()) -> Response:
        if request.method == "OPTIONS":
            return _preflight()

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if settings.webhook_auth_key:
            headers["key"] = settings.webhook_auth_key

        body = None
        if request.method not in ("GET", "HEAD"):
            body = await request.body() or None
        try:
            upstream = await request.app.state.upstream.request(
                request.method,
                settings.webhook_url,
                params=_query_params(request, drop),
                content=body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Webhook proxy error: {e}", exc_info=True)
            return _proxy_error("webhook", e)

        logger.info(f"{request.method} webhook -> {upstream.status_code}")
        return _mirror(upstream)

    @app.api_route("/webhook", methods=ALL_METHODS)
    async def webhook_proxy(request: Request):
        """Forward a webhook call with the auth key injected."""
        return await forward_webhook(request)

    @app.api_route("/webhook/{path:path}", methods=ALL_METHODS)
    async def webhook_path_proxy(path: str, request: Request):
        """Same as /webhook; the internal ``path`` query parameter is not forwarded."""
        return await forward_webhook(request, drop=("path",))

    return app


app = create_app()


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """
    Run the HTTP server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        reload: Enable hot reloading (default: False)
    """
    import uvicorn

    logger.info(f"Starting server on {host}:{port} (reload={'enabled' if reload else 'disabled'})")

    if reload:
        uvicorn.run(
            "storefront_server.http_server:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["storefront_server"],
            log_level="info",
        )
    else:
        uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_http_server(reload=True)
