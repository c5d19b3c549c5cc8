from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, Request, get
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.logging.config import LoggingConfig
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .proxy import PdfStreamProxy

if TYPE_CHECKING:
    from litestar.response import Response
    from litestar.types import Receive, Scope, Send


prometheus_config = PrometheusConfig(
    app_name="pdf_stream_proxy", prefix="pdf_stream_proxy"
)

STREAM_MOUNT = "/pdf-stream"


def _book_id_from_path(path: str) -> str:
    return path.removeprefix(STREAM_MOUNT).strip("/")


def create_app(proxy: PdfStreamProxy | None = None) -> Litestar:
    """Create the PDF streaming proxy ASGI application."""
    if proxy is None:
        proxy = PdfStreamProxy.from_env()

    async def send_response(
        response: Response, request: Request, scope: Scope, receive: Receive, send: Send
    ) -> None:
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/pdf-proxy", copy_scope=True)
    async def pdf_proxy_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        response = await proxy.handle(request)
        await send_response(response, request, scope, receive, send)

    @asgi(path=STREAM_MOUNT, is_mount=True, copy_scope=True)
    async def pdf_stream_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        book_id = _book_id_from_path(scope.get("path", "/"))
        response = await proxy.handle(request, book_id=book_id)
        await send_response(response, request, scope, receive, send)

    async def startup(app: Litestar) -> None:
        await proxy.startup()

    async def shutdown(app: Litestar) -> None:
        await proxy.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET", "HEAD", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "Accept-Ranges",
            "Content-Length",
            "Content-Range",
            "ETag",
            "X-Cache-Stats",
            "X-Response-Time",
        ],
    )

    logging_config = LoggingConfig(
        loggers={
            "pdf_stream_proxy": {
                "level": proxy.settings.log_level,
                "propagate": True,
            }
        },
    )

    return Litestar(
        route_handlers=[
            health,
            pdf_proxy_handler,
            pdf_stream_handler,
            PrometheusController,
        ],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        logging_config=logging_config,
        middleware=[prometheus_config.middleware],
    )


app = create_app()
