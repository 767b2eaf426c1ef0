"""
Middleware para extrair o contexto propagado, abrir o span SERVER e devolver
o X-Trace-ID na resposta.

O BaseHTTPMiddleware executa o endpoint em outra task; como o contexto nunca é
herdado implicitamente, o contexto da requisição fica em
``request.state.trace_context`` (ROOT_CONTEXT em rotas excluídas) e o
endpoint o anexa explicitamente:

    @app.get("/items")
    async def items(request: Request):
        with use_context(request.state.trace_context):
            ...
"""
import time
from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from tracecore.infrastructure.tracing.context import ROOT_CONTEXT, attach, detach
from tracecore.infrastructure.tracing.events import (
    log_request_failed,
    log_request_received,
    log_response_sent,
)
from tracecore.infrastructure.tracing.propagation import TraceContextPropagator, get_global_propagator
from tracecore.infrastructure.tracing.span import SpanKind, StatusCode
from tracecore.infrastructure.tracing.tracer import Tracer, get_tracer, set_span_in_context

TRACE_ID_HEADER = "X-Trace-ID"


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Middleware que:
    1. Extrai traceparent/baggage dos headers (ou inicia um trace novo)
    2. Cria um span SERVER filho do span remoto
    3. Loga request received e response sent
    4. Adiciona X-Trace-ID no header da resposta
    """

    DEFAULT_EXCLUDED_PATHS = frozenset({"/health", "/api/health"})

    def __init__(
        self,
        app,
        tracer: Optional[Tracer] = None,
        propagator: Optional[TraceContextPropagator] = None,
        excluded_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.tracer = tracer
        self.propagator = propagator
        self.excluded_paths = (
            frozenset(excluded_paths) if excluded_paths is not None else self.DEFAULT_EXCLUDED_PATHS
        )

    async def dispatch(self, request: Request, call_next):
        # Skip tracing para health checks (evita poluir logs)
        if request.url.path in self.excluded_paths:
            request.state.trace_context = ROOT_CONTEXT
            return await call_next(request)

        tracer = self.tracer or get_tracer("tracecore.http")
        propagator = self.propagator or get_global_propagator()

        # 1. Extrai contexto remoto (ROOT_CONTEXT se ausente/malformado)
        parent_context = propagator.extract(request.headers)

        # 2. Span SERVER da requisição
        span = tracer.start_span(
            f"{request.method} {request.url.path}",
            parent_context,
            kind=SpanKind.SERVER,
            attributes={
                "http.method": request.method,
                "http.target": str(request.url.path),
            },
        )
        request_context = set_span_in_context(span, parent_context)
        request.state.trace_context = request_context
        token = attach(request_context)

        # 3. Loga request received
        start_time = time.time()
        log_request_received(
            path=str(request.url.path),
            method=request.method,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent")
        )

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 500:
                span.set_status(StatusCode.ERROR, f"HTTP {response.status_code}")

            log_response_sent(
                status_code=response.status_code,
                duration_ms=duration_ms
            )

            # 4. Devolve o trace_id para o cliente
            response.headers[TRACE_ID_HEADER] = span.get_span_context().trace_id
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            span.record_exception(e)
            span.set_status(StatusCode.ERROR, f"{type(e).__name__}: {e}")

            log_request_failed(
                error_type=type(e).__name__,
                error_message=str(e),
                duration_ms=duration_ms
            )
            raise

        finally:
            detach(token)
            span.end()
