"""
Gerenciamento de contexto de trace por unidade de execução.

Cada thread e cada task asyncio possui um slot de contexto ativo próprio. O
slot é guardado em uma ContextVar, mas registra a unidade de execução dona:
como o asyncio copia as ContextVars para toda task nova, um slot copiado
implicitamente é ignorado pela task filha, que enxerga o ROOT_CONTEXT até
anexar explicitamente um contexto capturado (ver ``bind_context``).
"""
import asyncio
import contextvars
import functools
import inspect
import itertools
import threading
import uuid
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

from tracecore.core.exceptions import ContextDetachException
from tracecore.infrastructure.logging.structlog_config import get_logger

if TYPE_CHECKING:
    from tracecore.infrastructure.tracing.span import Span

logger = get_logger("tracing.context")

_EMPTY_BAGGAGE: Mapping[str, str] = MappingProxyType({})


def generate_trace_id() -> str:
    """Gera trace_id único (32 caracteres hex, nunca zerado)"""
    trace_id = uuid.uuid4().hex
    while int(trace_id, 16) == 0:
        trace_id = uuid.uuid4().hex
    return trace_id


def generate_span_id() -> str:
    """Gera span_id único (16 caracteres hex, nunca zerado)"""
    span_id = uuid.uuid4().hex[:16]
    while int(span_id, 16) == 0:
        span_id = uuid.uuid4().hex[:16]
    return span_id


@dataclass(frozen=True, eq=True)
class Context:
    """
    Snapshot imutável do estado corrente: span atual + baggage.

    Derivar um contexto (``with_span``/``with_baggage``) sempre retorna uma
    nova instância; o original nunca é alterado.
    """

    span: Optional["Span"] = None
    baggage: Mapping[str, str] = field(default_factory=lambda: _EMPTY_BAGGAGE)

    __hash__ = None  # baggage é um mapping

    def with_span(self, span: Optional["Span"]) -> "Context":
        return replace(self, span=span)

    def with_baggage(self, baggage: Mapping[str, str]) -> "Context":
        return replace(self, baggage=MappingProxyType(dict(baggage)))

    @property
    def is_root(self) -> bool:
        return self.span is None and not self.baggage

    def to_dict(self) -> Dict[str, Any]:
        """Dump de diagnóstico do contexto."""
        span_context = self.span.get_span_context() if self.span is not None else None
        return {
            "span": span_context.to_dict() if span_context is not None else None,
            "baggage": dict(self.baggage),
        }


ROOT_CONTEXT = Context()


@dataclass(frozen=True)
class _Slot:
    owner: Tuple[str, int]
    context: Context
    generation: int
    previous: Optional["_Slot"]


@dataclass(frozen=True)
class Token:
    """Handle opaco retornado por ``attach`` e exigido por ``detach``."""

    owner: Tuple[str, int]
    generation: int
    previous: Optional[_Slot] = field(repr=False)


_active_slot: contextvars.ContextVar[Optional[_Slot]] = contextvars.ContextVar(
    "tracecore_active_context", default=None
)
_generation_counter = itertools.count(1)
_generation_lock = threading.Lock()
# id(task) pode ser reutilizado após o GC; cada task recebe um serial único
_task_serials: "weakref.WeakKeyDictionary[asyncio.Task, int]" = weakref.WeakKeyDictionary()
_strict_mode = False


def set_strict_mode(enabled: bool) -> None:
    """Em modo estrito, erros de uso (detach inválido, escrita após end, end duplo) lançam exceção."""
    global _strict_mode
    _strict_mode = enabled


def is_strict_mode() -> bool:
    return _strict_mode


def _next_generation() -> int:
    with _generation_lock:
        return next(_generation_counter)


def execution_unit() -> Tuple[str, int]:
    """Identifica a unidade de execução corrente (task asyncio ou thread)."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    if task is not None:
        with _generation_lock:
            serial = _task_serials.get(task)
            if serial is None:
                serial = _task_serials[task] = next(_generation_counter)
        return ("task", serial)
    return ("thread", threading.get_ident())


def _owned_slot(owner: Tuple[str, int]) -> Optional[_Slot]:
    slot = _active_slot.get()
    if slot is None or slot.owner != owner:
        return None
    return slot


def current() -> Context:
    """
    Retorna o contexto ativo da unidade de execução corrente.

    Returns:
        Contexto anexado por esta thread/task, ou ROOT_CONTEXT
    """
    slot = _owned_slot(execution_unit())
    return slot.context if slot is not None else ROOT_CONTEXT


def attach(context: Context) -> Token:
    """
    Torna ``context`` o contexto ativo e retorna o token para restaurar o anterior.

    Args:
        context: Contexto a anexar

    Returns:
        Token a ser passado para ``detach`` (ordem de pilha)
    """
    owner = execution_unit()
    previous = _owned_slot(owner)
    slot = _Slot(owner=owner, context=context, generation=_next_generation(), previous=previous)
    _active_slot.set(slot)
    return Token(owner=owner, generation=slot.generation, previous=previous)


def detach(token: Token) -> None:
    """
    Restaura o contexto capturado em ``token``.

    Token obsoleto, fora de ordem ou de outra unidade de execução é erro de
    uso: é logado e ignorado (ou lançado em modo estrito).
    """
    owner = execution_unit()
    slot = _owned_slot(owner)
    active_generation = slot.generation if slot is not None else None

    if token.owner != owner or token.generation != active_generation:
        error = ContextDetachException(token.generation, active_generation)
        if _strict_mode:
            raise error
        logger.warning(
            "context_detach_mismatch",
            foreign_token=token.owner != owner,
            **error.details,
        )
        return

    _active_slot.set(token.previous)


@contextmanager
def use_context(context: Context) -> Iterator[Context]:
    """Anexa ``context`` durante o bloco e restaura o anterior ao sair."""
    token = attach(context)
    try:
        yield context
    finally:
        detach(token)


def bind_context(fn: Callable, context: Optional[Context] = None) -> Callable:
    """
    Captura o contexto agora e o anexa como primeira ação de ``fn``.

    Use ao criar threads ou tasks: todas as mutações de contexto devem ser
    feitas ANTES desta chamada, pois o valor capturado é um snapshot.

    Exemplo:
        ctx = set_baggage(current(), "tenant", "acme")
        with use_context(ctx):
            thread = threading.Thread(target=bind_context(worker))
    """
    captured = context if context is not None else current()

    if inspect.iscoroutinefunction(fn):
        @functools.wraps(fn)
        async def async_wrapper(*args, **kwargs):
            token = attach(captured)
            try:
                return await fn(*args, **kwargs)
            finally:
                detach(token)

        return async_wrapper

    @functools.wraps(fn)
    def sync_wrapper(*args, **kwargs):
        token = attach(captured)
        try:
            return fn(*args, **kwargs)
        finally:
            detach(token)

    return sync_wrapper
