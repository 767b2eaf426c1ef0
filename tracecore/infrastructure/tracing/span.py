"""
Modelo de span: identidade, ciclo de vida e o registro imutável entregue aos processors.

Um Span passa por exatamente dois estados, Open -> Ended. Toda escrita
(atributo, evento, status) só é válida enquanto Open; após o end, escritas
viram no-op e o span é congelado em um FinishedSpan para o pipeline.
"""
import threading
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from tracecore.core.exceptions import SpanEndedException
from tracecore.infrastructure.logging.structlog_config import get_logger
from tracecore.infrastructure.tracing.context import is_strict_mode

logger = get_logger("tracing.span")

TRACE_FLAG_SAMPLED = 0x01
TRACE_FLAG_NONE = 0x00

_EMPTY: Mapping[str, Any] = MappingProxyType({})
_PRIMITIVES = (str, bool, int, float)


class SpanKind(str, Enum):
    """Papel do span no trace."""
    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class StatusCode(str, Enum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class Status:
    code: StatusCode = StatusCode.UNSET
    description: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.code is StatusCode.ERROR


@dataclass(frozen=True)
class SpanContext:
    """Identidade fixa do span: trace_id (32 hex), span_id (16 hex) e flags."""

    trace_id: str
    span_id: str
    trace_flags: int = TRACE_FLAG_SAMPLED
    is_remote: bool = False

    @property
    def is_valid(self) -> bool:
        return int(self.trace_id or "0", 16) != 0 and int(self.span_id or "0", 16) != 0

    @property
    def sampled(self) -> bool:
        return bool(self.trace_flags & TRACE_FLAG_SAMPLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "trace_flags": f"{self.trace_flags:02x}",
            "is_remote": self.is_remote,
        }


INVALID_SPAN_CONTEXT = SpanContext("0" * 32, "0" * 16, TRACE_FLAG_NONE)


@dataclass(frozen=True)
class Event:
    name: str
    timestamp: int
    attributes: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "timestamp": self.timestamp, "attributes": dict(self.attributes)}


@dataclass(frozen=True)
class Link:
    """Referência a um span de outro trace (possivelmente não relacionado)."""

    context: SpanContext
    attributes: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.context.trace_id,
            "span_id": self.context.span_id,
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class FinishedSpan:
    """Registro somente-leitura de um span finalizado, como recebido em SpanProcessor.on_end."""

    name: str
    context: SpanContext
    parent: Optional[SpanContext]
    kind: SpanKind
    start_time: int
    end_time: int
    attributes: Mapping[str, Any]
    events: Tuple[Event, ...]
    links: Tuple[Link, ...]
    status: Status

    @property
    def duration_ns(self) -> int:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "context": self.context.to_dict(),
            "parent_span_id": self.parent.span_id if self.parent is not None else None,
            "kind": self.kind.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ns / 1_000_000,
            "attributes": dict(self.attributes),
            "events": [event.to_dict() for event in self.events],
            "links": [link.to_dict() for link in self.links],
            "status": {"code": self.status.code.value, "description": self.status.description},
        }


def _clean_attribute(key: Any, value: Any) -> Tuple[bool, Any]:
    if not isinstance(key, str) or not key:
        logger.warning("span_invalid_attribute_key", key=repr(key))
        return False, None
    if isinstance(value, _PRIMITIVES):
        return True, value
    if isinstance(value, Sequence) and all(isinstance(item, _PRIMITIVES) for item in value):
        return True, tuple(value)
    logger.warning("span_invalid_attribute_value", key=key, value_type=type(value).__name__)
    return False, None


def _clean_attributes(attributes: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        ok, value = _clean_attribute(key, value)
        if ok:
            cleaned[key] = value
    return cleaned


class Span:
    """
    Operação rastreada, pertencente ao caminho de execução que a iniciou.

    Só o caminho dono escreve no span até o ``end()``; o lock torna o
    end/snapshot atômico frente a uma escrita atrasada de outra thread.
    """

    def __init__(
        self,
        name: str,
        context: SpanContext,
        parent: Optional[SpanContext] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        links: Iterable[Link] = (),
        start_time: Optional[int] = None,
        on_end: Optional[Callable[[FinishedSpan], None]] = None,
    ):
        self._name = name
        self._context = context
        self._parent = parent
        self._kind = kind
        self._attributes = _clean_attributes(attributes)
        self._links = tuple(links)
        self._events: list[Event] = []
        self._status = Status()
        self._explicit_start = start_time is not None
        self._start_time = start_time if start_time is not None else time.time_ns()
        self._start_monotonic = time.monotonic_ns()
        self._end_time: Optional[int] = None
        self._on_end = on_end
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Span(name={self._name!r}, trace_id={self._context.trace_id}, "
            f"span_id={self._context.span_id}, ended={self._end_time is not None})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> Optional[SpanContext]:
        return self._parent

    @property
    def kind(self) -> SpanKind:
        return self._kind

    @property
    def links(self) -> Tuple[Link, ...]:
        return self._links

    @property
    def start_time(self) -> int:
        return self._start_time

    @property
    def end_time(self) -> Optional[int]:
        return self._end_time

    @property
    def status(self) -> Status:
        return self._status

    @property
    def attributes(self) -> Mapping[str, Any]:
        with self._lock:
            return MappingProxyType(dict(self._attributes))

    @property
    def events(self) -> Tuple[Event, ...]:
        with self._lock:
            return tuple(self._events)

    def get_span_context(self) -> SpanContext:
        return self._context

    def is_recording(self) -> bool:
        return self._end_time is None

    def _write_after_end(self, operation: str) -> None:
        error = SpanEndedException(self._name, self._context.span_id, operation)
        if is_strict_mode():
            raise error
        logger.debug("span_write_after_end", **error.details)

    def set_attribute(self, key: str, value: Any) -> None:
        ok, value = _clean_attribute(key, value)
        if not ok:
            return
        with self._lock:
            if self._end_time is not None:
                self._write_after_end("set_attribute")
                return
            self._attributes[key] = value

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        cleaned = _clean_attributes(attributes)
        with self._lock:
            if self._end_time is not None:
                self._write_after_end("set_attributes")
                return
            self._attributes.update(cleaned)

    def add_event(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        event = Event(
            name=name,
            timestamp=timestamp if timestamp is not None else time.time_ns(),
            attributes=MappingProxyType(_clean_attributes(attributes)),
        )
        with self._lock:
            if self._end_time is not None:
                self._write_after_end("add_event")
                return
            self._events.append(event)

    def set_status(self, code: StatusCode, description: Optional[str] = None) -> None:
        """Define o status; a última escrita antes do ``end()`` prevalece."""
        with self._lock:
            if self._end_time is not None:
                self._write_after_end("set_status")
                return
            self._status = Status(code=code, description=description)

    def record_exception(
        self, exception: BaseException, attributes: Optional[Mapping[str, Any]] = None
    ) -> None:
        """Adiciona um evento ``exception``. Nunca altera o status."""
        event_attributes = {
            "exception.type": type(exception).__name__,
            "exception.message": str(exception),
            "exception.stacktrace": "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            ),
        }
        event_attributes.update(attributes or {})
        self.add_event("exception", event_attributes)

    def end(self, end_time: Optional[int] = None) -> None:
        """
        Finaliza o span e entrega o snapshot ao processor exatamente uma vez.

        Uma segunda chamada é erro de uso: logada, nunca lançada (exceto em
        modo estrito).
        """
        with self._lock:
            if self._end_time is not None:
                error = SpanEndedException(self._name, self._context.span_id, "end")
                if is_strict_mode():
                    raise error
                logger.warning("span_already_ended", **error.details)
                return

            if end_time is None:
                if self._explicit_start:
                    end_time = max(time.time_ns(), self._start_time)
                else:
                    end_time = self._start_time + (time.monotonic_ns() - self._start_monotonic)
            elif end_time < self._start_time:
                logger.warning(
                    "span_end_before_start",
                    span_name=self._name,
                    span_id=self._context.span_id,
                    start_time=self._start_time,
                    end_time=end_time,
                )
                end_time = self._start_time

            self._end_time = end_time
            finished = self._snapshot()

        if self._on_end is not None:
            self._on_end(finished)

    def _snapshot(self) -> FinishedSpan:
        return FinishedSpan(
            name=self._name,
            context=self._context,
            parent=self._parent,
            kind=self._kind,
            start_time=self._start_time,
            end_time=self._end_time,
            attributes=MappingProxyType(dict(self._attributes)),
            events=tuple(self._events),
            links=self._links,
            status=self._status,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Dump de diagnóstico do span no estado atual."""
        with self._lock:
            return {
                "name": self._name,
                "context": self._context.to_dict(),
                "parent_span_id": self._parent.span_id if self._parent is not None else None,
                "kind": self._kind.value,
                "start_time": self._start_time,
                "end_time": self._end_time,
                "ended": self._end_time is not None,
                "attributes": dict(self._attributes),
                "events": [event.to_dict() for event in self._events],
                "links": [link.to_dict() for link in self._links],
                "status": {"code": self._status.code.value, "description": self._status.description},
            }


class NonRecordingSpan:
    """
    Referência a um span que o detentor não possui: o pai remoto da extração.

    Pode ser usado como pai, mas toda escrita e o ``end()`` são no-op.
    """

    def __init__(self, context: SpanContext):
        self._context = context

    def __repr__(self) -> str:
        return f"NonRecordingSpan(trace_id={self._context.trace_id}, span_id={self._context.span_id})"

    def get_span_context(self) -> SpanContext:
        return self._context

    def is_recording(self) -> bool:
        return False

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes=None, timestamp=None) -> None:
        pass

    def set_status(self, code: StatusCode, description: Optional[str] = None) -> None:
        pass

    def record_exception(self, exception: BaseException, attributes=None) -> None:
        pass

    def end(self, end_time: Optional[int] = None) -> None:
        logger.debug("remote_span_end_ignored", span_id=self._context.span_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"context": self._context.to_dict(), "recording": False}
