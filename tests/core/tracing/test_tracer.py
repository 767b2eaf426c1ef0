import pytest

from tracecore.infrastructure.tracing.context import ROOT_CONTEXT, current, is_strict_mode, use_context
from tracecore.infrastructure.tracing.exporters import InMemorySpanExporter
from tracecore.infrastructure.tracing.processors import SimpleSpanProcessor
from tracecore.infrastructure.tracing.span import Link, SpanContext, SpanKind, StatusCode
from tracecore.infrastructure.tracing import tracer as tracer_module
from tracecore.infrastructure.tracing.tracer import (
    TracerProvider,
    get_current_span,
    get_tracer,
    set_span_in_context,
    set_tracer_provider,
)


def test_root_span_has_no_parent(tracer):
    """Span criado contra o ROOT_CONTEXT não tem pai"""
    span = tracer.start_span("root", ROOT_CONTEXT)
    assert span.parent is None
    assert span.get_span_context().is_valid


def test_child_span_parent_is_current_span(tracer):
    """Span criado com ctx cujo span corrente é S tem parent == S"""
    parent = tracer.start_span("parent")
    ctx = set_span_in_context(parent, ROOT_CONTEXT)

    child = tracer.start_span("child", ctx)

    assert child.parent == parent.get_span_context()
    assert child.get_span_context().trace_id == parent.get_span_context().trace_id
    assert child.get_span_context().span_id != parent.get_span_context().span_id


def test_start_span_reads_current_context_by_default(tracer):
    parent = tracer.start_span("parent")
    with use_context(set_span_in_context(parent)):
        child = tracer.start_span("child")
    assert child.parent.span_id == parent.get_span_context().span_id


def test_explicit_parent_overrides_context(tracer):
    """Opção parent ignora o span corrente do contexto"""
    in_context = tracer.start_span("in-context")
    explicit = SpanContext("a" * 32, "b" * 16)

    child = tracer.start_span("child", set_span_in_context(in_context), parent=explicit)

    assert child.parent == explicit
    assert child.get_span_context().trace_id == "a" * 32


def test_links_kind_and_attributes_are_fixed_at_creation(tracer, exporter):
    other = SpanContext("c" * 32, "d" * 16)
    span = tracer.start_span(
        "consumer",
        kind=SpanKind.CONSUMER,
        links=[Link(other, {"reason": "batch"})],
        attributes={"queue": "orders"},
    )
    span.end()

    record = exporter.get_finished_spans()[0]
    assert record.kind is SpanKind.CONSUMER
    assert record.links[0].context == other
    assert record.attributes["queue"] == "orders"


def test_trace_flags_follow_parent_or_provider():
    unsampled_provider = TracerProvider(sampled=False)
    root = unsampled_provider.get_tracer("t").start_span("root")
    assert not root.get_span_context().sampled

    sampled_parent = SpanContext("e" * 32, "f" * 16, trace_flags=1)
    child = unsampled_provider.get_tracer("t").start_span("child", parent=sampled_parent)
    assert child.get_span_context().sampled


def test_start_as_current_span_nests_and_restores(tracer, exporter):
    with tracer.start_as_current_span("outer") as outer:
        assert get_current_span() is outer
        with tracer.start_as_current_span("inner") as inner:
            assert get_current_span() is inner
            assert inner.parent == outer.get_span_context()
        assert get_current_span() is outer

    assert current() is ROOT_CONTEXT
    assert [span.name for span in exporter.get_finished_spans()] == ["inner", "outer"]


def test_status_is_not_set_automatically_on_exception(tracer, exporter):
    """Bloco que lança sem set_status explícito termina com status UNSET"""
    with pytest.raises(ValueError):
        with tracer.start_as_current_span("forgot-status"):
            raise ValueError("boom")

    record = exporter.get_finished_spans()[0]
    assert record.status.code is StatusCode.UNSET
    assert current() is ROOT_CONTEXT


def test_wrapper_sets_error_status_explicitly(tracer, exporter):
    """Caminho correto: o wrapper captura, registra ERROR e relança"""
    with pytest.raises(ValueError, match="boom"):
        with tracer.start_as_current_span("explicit-status") as span:
            try:
                raise ValueError("boom")
            except ValueError as e:
                span.set_status(StatusCode.ERROR, str(e))
                raise

    record = exporter.get_finished_spans()[0]
    assert record.status.code is StatusCode.ERROR
    assert record.status.description == "boom"


def test_parent_can_end_before_child(tracer, exporter):
    """Encerrar o pai com filho aberto é legal; o filho termina depois"""
    parent = tracer.start_span("parent")
    child = tracer.start_span("child", set_span_in_context(parent))

    parent.end()
    child.set_attribute("still.open", True)
    child.end()

    names = [span.name for span in exporter.get_finished_spans()]
    assert names == ["parent", "child"]
    child_record = exporter.get_finished_spans()[1]
    assert child_record.parent.span_id == parent.get_span_context().span_id
    assert child_record.attributes["still.open"] is True


def test_end_on_exit_false_leaves_span_open(tracer, exporter):
    with tracer.start_as_current_span("manual", end_on_exit=False) as span:
        pass
    assert span.is_recording()
    span.end()
    assert len(exporter.get_finished_spans()) == 1


def test_provider_shutdown_drops_new_spans(provider, tracer, exporter):
    provider.shutdown()
    tracer.start_span("late").end()
    assert exporter.get_finished_spans() == ()


def test_global_tracer_uses_registered_provider(monkeypatch):
    monkeypatch.setattr(tracer_module, "_tracer_provider", None)
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    set_tracer_provider(provider)

    get_tracer("global").start_span("op").end()

    assert exporter.get_finished_spans()[0].name == "op"


def test_global_provider_is_created_lazily(monkeypatch):
    monkeypatch.setattr(tracer_module, "_tracer_provider", None)
    first = tracer_module.get_tracer_provider()
    assert tracer_module.get_tracer_provider() is first


def test_second_provider_keeps_strict_mode():
    """Provider criado sem strict_mode não desfaz o modo estrito global"""
    TracerProvider(strict_mode=True)
    TracerProvider()
    assert is_strict_mode() is True

    TracerProvider(strict_mode=False)
    assert is_strict_mode() is False
