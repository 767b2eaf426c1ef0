import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from tracecore.infrastructure.tracing.baggage import get_baggage, set_baggage
from tracecore.infrastructure.tracing.context import (
    ROOT_CONTEXT,
    bind_context,
    current,
    use_context,
)
from tracecore.infrastructure.tracing.tracer import get_current_span, set_span_in_context


def _record_phase(tracer, name):
    """Cria um span filho do contexto corrente e grava a fase vista no baggage."""
    child = tracer.start_span(name)
    child.set_attribute("phase", get_baggage(current(), "phase") or "none")
    child.end()


def _by_name(exporter):
    return {span.name: span for span in exporter.get_finished_spans()}


def test_thread_captured_before_mutation_does_not_see_it(tracer, exporter):
    """
    Reprodução da corrida: A captura o contexto antes da mutação de baggage,
    B depois. O filho de A não vê a mutação; o filho de B vê.
    """
    parent = tracer.start_span("parent")

    with use_context(set_span_in_context(parent, ROOT_CONTEXT)):
        worker_a = threading.Thread(target=bind_context(_record_phase), args=(tracer, "child-a"))
        with use_context(set_baggage(current(), "phase", "mutated")):
            worker_b = threading.Thread(target=bind_context(_record_phase), args=(tracer, "child-b"))

        worker_a.start()
        worker_b.start()
        worker_a.join()
        worker_b.join()

    parent.end()

    spans = _by_name(exporter)
    assert spans["child-a"].attributes["phase"] == "none"
    assert spans["child-b"].attributes["phase"] == "mutated"
    parent_id = parent.get_span_context().span_id
    assert spans["child-a"].parent.span_id == parent_id
    assert spans["child-b"].parent.span_id == parent_id


@pytest.mark.asyncio
async def test_task_captured_before_mutation_does_not_see_it(tracer, exporter):
    """Mesma corrida com tasks asyncio: a captura define o que a task enxerga."""
    async def record_phase(name):
        await asyncio.sleep(0)
        _record_phase(tracer, name)

    parent = tracer.start_span("parent")

    with use_context(set_span_in_context(parent, ROOT_CONTEXT)):
        bound_a = bind_context(record_phase)
        with use_context(set_baggage(current(), "phase", "mutated")):
            bound_b = bind_context(record_phase)
        await asyncio.gather(
            asyncio.create_task(bound_a("child-a")),
            asyncio.create_task(bound_b("child-b")),
        )

    parent.end()

    spans = _by_name(exporter)
    assert spans["child-a"].attributes["phase"] == "none"
    assert spans["child-b"].attributes["phase"] == "mutated"


def test_unbound_thread_starts_new_trace(tracer, exporter):
    """Sem bind_context o trabalho na thread não encontra o span pai."""
    parent = tracer.start_span("parent")

    with use_context(set_span_in_context(parent, ROOT_CONTEXT)):
        worker = threading.Thread(target=_record_phase, args=(tracer, "orphan"))
        worker.start()
        worker.join()
    parent.end()

    orphan = _by_name(exporter)["orphan"]
    assert orphan.parent is None
    assert orphan.context.trace_id != parent.get_span_context().trace_id


def test_straggler_write_after_parent_end_is_dropped(tracer, exporter):
    """Escrita atrasada no span pai já finalizado não aparece no registro"""
    parent = tracer.start_span("parent")
    parent.set_attribute("stage", "initial")
    parent_ended = threading.Event()

    def straggler():
        parent_ended.wait(timeout=5)
        parent.set_attribute("stage", "late")
        parent.add_event("late_event")

    worker = threading.Thread(target=straggler)
    worker.start()
    parent.end()
    parent_ended.set()
    worker.join()

    record = _by_name(exporter)["parent"]
    assert record.attributes["stage"] == "initial"
    assert record.events == ()


def test_child_from_captured_span_context_outlives_parent(tracer, exporter):
    """
    Padrão seguro: o worker recebe o SpanContext do pai (imutável) e cria o
    próprio span, mesmo que o pai termine antes.
    """
    parent = tracer.start_span("parent")
    parent_context = parent.get_span_context()
    parent_ended = threading.Event()

    def worker():
        parent_ended.wait(timeout=5)
        child = tracer.start_span("late-child", ROOT_CONTEXT, parent=parent_context)
        child.set_attribute("done", True)
        child.end()

    thread = threading.Thread(target=worker)
    thread.start()
    parent.end()
    parent_ended.set()
    thread.join()

    spans = _by_name(exporter)
    assert spans["late-child"].parent == parent_context
    assert spans["late-child"].attributes["done"] is True
    assert spans["late-child"].context.trace_id == parent_context.trace_id


def test_join_before_parent_end_keeps_children_inside_parent(tracer, exporter):
    """Padrão seguro: aguardar os filhos antes de encerrar o pai"""
    with tracer.start_as_current_span("parent") as parent:
        workers = [
            threading.Thread(target=bind_context(_record_phase), args=(tracer, f"child-{i}"))
            for i in range(4)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

    spans = _by_name(exporter)
    for i in range(4):
        child = spans[f"child-{i}"]
        assert child.parent.span_id == parent.get_span_context().span_id
    assert list(spans)[-1] == "parent"


def test_thread_pool_with_bind_context(tracer, exporter):
    """Workers reutilizados do pool anexam o contexto capturado e não vazam"""
    ctx = set_baggage(ROOT_CONTEXT, "tenant", "acme")

    def task(index):
        return index, get_baggage(current(), "tenant"), get_current_span()

    with ThreadPoolExecutor(max_workers=2) as executor:
        bound = list(executor.map(bind_context(task, ctx), range(6)))
        unbound = list(executor.map(task, range(6)))

    assert [tenant for _, tenant, _ in bound] == ["acme"] * 6
    assert [tenant for _, tenant, _ in unbound] == [None] * 6


def test_many_threads_keep_their_own_context():
    errors = []
    barrier = threading.Barrier(8)

    def worker(index):
        with use_context(set_baggage(ROOT_CONTEXT, "worker", str(index))):
            barrier.wait(timeout=5)
            for _ in range(100):
                if get_baggage(current(), "worker") != str(index):
                    errors.append(index)
                    break
        if current() is not ROOT_CONTEXT:
            errors.append(index)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
