import pytest

from tracecore.infrastructure.tracing.context import set_strict_mode
from tracecore.infrastructure.tracing.exporters import InMemorySpanExporter
from tracecore.infrastructure.tracing.processors import SimpleSpanProcessor
from tracecore.infrastructure.tracing.tracer import TracerProvider


@pytest.fixture(autouse=True)
def reset_strict_mode():
    set_strict_mode(False)
    yield
    set_strict_mode(False)


@pytest.fixture
def exporter():
    return InMemorySpanExporter()


@pytest.fixture
def provider(exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def tracer(provider):
    return provider.get_tracer("tests")
