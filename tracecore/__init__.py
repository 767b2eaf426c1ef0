"""tracecore: núcleo de propagação de contexto para tracing distribuído."""
