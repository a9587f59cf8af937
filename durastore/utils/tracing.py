from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from durastore.utils.logging import get_logger

logger = get_logger("tracing")

def init_tracer(service_name: str) -> None:
    provider = TracerProvider()
    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    logger.info(f"Initialized tracer for {service_name}")

def get_tracer(name: str) -> trace.Tracer:
    # No-op tracer until init_tracer (or the host) installs a provider
    return trace.get_tracer(f"durastore.{name}")
