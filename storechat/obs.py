"""Logging setup plus Langfuse tracing and OpenTelemetry spans.

- configure_logging: one-time root logger configuration (format and LOG_LEVEL).
- span: OpenTelemetry span context manager; spans go to the console exporter only
  when OTEL_CONSOLE_EXPORT is set, otherwise to whatever provider is installed.
- Trace: thin Langfuse trace wrapper that is a no-op unless Langfuse keys are configured.

Tracing must never break a chat request, so every tracing call is guarded.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from langfuse import Langfuse
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from storechat.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_langfuse_client: Optional[Langfuse] = None
_otel_inited: bool = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; later calls only adjust the level."""
    level_name = (level or settings.LOG_LEVEL).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level_name, format=LOG_FORMAT)
    root.setLevel(level_name)


def _init_langfuse() -> Optional[Langfuse]:
    """Initialize and memoize a Langfuse client when host and keys are configured."""
    global _langfuse_client
    if _langfuse_client is not None:
        return _langfuse_client
    if settings.LANGFUSE_HOST and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY:
        _langfuse_client = Langfuse(
            host=settings.LANGFUSE_HOST,
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
        )
    return _langfuse_client


def _init_otel() -> None:
    global _otel_inited
    if _otel_inited:
        return
    _otel_inited = True
    if not settings.OTEL_CONSOLE_EXPORT:
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """OpenTelemetry span around a block; attribute errors are ignored."""
    _init_otel()
    otel_span = None
    try:
        otel_span = trace.get_tracer(__name__).start_span(name=name)
        for k, v in (attributes or {}).items():
            if v is not None:
                otel_span.set_attribute(k, v)
    except Exception as e:
        logger.debug("Span %s not started: %s", name, e)
        otel_span = None
    try:
        yield
    finally:
        if otel_span is not None:
            otel_span.end()


class Trace:
    """Langfuse trace for one chat request; every method no-ops when disabled."""

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None, metadata: Optional[Dict[str, Any]] = None):
        self.name = name
        self.enabled = False
        self._trace = None
        client = _init_langfuse()
        if client is not None:
            try:
                self._trace = client.trace(name=name, input=input or {}, metadata=metadata or {})
                self.enabled = True
            except Exception as e:
                logger.warning("Langfuse trace %s not started: %s", name, e)

    def event(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        try:
            self._trace.event(name=name, input=data or {})
        except Exception as e:
            logger.debug("Langfuse event %s dropped: %s", name, e)

    def generation(
        self,
        name: str,
        prompt: Any,
        output: str,
        model: Optional[str] = None,
        usage: Optional[Dict[str, int]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a generation with its input messages, output text and token usage.

        Args:
            name: Logical generation name.
            prompt: Messages or prompt text sent to the model.
            output: Generated text.
            model: Model name; defaults to settings.OPENAI_CHAT_MODEL.
            usage: Token counts (input/output/total).
            metadata: Extra metadata.
        """
        if not self.enabled:
            return
        try:
            self._trace.generation(
                name=name,
                input=prompt,
                output=output,
                model=model or settings.OPENAI_CHAT_MODEL,
                usage=usage,
                metadata=metadata or {},
            )
        except Exception as e:
            logger.debug("Langfuse generation %s dropped: %s", name, e)

    def end(self, output: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        try:
            self._trace.update(output=output or {})
        except Exception as e:
            logger.debug("Langfuse trace %s not finalized: %s", self.name, e)
