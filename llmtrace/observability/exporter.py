"""
Span exporter delivering finished spans to the llmtrace collector.

Each export call POSTs one JSON list of span projections. The exporter never
retries and never raises from export(); delivery problems are reported as a
FAILURE result. Retry and batching belong to the span processor in front of it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from ..exceptions import ConfigurationError, TransportError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


@dataclass
class ExportResult:
    """Outcome of one export call."""

    code: SpanExportResult
    error: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return self.code is SpanExportResult.SUCCESS


ResultCallback = Callable[[ExportResult], None]


def _format_trace_id(trace_id: int) -> str:
    return f"{trace_id:032x}"


def _format_span_id(span_id: int) -> str:
    return f"{span_id:016x}"


def serialize_span(span: ReadableSpan) -> Dict[str, Any]:
    """Exportable projection of a finished span."""
    span_context = span.get_span_context()
    parent = span.parent
    scope = span.instrumentation_scope
    duration = None
    if span.start_time is not None and span.end_time is not None:
        duration = span.end_time - span.start_time

    return {
        "traceId": _format_trace_id(span_context.trace_id),
        "spanId": _format_span_id(span_context.span_id),
        "parentSpanId": _format_span_id(parent.span_id) if parent else None,
        "name": span.name,
        "kind": span.kind.name,
        "startTime": span.start_time,
        "endTime": span.end_time,
        "duration": duration,
        "ended": span.end_time is not None,
        "attributes": dict(span.attributes or {}),
        "status": {
            "code": span.status.status_code.name,
            "message": span.status.description,
        },
        "events": [
            {
                "name": event.name,
                "timestamp": event.timestamp,
                "attributes": dict(event.attributes or {}),
            }
            for event in span.events
        ],
        "links": [
            {
                "traceId": _format_trace_id(link.context.trace_id),
                "spanId": _format_span_id(link.context.span_id),
                "attributes": dict(link.attributes or {}),
            }
            for link in span.links
        ],
        "resource": {
            "attributes": dict(span.resource.attributes),
            "schemaUrl": span.resource.schema_url,
        },
        "instrumentationLibrary": {
            "name": scope.name if scope else None,
            "version": scope.version if scope else None,
        },
        "droppedAttributesCount": span.dropped_attributes,
        "droppedEventsCount": span.dropped_events,
        "droppedLinksCount": span.dropped_links,
    }


def _error_payload(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


class LLMTraceExporter(SpanExporter):
    """
    Export spans to a remote collector over HTTP.

    Usage:
        exporter = LLMTraceExporter(api_key="...", api_host="https://collector/api/trace")
        provider.add_span_processor(BatchSpanProcessor(exporter))
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_host: Optional[str] = None,
        write_to_remote_url: bool = True,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Args:
            api_key: Delivery credential, sent as the x-api-key header
            api_host: Collector endpoint the batches are POSTed to
            write_to_remote_url: When False, report success without any network I/O
            timeout: Seconds to wait for the collector

        Raises:
            ConfigurationError: No credential, or remote mode without an endpoint
        """
        if not api_key:
            raise ConfigurationError("No API key provided")
        if write_to_remote_url and not api_host:
            raise ConfigurationError("No URL provided")

        self.api_key = api_key
        self.api_host = api_host
        self.write_to_remote_url = write_to_remote_url
        self.timeout = timeout
        self._shutdown = False

    def export(
        self,
        spans: Sequence[ReadableSpan],
        result_callback: Optional[ResultCallback] = None,
    ) -> SpanExportResult:
        """
        Deliver one batch.

        Returns the result code; if result_callback is given it is invoked
        exactly once with the full ExportResult.
        """
        result = self._export(spans)
        if result_callback is not None:
            try:
                result_callback(result)
            except Exception:
                log.warning("Export result callback failed", exc_info=True)
        return result.code

    def _export(self, spans: Sequence[ReadableSpan]) -> ExportResult:
        if self._shutdown:
            log.warning("Exporter already shut down, dropping spans")
            return ExportResult(SpanExportResult.FAILURE, TransportError("Exporter is shut down"))
        if not self.write_to_remote_url:
            return ExportResult(SpanExportResult.SUCCESS)

        try:
            data: List[Dict[str, Any]] = [serialize_span(span) for span in spans]
        except Exception as e:
            log.warning(f"Failed to serialize {len(spans)} spans: {e}")
            return ExportResult(SpanExportResult.FAILURE, TransportError(str(e)))

        try:
            response = requests.post(
                self.api_host,
                json=data,
                headers={
                    "Content-Type": "application/json",
                    "x-api-key": self.api_key,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.warning(f"Span export to {self.api_host} failed: {e}")
            return ExportResult(SpanExportResult.FAILURE, TransportError(str(e)))

        if 200 <= response.status_code < 300:
            log.debug(f"Exported {len(data)} spans")
            return ExportResult(SpanExportResult.SUCCESS)

        log.warning(f"Span export rejected with HTTP {response.status_code}")
        return ExportResult(SpanExportResult.FAILURE, _error_payload(response))

    def shutdown(self) -> None:
        """Stop accepting batches; safe to call any number of times."""
        self._shutdown = True

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True
