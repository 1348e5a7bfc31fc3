"""
Telemetry service for structured logging and observability.

Structured JSON logs carrying the request and tenant correlation ids,
optional OpenTelemetry tracing, audit events for vehicle lifecycle
changes and lightweight metrics for the ingestion paths.
"""

import json
import logging
import sys
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from middleware.request_id import request_id_var
from middleware.tenant import tenant_id_var


class JSONFormatter(logging.Formatter):
    """
    Log formatter that writes one JSON object per record.

    Each entry contains timestamp (ISO 8601 UTC), level, message, logger,
    request_id and, when known, tenant_id. Anything passed as
    ``extra={"extra_data": {...}}`` is merged into the entry.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
                .isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "request_id": request_id_var.get(""),
        }

        tenant_id = tenant_id_var.get("")
        if tenant_id:
            log_data["tenant_id"] = tenant_id

        if record.module:
            log_data["module"] = record.module
        if record.funcName and record.funcName != "<module>":
            log_data["function"] = record.funcName

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data.update(extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_data["stack_trace"] = record.stack_info

        return json.dumps(log_data, default=str)


class TelemetryService:
    """
    Centralized telemetry for logging, metrics, and tracing.

    Metrics are emitted as debug log lines and also accumulated in memory
    so totals can be read back with ``get_metric_total``.
    """

    def __init__(self, settings: Optional[Any] = None, configure_logging: bool = True):
        """
        Args:
            settings: Application settings (log_level, otel_endpoint,
                otel_service_name)
            configure_logging: Install the JSON handler on the root logger
        """
        self.settings = settings
        self.tracer = None
        self._logger = logging.getLogger("telemetry")
        self._metric_totals: Dict[str, float] = defaultdict(float)
        self._metric_lock = threading.Lock()
        if configure_logging:
            self._setup_logging()
        self._setup_tracing()

    def _setup_logging(self) -> None:
        """Replace root handlers with a single stdout JSON handler."""
        log_level_str = getattr(self.settings, "log_level", None) or "INFO"
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(log_level)
        stdout_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(stdout_handler)

        self._logger.info("Telemetry service initialized", extra={
            "extra_data": {"log_level": log_level_str}
        })

    def _setup_tracing(self) -> None:
        """Configure an OTLP exporter when an endpoint is set."""
        otel_endpoint = getattr(self.settings, "otel_endpoint", None)
        if not otel_endpoint:
            self._logger.debug("OpenTelemetry endpoint not configured, tracing disabled")
            return

        try:
            from opentelemetry import trace
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            from opentelemetry.sdk.resources import SERVICE_NAME, Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor

            service_name = getattr(self.settings, "otel_service_name", "geotrack-ingestion")
            provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otel_endpoint)))
            trace.set_tracer_provider(provider)
            self.tracer = trace.get_tracer(service_name)

            self._logger.info("OpenTelemetry tracing configured", extra={
                "extra_data": {
                    "otel_endpoint": otel_endpoint,
                    "service_name": service_name
                }
            })
        except ImportError as e:
            self._logger.warning(
                "OpenTelemetry packages not installed, tracing disabled",
                extra={"extra_data": {"error": str(e)}}
            )

    def log_audit_event(
        self,
        event_type: str,
        tenant_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str],
        action: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log an audit event for a state-changing operation.

        Args:
            event_type: Type of audit event (e.g. "vehicle_lifecycle")
            tenant_id: Tenant that owns the resource
            resource_type: Type of resource acted upon (e.g. "vehicle")
            resource_id: ID of the specific resource
            action: What happened (e.g. "create", "status_change", "delete")
            details: Additional details about the event
        """
        audit_data = {
            "audit_event": True,
            "event_type": event_type,
            "tenant_id": tenant_id,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "action": action,
        }
        if details:
            audit_data["details"] = details

        self._logger.info(
            f"Audit: {event_type} - {action} on {resource_type}",
            extra={"extra_data": audit_data}
        )

    def record_metric(
        self,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Record a metric sample.

        Args:
            name: Metric name, e.g. "gps_fix.batch.accepted"
            value: Sample value
            tags: Optional dimensions
        """
        with self._metric_lock:
            self._metric_totals[name] += value

        metric_data: Dict[str, Any] = {
            "metric_name": name,
            "metric_value": value,
        }
        if tags:
            metric_data["tags"] = tags

        self._logger.debug(
            f"Metric: {name}={value}",
            extra={"extra_data": metric_data}
        )

    def get_metric_total(self, name: str) -> float:
        """Sum of every sample recorded under ``name`` since startup."""
        with self._metric_lock:
            return self._metric_totals.get(name, 0.0)

    def create_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """
        Start an OpenTelemetry span as a context manager.

        Returns a no-op context manager when tracing is not configured.
        """
        if self.tracer:
            return self.tracer.start_as_current_span(name, attributes=attributes)
        return _NoOpSpanContextManager()

    def create_external_service_span(
        self,
        service_name: str,
        operation: str,
        attributes: Optional[Dict[str, Any]] = None
    ):
        """
        Span for a call into a backing service, named ``<service>.<operation>``.

        Args:
            service_name: The backing service (e.g. "elasticsearch")
            operation: The operation (e.g. "commit", "bulk")
            attributes: Extra span attributes
        """
        span_attributes = {
            "peer.service": service_name,
            "operation.name": operation,
            "span.kind": "client",
        }
        if attributes:
            span_attributes.update(attributes)
        return self.create_span(f"{service_name}.{operation}", span_attributes)


class _NoOpSpanContextManager:
    """Stand-in span used when tracing is disabled."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        pass

    def record_exception(self, exception: BaseException) -> None:
        pass


_telemetry_service: Optional[TelemetryService] = None


def get_telemetry_service() -> Optional[TelemetryService]:
    """Return the global telemetry service, or None before initialization."""
    return _telemetry_service


def initialize_telemetry(settings: Optional[Any] = None) -> TelemetryService:
    """
    Create the global telemetry service.

    Args:
        settings: Application settings for configuration

    Returns:
        The initialized telemetry service
    """
    global _telemetry_service
    _telemetry_service = TelemetryService(settings)
    return _telemetry_service
