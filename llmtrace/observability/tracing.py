"""
OpenTelemetry tracing configuration for llmtrace.

Supports these sinks:
- llmtrace collector (remote HTTP, requires an API key)
- a custom exporter supplied by the application
- OTLP-compatible collectors
- Console (for debugging)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from dotenv import load_dotenv
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from ..exceptions import ConfigurationError
from .attributes import LLMTRACE_VERSION
from .exporter import LLMTraceExporter
from .sampler import LLMTraceSampler

log = logging.getLogger(__name__)

DEFAULT_API_HOST = "http://localhost:3000/api/trace"

# Every integration name accepted by the enable/disable selector.
INTEGRATIONS = (
    "openai",
    "anthropic",
    "cohere",
    "groq",
    "pinecone",
    "llamaindex",
    "chromadb",
    "qdrant",
)


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class TracingConfig:
    """Configuration for llmtrace tracing."""

    service_name: str = "llmtrace"
    service_version: str = LLMTRACE_VERSION

    # Remote delivery
    api_key: Optional[str] = None
    api_host: str = DEFAULT_API_HOST
    write_to_remote_url: bool = True
    batch: bool = False
    export_timeout: float = 10.0

    # Used when write_to_remote_url is False
    custom_remote_exporter: Optional[SpanExporter] = None
    exporter_type: str = "console"  # console, otlp, none
    otlp_endpoint: str = "http://localhost:4317"
    otlp_insecure: bool = True

    # Sampling
    sample_rate: float = 1.0  # 1.0 = 100% of traces

    # Integration selector; setting both lists is an error
    disable_only: List[str] = field(default_factory=list)
    disable_all_except: List[str] = field(default_factory=list)

    # Additional resource attributes
    extra_attributes: dict = field(default_factory=dict)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "TracingConfig":
        """Load configuration from environment variables (and an optional .env file)."""
        if env_file is not None and Path(env_file).exists():
            load_dotenv(env_file)

        return cls(
            service_name=os.getenv("OTEL_SERVICE_NAME", "llmtrace"),
            service_version=os.getenv("SERVICE_VERSION", LLMTRACE_VERSION),
            api_key=os.getenv("LLMTRACE_API_KEY") or None,
            api_host=os.getenv("LLMTRACE_API_HOST", DEFAULT_API_HOST),
            write_to_remote_url=_env_flag("LLMTRACE_WRITE_TO_REMOTE", "true"),
            batch=_env_flag("LLMTRACE_BATCH", "false"),
            export_timeout=float(os.getenv("LLMTRACE_EXPORT_TIMEOUT", "10")),
            exporter_type=os.getenv("LLMTRACE_EXPORTER_TYPE", "console"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"),
            otlp_insecure=_env_flag("OTEL_EXPORTER_OTLP_INSECURE", "true"),
            sample_rate=float(os.getenv("LLMTRACE_SAMPLE_RATE", "1.0")),
            disable_only=_split_list(os.getenv("LLMTRACE_DISABLE_ONLY")),
            disable_all_except=_split_list(os.getenv("LLMTRACE_DISABLE_ALL_EXCEPT")),
        )


def resolve_integrations(
    only: Optional[Sequence[str]] = None,
    all_except: Optional[Sequence[str]] = None,
    available: Sequence[str] = INTEGRATIONS,
) -> List[str]:
    """
    Work out which integrations stay enabled.

    Args:
        only: Disable only these integrations
        all_except: Disable every integration except these

    Returns:
        Enabled integration names, in `available` order

    Raises:
        ConfigurationError: Both selectors were given
    """
    if only and all_except:
        raise ConfigurationError(
            "Cannot specify both only and all_except in disable_instrumentations"
        )

    for name in list(only or []) + list(all_except or []):
        if name not in available:
            log.warning(f"Unknown integration in disable_instrumentations: {name}")

    if all_except:
        return [name for name in available if name in all_except]
    if only:
        return [name for name in available if name not in only]
    return list(available)


_tracer: Optional[trace.Tracer] = None
_provider: Optional[TracerProvider] = None
_config: Optional[TracingConfig] = None
_enabled_integrations: List[str] = list(INTEGRATIONS)


def init_tracing(
    config: Optional[TracingConfig] = None,
    set_global: bool = True,
) -> TracerProvider:
    """
    Initialize llmtrace tracing.

    Call once at application startup.

    Args:
        config: Tracing configuration. If None, loads from environment.
        set_global: Register the provider as the global OpenTelemetry provider.

    Returns:
        Configured tracer provider.

    Raises:
        ConfigurationError: Conflicting integration selectors, or a missing
            credential / endpoint for remote delivery.
    """
    global _tracer, _provider, _config, _enabled_integrations

    if _provider is not None:
        return _provider

    config = config or TracingConfig.from_env()

    # Validate before anything else is built so no span can be created
    # under a bad configuration.
    enabled = resolve_integrations(config.disable_only, config.disable_all_except)

    resource = Resource.create(
        {
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.service_version,
            "service.instance.id": os.getenv("HOSTNAME", "local"),
            **config.extra_attributes,
        }
    )

    provider = TracerProvider(resource=resource, sampler=LLMTraceSampler(config.sample_rate))

    exporter = _create_exporter(config)
    if exporter:
        processor = BatchSpanProcessor(exporter) if config.batch else SimpleSpanProcessor(exporter)
        provider.add_span_processor(processor)

    if set_global:
        trace.set_tracer_provider(provider)

    _config = config
    _provider = provider
    _enabled_integrations = enabled
    _tracer = provider.get_tracer("llmtrace", LLMTRACE_VERSION)

    log.info(
        f"llmtrace initialized: exporter={type(exporter).__name__ if exporter else None}, "
        f"batch={config.batch}, integrations={','.join(enabled)}"
    )
    return provider


def _create_exporter(config: TracingConfig) -> Optional[SpanExporter]:
    """Create span exporter based on configuration."""
    if config.write_to_remote_url:
        return LLMTraceExporter(
            api_key=config.api_key,
            api_host=config.api_host,
            write_to_remote_url=True,
            timeout=config.export_timeout,
        )
    if config.custom_remote_exporter is not None:
        return config.custom_remote_exporter

    if config.exporter_type == "none":
        return None
    elif config.exporter_type == "console":
        return ConsoleSpanExporter()
    elif config.exporter_type == "otlp":
        return OTLPSpanExporter(
            endpoint=config.otlp_endpoint,
            insecure=config.otlp_insecure,
        )
    else:
        raise ConfigurationError(f"Unknown exporter type: {config.exporter_type}")


def get_tracer() -> trace.Tracer:
    """Get the initialized tracer, or fall back to the global provider's tracer."""
    if _tracer is None:
        return trace.get_tracer("llmtrace", LLMTRACE_VERSION)
    return _tracer


def get_config() -> Optional[TracingConfig]:
    """Get current tracing configuration (None before init_tracing)."""
    return _config


def enabled_integrations() -> List[str]:
    """Integrations left enabled by the active configuration."""
    return list(_enabled_integrations)


def shutdown_tracing() -> None:
    """Flush and shut down the provider, and forget the active configuration."""
    global _tracer, _provider, _config, _enabled_integrations

    if _provider is not None:
        _provider.shutdown()
    _tracer = None
    _provider = None
    _config = None
    _enabled_integrations = list(INTEGRATIONS)
