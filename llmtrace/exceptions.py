"""Exceptions for llmtrace."""


class LLMTraceError(Exception):
    """Base exception for llmtrace."""

    pass


class ConfigurationError(LLMTraceError):
    """Tracing setup is missing a credential or has conflicting options."""

    pass


class TransportError(LLMTraceError):
    """A span batch could not be delivered to the remote sink.

    Only ever carried in an ExportResult; exporters do not raise it.
    """

    pass
