"""Langfuse integration for healing session observability."""

from contextlib import contextmanager
from typing import Any

from langfuse import Langfuse

from .config import LangfuseConfig

# Langfuse observation levels
LEVEL_DEFAULT = "DEFAULT"
LEVEL_WARNING = "WARNING"
LEVEL_ERROR = "ERROR"


class TracingClient:
    """One Langfuse trace per healing session, one span per attempt.

    Every method is a no-op unless tracing is enabled in config, so callers
    never need to check before recording.
    """

    def __init__(self, config: LangfuseConfig | None = None):
        self.config = config or LangfuseConfig()
        self.enabled = self.config.enabled
        self._client: Langfuse | None = None

        if self.enabled:
            self._client = Langfuse(
                public_key=self.config.public_key,
                secret_key=self.config.secret_key,
                host=self.config.host,
            )

    @property
    def active(self) -> bool:
        return self.enabled and self._client is not None

    @contextmanager
    def trace(self, name: str, metadata: dict | None = None):
        """Open the trace of one healing session; flushed when it closes."""
        if not self.active:
            yield None
            return

        session = self._client.trace(name=name, metadata=metadata or {})
        try:
            yield session
        except Exception as e:
            session.update(output={"error": f"{type(e).__name__}: {e}"})
            raise
        finally:
            self._client.flush()

    def span(
        self,
        trace_id: str | None,
        name: str,
        input_data: Any = None,
        output_data: Any = None,
        metadata: dict | None = None,
        level: str = LEVEL_DEFAULT,
    ) -> None:
        if not self.active:
            return

        self._client.span(
            trace_id=trace_id,
            name=name,
            input=input_data,
            output=output_data,
            metadata=metadata or {},
            level=level,
        )

    def update(self, trace: Any, output: Any = None, metadata: dict | None = None) -> None:
        """Attach the session outcome to its trace."""
        if not self.active or trace is None:
            return
        trace.update(output=output, metadata=metadata or {})

    def flush(self) -> None:
        if self._client:
            self._client.flush()
