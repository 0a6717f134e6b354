"""Exception hierarchy shared by the editor bridge and the MCP tool proxy."""

from __future__ import annotations

from typing import Any, Mapping


class BuilderError(Exception):
    """Base class for all builder exceptions, with optional context metadata."""

    def __init__(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.context:
            parts = ", ".join(f"{key}={value}" for key, value in self.context.items())
            return f"{self.message} ({parts})"
        return self.message


class ConfigurationError(BuilderError):
    """Raised when environment configuration is invalid."""


class ProjectPathError(BuilderError):
    """Raised when a res:// path resolves outside the project root."""


class SceneEditError(BuilderError):
    """Raised when a node edit cannot be applied to a scene (unknown path, name clash)."""


# --- Proxy-side transport failures ---


class BridgeError(BuilderError):
    """Base for every failure talking to the editor bridge over HTTP."""


class EditorNotRespondingError(BridgeError):
    """The bridge accepted the call but did not answer before the caller's timeout.

    The side effect of the aborted request may still complete inside the editor.
    """


class EditorUnavailableError(BridgeError):
    """The bridge could not be reached at all (connection refused, reset, DNS)."""


class BridgeHttpError(BridgeError):
    """The bridge answered with a non-2xx status or a body that is not JSON."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, context)


# --- Bridge-side failures ---


class MalformedRequestError(BuilderError):
    """The bytes received on a bridge connection are not a usable HTTP request."""


class EditorIntegrationUnavailable(BuilderError):
    """An editor host primitive cannot be served in the current environment."""
