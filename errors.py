"""Exception types raised across the gateway."""


class GatewayError(Exception):
    """Base exception for the assistant gateway."""


class AdmissionConflict(GatewayError):
    """Another run is still active on the session; the client should retry later."""


class RunInProgressError(AdmissionConflict):
    """The remote service refused a message because a run is active on the thread."""


class RemoteServiceError(GatewayError):
    """A call to the remote assistant service failed before streaming started."""


class StreamTransportError(GatewayError):
    """Iterating the remote event stream failed."""


class ToolError(GatewayError):
    """Base for failures that are fed back to the run as a failure tool result."""


class ArgumentParseError(ToolError):
    """Tool-call arguments are not a JSON object."""


class HandlerNotFound(ToolError):
    """No handler source provides the requested function."""


class HandlerExecutionError(ToolError):
    """The resolved handler raised."""
