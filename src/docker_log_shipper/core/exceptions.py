from typing import Optional, Dict, Any


class ShipperException(Exception):
    def __init__(
        self,
        message: str,
        code: str = "SHIPPER_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ShipperException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class HostError(ShipperException):
    """Failure talking to a Docker host API"""

    def __init__(self, host: str, message: str, code: str = "HOST_ERROR"):
        super().__init__(f"{host}: {message}", code, {"host": host})
        self.host = host


class HostUnreachableError(HostError):
    def __init__(self, host: str, message: str = "Docker host unreachable"):
        super().__init__(host, message, "HOST_UNREACHABLE")


class MalformedResponseError(HostError):
    def __init__(self, host: str, message: str):
        super().__init__(host, message, "MALFORMED_RESPONSE")


class PipelineError(ShipperException):
    pass


class LogStreamError(PipelineError):
    def __init__(self, host: str, container_id: str, message: str):
        super().__init__(
            f"Log stream {host}/{container_id[:12]} failed: {message}",
            "LOG_STREAM_ERROR",
            {"host": host, "container_id": container_id}
        )
        self.host = host
        self.container_id = container_id


class RelayError(PipelineError):
    def __init__(self, address: str, message: str):
        super().__init__(
            f"Relay to {address} failed: {message}",
            "RELAY_ERROR",
            {"address": address}
        )
        self.address = address


class PipelineStateError(PipelineError):
    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Invalid pipeline transition {current} -> {requested}",
            "PIPELINE_STATE_ERROR",
            {"current": current, "requested": requested}
        )
