from __future__ import annotations


class FetchError(Exception):
    def __init__(self, error_type: str, detail: str = ""):
        super().__init__(f"{error_type}: {detail}")
        self.error_type = error_type
        self.detail = detail


class ParseError(Exception):
    pass


class ConfigurationError(Exception):
    """Caller-correctable problem; raised synchronously, never retried."""


class NotConfiguredError(ConfigurationError):
    pass


class InvalidScheduleError(ConfigurationError):
    pass


class ChannelError(ConfigurationError):
    pass


ERROR_TIMEOUT = "TIMEOUT"
ERROR_HTTP = "HTTP_ERROR"
ERROR_UNKNOWN = "UNKNOWN"


def redact_detail(detail: str) -> str:
    detail = detail.strip()
    if len(detail) > 240:
        detail = detail[:240] + "…"
    return detail
