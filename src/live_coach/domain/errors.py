class TranscriptionError(Exception):
    retryable: bool = False


class AuthFailure(TranscriptionError):
    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientFailure(TranscriptionError):
    retryable = True

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolFailure(TranscriptionError):
    def __init__(self, message: str, raw: str | bytes | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.raw = raw
        self.status_code = status_code

    @property
    def body(self) -> str:
        if isinstance(self.raw, bytes):
            return self.raw.decode(errors="replace")
        return self.raw or ""


class ConnectTimeout(TranscriptionError):
    retryable = True


class CloseTimeout(TranscriptionError):
    pass


class AbnormalClose(TranscriptionError):
    retryable = True

    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"Connection closed abnormally ({code}): {reason or 'no reason'}")
        self.code = code
        self.reason = reason


class AuthRejected(TranscriptionError):
    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class CredentialExpired(TranscriptionError):
    retryable = True


class SessionClosed(TranscriptionError):
    pass


class InvalidState(TranscriptionError):
    pass


class CaptureFailure(TranscriptionError):
    pass


class RetriesExhausted(TranscriptionError):
    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def failure_body(error: BaseException | None) -> str:
    while isinstance(error, RetriesExhausted):
        error = error.last_error
    return getattr(error, "body", "") or ""


def describe_failure(error: BaseException) -> str:
    body = failure_body(error)
    if body:
        return f"{error} body={body!r}"
    return str(error)
