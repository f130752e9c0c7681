import base64
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from gateway.app.core.config import Settings
from gateway.app.errors import EmailDeliveryFailed
from gateway.app.schemas.render import EmailDirective, RenderOptions

USERNAME = "gateway"
PASSWORD = "s3cret"


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    """
    Settings isolated from the host environment.

    Every path-like value points into ``tmp_path``; optional capabilities
    are off unless explicitly overridden.
    """
    values: Dict[str, Any] = {
        "username": USERNAME,
        "password": PASSWORD,
        "storage_path": None,
        "template_dir": tmp_path / "templates",
        "upload_dir": tmp_path / "uploads",
        "smtp_host": None,
        "soffice_binary": str(tmp_path / "missing-soffice"),
        "render_timeout_seconds": 10.0,
    }
    values.update(overrides)
    return Settings(**values)


def auth_headers(username: str = USERNAME, password: str = PASSWORD) -> Dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


class FakeMailer:
    """
    Records email jobs instead of talking SMTP.

    ``fail=True`` makes every send raise EmailDeliveryFailed, the same
    way a transport error would.
    """

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Tuple[EmailDirective, bytes, str]] = []

    def send(self, directive: EmailDirective, attachment: bytes, filename: str) -> None:
        if self.fail:
            raise EmailDeliveryFailed("smtp connection refused")
        self.sent.append((directive, attachment, filename))


class RecordingEngine:
    """
    Engine stand-in that records the formatter names each call observed.

    ``delay`` keeps the call inside the critical section long enough for
    concurrent callers to pile up at the lock.
    """

    def __init__(self, *, delay: float = 0.0, result: bytes = b"rendered") -> None:
        self.delay = delay
        self.result = result
        self.calls: List[Dict[str, Any]] = []
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def render(
        self,
        template_path: Path,
        data: Any,
        options: RenderOptions,
        formatters: Mapping[str, Any],
    ) -> bytes:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            self.calls.append(
                {
                    "data": data,
                    "formatters": set(formatters),
                    "options": options,
                }
            )
            return self.result
        finally:
            with self._guard:
                self.active -= 1


class FailingEngine:
    def __init__(self, exc: Optional[Exception] = None) -> None:
        self.exc = exc or RuntimeError("engine exploded")

    def render(self, template_path, data, options, formatters) -> bytes:
        raise self.exc
