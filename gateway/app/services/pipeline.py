"""
Render pipeline.

Orchestrates one render request end-to-end:

    Received -> Validated -> FormattersArmed -> Rendering
             -> FormattersDisarmed -> (Emailing) -> Delivering -> Done

- Validation is lenient for optional inputs: malformed ``data``,
  ``options`` and ``formatters`` degrade to empty values instead of
  failing the request.
- The formatter registry is armed for exactly the duration of the engine
  call and restored on every exit path.
- At most one engine call runs at a time, including one abandoned after
  a timeout. A later render waits up to the render timeout for it and
  fails with RenderTimeout if it is still running.
- Email is best-effort. It never fails the request.
- Primary delivery is decided solely by whether an artifact store is
  configured: stored (redirect) or direct (inline bytes).
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterator, Mapping, Optional, Union

from pydantic import ValidationError

from gateway.app.errors import (
    EmailDeliveryFailed,
    RenderFailed,
    RenderTimeout,
    StorageUnavailable,
)
from gateway.app.registry.formatters import (
    Formatter,
    FormatterRegistry,
    parse_custom_formatters,
)
from gateway.app.schemas.render import (
    EmailDirective,
    RenderOptions,
    split_template_name,
)
from gateway.app.services.engine import RenderEngine
from gateway.app.services.mailer import SmtpMailer
from gateway.app.services.storage import ArtifactStore

logger = logging.getLogger(__name__)

Scheduler = Callable[[Callable[[], None]], Any]


# ---------------------------------------------------------------------------
# Request / outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderRequest:
    template_path: Path
    original_filename: str
    data: Any
    options: RenderOptions
    custom_formatters: Mapping[str, Formatter] = field(default_factory=dict)
    email: Union[EmailDirective, Mapping[str, Any], str, None] = None


@dataclass(frozen=True)
class RenderOutcome:
    content: bytes
    output_name: str
    artifact_id: Optional[str] = None

    @property
    def stored(self) -> bool:
        return self.artifact_id is not None


# ---------------------------------------------------------------------------
# Lenient input decoding
# ---------------------------------------------------------------------------


def parse_data(raw: Optional[str]) -> Any:
    """Decode the ``data`` field; anything but a JSON object or array is ``{}``."""
    if raw is None or raw == "":
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("render: data is not JSON, rendering with empty data")
        return {}
    if not isinstance(data, (dict, list)):
        return {}
    return data


def parse_options(raw: Optional[str], original_filename: str) -> RenderOptions:
    """Decode the ``options`` field and fill defaults from the filename."""
    payload: Dict[str, Any] = {}
    if raw:
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError):
            decoded = None
        if isinstance(decoded, dict):
            payload = decoded
        else:
            logger.debug("render: options are not a JSON object, using defaults")

    try:
        options = RenderOptions.model_validate(payload)
    except ValidationError as exc:
        logger.debug("render: invalid options, using defaults: %s", exc)
        options = RenderOptions()

    return options.resolve(original_filename)


def parse_email_directive(
    raw: Union[EmailDirective, Mapping[str, Any], str],
) -> EmailDirective:
    if isinstance(raw, EmailDirective):
        return raw

    payload: Any = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise EmailDeliveryFailed(f"email directive is not JSON: {exc}") from exc

    try:
        return EmailDirective.model_validate(payload)
    except ValidationError as exc:
        raise EmailDeliveryFailed(f"invalid email directive: {exc}") from exc


def build_render_request(
    *,
    template_path: Path,
    original_filename: str,
    data: Optional[str] = None,
    options: Optional[str] = None,
    formatters: Optional[str] = None,
    email: Optional[str] = None,
) -> RenderRequest:
    return RenderRequest(
        template_path=template_path,
        original_filename=original_filename,
        data=parse_data(data),
        options=parse_options(options, original_filename),
        custom_formatters=parse_custom_formatters(formatters),
        email=email or None,
    )


@contextmanager
def spooled_upload(
    stream: BinaryIO,
    original_filename: str,
    upload_dir: Path,
) -> Iterator[Path]:
    """
    Spool an uploaded template to ``upload_dir`` for the engine.

    The temporary file keeps the original extension (the engine derives
    the template format from it) and is removed on every exit path.
    """
    _, template_format = split_template_name(original_filename)
    suffix = f".{template_format}" if template_format else ""

    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix="upload-", suffix=suffix, dir=str(upload_dir)
        )
        with os.fdopen(fd, "wb") as handle:
            shutil.copyfileobj(stream, handle)
    except OSError as exc:
        raise StorageUnavailable(f"Cannot spool upload: {exc}") from exc

    path = Path(temp_path)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class RenderPipeline:
    def __init__(
        self,
        *,
        engine: RenderEngine,
        registry: FormatterRegistry,
        store: Optional[ArtifactStore] = None,
        mailer: Optional[SmtpMailer] = None,
        render_timeout: Optional[float] = 60.0,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.store = store
        self.mailer = mailer
        self.render_timeout = render_timeout
        self._engine_slot = threading.BoundedSemaphore(1)

    def handle(
        self,
        request: RenderRequest,
        schedule: Optional[Scheduler] = None,
    ) -> RenderOutcome:
        """
        Render ``request`` and deliver it.

        ``schedule`` receives the email job when one is due; without it
        the job runs inline.

        Raises:
            RenderFailed: the engine failed; nothing was delivered.
            StorageUnavailable: the rendered document could not be stored.
        """
        content = self.render(request)

        self._dispatch_email(request, content, schedule)

        artifact_id = None
        if self.store is not None:
            artifact_id = self.store.store(content)

        return RenderOutcome(
            content=content,
            output_name=request.options.output_name,
            artifact_id=artifact_id,
        )

    def render(self, request: RenderRequest) -> bytes:
        with self.registry.armed(request.custom_formatters) as formatters:
            return self._invoke_engine(request, formatters)

    def _invoke_engine(
        self,
        request: RenderRequest,
        formatters: Dict[str, Formatter],
    ) -> bytes:
        # The engine slot is held until the worker really finishes, which
        # after a timeout is later than the critical section ends.
        if not self._engine_slot.acquire(timeout=self.render_timeout):
            logger.warning("render: engine still busy with an abandoned render")
            raise RenderTimeout("Rendering engine is busy with an abandoned render")

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="render")
        try:
            # The worker gets its own copy of the formatter table, so an
            # abandoned render cannot observe later requests.
            future = executor.submit(
                self.engine.render,
                request.template_path,
                request.data,
                request.options,
                dict(formatters),
            )
        except BaseException:
            self._engine_slot.release()
            executor.shutdown(wait=False)
            raise
        future.add_done_callback(lambda _: self._engine_slot.release())

        try:
            return future.result(timeout=self.render_timeout)
        except FutureTimeoutError as exc:
            if not future.cancel():
                logger.warning(
                    "render_abandoned",
                    extra={"timeout_seconds": self.render_timeout},
                )
            raise RenderTimeout(
                f"Rendering exceeded {self.render_timeout}s"
            ) from exc
        except RenderFailed:
            raise
        except Exception as exc:
            raise RenderFailed(f"Rendering failed: {exc}") from exc
        finally:
            executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def _dispatch_email(
        self,
        request: RenderRequest,
        content: bytes,
        schedule: Optional[Scheduler],
    ) -> None:
        if request.email is None:
            return

        try:
            directive = parse_email_directive(request.email)
        except EmailDeliveryFailed as exc:
            logger.error("cannot send emails: %s", exc)
            return

        if not directive.to:
            logger.info("no email recipients given, won't send any mails")
            return

        if self.mailer is None:
            logger.warning("email requested but SMTP is not configured; skipping")
            return

        job = partial(
            self.deliver_email,
            directive,
            content,
            request.options.output_name,
        )
        if schedule is None:
            job()
        else:
            schedule(job)

    def deliver_email(
        self,
        directive: EmailDirective,
        content: bytes,
        filename: str,
    ) -> None:
        """Send one email job; failures are logged, never raised."""
        try:
            self.mailer.send(directive, content, filename)
        except EmailDeliveryFailed as exc:
            logger.error("cannot send emails: %s", exc)
        except Exception:
            # Runs after the response; nothing upstream can handle it.
            logger.exception("cannot send emails: unexpected mailer failure")
