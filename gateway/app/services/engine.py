"""
Rendering engine.

This module merges a template with a data payload and a formatter table
and returns the rendered document bytes:

    RenderEngine.render(template_path, data, options, formatters) -> bytes

Supported templates:
- zip-based office documents (docx, xlsx, pptx, odt, ods, odp): every XML
  part is rendered, all other parts are copied verbatim;
- anything else is treated as UTF-8 text (txt, html, xml, csv, ...).

Template syntax is Jinja2. The render context exposes:
- ``d``        the request data
- ``c``        ``options.complement``
- ``options``  the resolved rendering options

Design guarantees:
- Templates are client-supplied and run in a Jinja2 sandbox.
- The formatter table is passed in per call; this module never reads
  the shared formatter registry.
- Format conversion is delegated to LibreOffice, only when the requested
  format differs from the template's own.
- Every failure surfaces as RenderFailed.
"""

import io
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, Mapping

from jinja2 import ChainableUndefined
from jinja2.sandbox import SandboxedEnvironment

from gateway.app.errors import RenderFailed
from gateway.app.registry.formatters import Formatter
from gateway.app.schemas.render import DEFAULT_TEMPLATE_FORMAT, RenderOptions
from gateway.app.services.converter import convert_document

ZIP_MAGIC = b"PK\x03\x04"

XML_PART_SUFFIXES = (".xml", ".rels")

AUTOESCAPE_SUFFIXES = (".html", ".htm", ".xml", ".svg")


class RenderEngine:
    """Jinja2-backed renderer with optional LibreOffice conversion."""

    def __init__(
        self,
        *,
        soffice_binary: str = "soffice",
        conversion_timeout: float = 60.0,
    ) -> None:
        self.soffice_binary = soffice_binary
        self.conversion_timeout = conversion_timeout

    def render(
        self,
        template_path: Path,
        data: Any,
        options: RenderOptions,
        formatters: Mapping[str, Formatter],
    ) -> bytes:
        """
        Render ``template_path`` with ``data``.

        The template's own format is taken from its file suffix; a
        template without one is plain text. When ``options.convert_to``
        names a different format the rendered document is converted
        before it is returned.
        """
        try:
            source = template_path.read_bytes()
        except OSError as exc:
            raise RenderFailed(f"Cannot read template: {exc}") from exc

        source_format = (
            template_path.suffix.lstrip(".").lower() or DEFAULT_TEMPLATE_FORMAT
        )

        context: Dict[str, Any] = {
            "d": data,
            "c": options.complement,
            "options": options.model_dump(by_alias=True),
        }

        try:
            if source.startswith(ZIP_MAGIC):
                env = self._environment(formatters, autoescape=True)
                rendered = self._render_archive(source, env, context)
            else:
                env = self._environment(
                    formatters,
                    autoescape=template_path.suffix.lower() in AUTOESCAPE_SUFFIXES,
                )
                rendered = self._render_text(source, env, context)
        except RenderFailed:
            raise
        except Exception as exc:
            raise RenderFailed(f"Template rendering failed: {exc}") from exc

        target_format = options.convert_to or source_format
        if target_format.split(":", 1)[0].lower() == source_format:
            return rendered

        return self._convert(rendered, source_format, target_format)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _environment(
        formatters: Mapping[str, Formatter],
        *,
        autoescape: bool,
    ) -> SandboxedEnvironment:
        env = SandboxedEnvironment(
            autoescape=autoescape,
            undefined=ChainableUndefined,
            keep_trailing_newline=True,
        )
        # The request's formatter table replaces Jinja's filter table
        # wholesale; the baseline already carries Jinja's built-ins.
        env.filters = dict(formatters)
        return env

    @staticmethod
    def _render_text(
        source: bytes,
        env: SandboxedEnvironment,
        context: Dict[str, Any],
    ) -> bytes:
        template = env.from_string(source.decode("utf-8"))
        return template.render(context).encode("utf-8")

    @staticmethod
    def _render_archive(
        source: bytes,
        env: SandboxedEnvironment,
        context: Dict[str, Any],
    ) -> bytes:
        output = io.BytesIO()

        with zipfile.ZipFile(io.BytesIO(source)) as archive, zipfile.ZipFile(
            output, "w"
        ) as rendered:
            # Entry order and per-entry compression are preserved; ODF
            # requires ``mimetype`` to stay first and uncompressed.
            for info in archive.infolist():
                payload = archive.read(info)
                if info.filename.endswith(XML_PART_SUFFIXES):
                    template = env.from_string(payload.decode("utf-8"))
                    payload = template.render(context).encode("utf-8")
                rendered.writestr(info, payload)

        return output.getvalue()

    def _convert(
        self,
        rendered: bytes,
        source_format: str,
        target_format: str,
    ) -> bytes:
        with tempfile.TemporaryDirectory() as tmp:
            tmpdir = Path(tmp)
            rendered_path = tmpdir / f"document.{source_format}"
            rendered_path.write_bytes(rendered)

            converted = convert_document(
                input_path=rendered_path,
                target_format=target_format,
                outdir=tmpdir,
                binary=self.soffice_binary,
                timeout=self.conversion_timeout,
            )
            return converted.read_bytes()
