"""
Document format conversion.

This module converts an already rendered document into another format
(e.g. docx -> pdf) by delegating to a headless LibreOffice process.

Trust boundary:
- This module does NOT interpret document content.
- No substitution or formatter evaluation occurs here; it only runs after
  the rendering engine has produced its output.
"""

import subprocess
from pathlib import Path

from gateway.app.errors import RenderFailed, RenderTimeout


class DocumentConversionError(RenderFailed):
    """Raised when converting a rendered document fails."""


def convert_document(
    *,
    input_path: Path,
    target_format: str,
    outdir: Path,
    binary: str = "soffice",
    timeout: float = 60.0,
) -> Path:
    """
    Convert ``input_path`` to ``target_format`` using LibreOffice.

    ``target_format`` is passed to ``--convert-to`` verbatim, so an
    explicit export filter (``pdf:writer_pdf_Export``) may be given.

    Returns:
        Path to the converted document inside ``outdir``.

    Raises:
        DocumentConversionError:
            If LibreOffice cannot be invoked, fails, or produces no output.
        RenderTimeout:
            If LibreOffice does not finish within ``timeout`` seconds.
    """
    extension = target_format.split(":", 1)[0].lstrip(".")
    if not extension:
        raise DocumentConversionError("Empty conversion target format.")

    # Private profile directory: concurrent soffice processes sharing the
    # default profile block each other.
    profile_dir = outdir / "lo-profile"

    command = [
        binary,
        "--headless",
        "--norestore",
        "--nologo",
        f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
        "--convert-to",
        target_format,
        "--outdir",
        str(outdir),
        str(input_path),
    ]

    try:
        process = subprocess.run(
            command,
            cwd=outdir,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise RenderTimeout(
            f"Document conversion to {target_format!r} exceeded {timeout}s"
        ) from exc
    except Exception as exc:
        raise DocumentConversionError(
            f"Failed to invoke LibreOffice ({binary}): {exc}"
        ) from exc

    if process.returncode != 0:
        raise DocumentConversionError(
            "LibreOffice conversion failed.\n\n"
            "STDERR:\n"
            f"{process.stderr.decode('utf-8', errors='ignore')}"
        )

    output = outdir / f"{input_path.stem}.{extension}"
    if not output.exists():
        raise DocumentConversionError(
            "LibreOffice reported success, but no converted output was produced."
        )

    return output
