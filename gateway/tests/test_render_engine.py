"""
Tests for the rendering engine.

The engine is exercised directly with the default formatter table; no
registry, pipeline or HTTP layer is involved.
"""

import io
import zipfile

import pytest

from gateway.app.errors import RenderFailed
from gateway.app.registry.formatters import DEFAULT_FORMATTERS, ExpressionFormatter
from gateway.app.schemas.render import RenderOptions
from gateway.app.services.converter import DocumentConversionError
from gateway.app.services.engine import RenderEngine
from gateway.tests.fixtures.document_factory import (
    docx_template,
    document_text,
    odt_template,
)


@pytest.fixture
def engine(tmp_path):
    return RenderEngine(soffice_binary=str(tmp_path / "missing-soffice"))


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_bytes(content if isinstance(content, bytes) else content.encode("utf-8"))
    return path


def _options(filename, **values):
    return RenderOptions.model_validate(values).resolve(filename)


# ---------------------------------------------------------------------------
# Text templates
# ---------------------------------------------------------------------------

def test_renders_text_template(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "Hello {{ d.name }}, your total is {{ d.total }}!\n")

    rendered = engine.render(
        template,
        {"name": "World", "total": 42},
        _options("letter.txt"),
        DEFAULT_FORMATTERS,
    )

    assert rendered == b"Hello World, your total is 42!\n"


def test_missing_values_render_empty(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "[{{ d.customer.address.city }}]")

    rendered = engine.render(template, {}, _options("letter.txt"), DEFAULT_FORMATTERS)

    assert rendered == b"[]"


def test_html_templates_are_autoescaped(engine, tmp_path):
    template = _write(tmp_path, "page.html", "<p>{{ d.name }}</p>")

    rendered = engine.render(
        template, {"name": "<b>Ada</b>"}, _options("page.html"), DEFAULT_FORMATTERS
    )

    assert rendered == b"<p>&lt;b&gt;Ada&lt;/b&gt;</p>"


def test_uses_the_formatter_table_it_is_given(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "{{ d.name | shout }} {{ d.total | formatC(2, 'EUR') }}")
    formatters = {**DEFAULT_FORMATTERS, "shout": ExpressionFormatter("shout", "value | upper ~ '!'")}

    rendered = engine.render(
        template, {"name": "ada", "total": 10}, _options("letter.txt"), formatters
    )

    assert rendered == b"ADA! 10.00 EUR"


def test_unknown_formatter_fails_the_render(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "{{ d.name | shout }}")

    with pytest.raises(RenderFailed):
        engine.render(template, {"name": "ada"}, _options("letter.txt"), DEFAULT_FORMATTERS)


def test_template_syntax_error_fails_the_render(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "{% if d.name %}unterminated")

    with pytest.raises(RenderFailed):
        engine.render(template, {"name": "ada"}, _options("letter.txt"), DEFAULT_FORMATTERS)


def test_complement_and_options_are_exposed(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "{{ c.company }} -> {{ options.outputName }}")

    rendered = engine.render(
        template,
        {},
        _options("letter.txt", complement={"company": "ACME"}),
        DEFAULT_FORMATTERS,
    )

    assert rendered == b"ACME -> letter.txt"


# ---------------------------------------------------------------------------
# Zip-based office templates
# ---------------------------------------------------------------------------

def test_renders_docx_document_part(engine, tmp_path):
    template = _write(tmp_path, "invoice.docx", docx_template("Dear {{ d.name }}, total {{ d.total }}"))

    rendered = engine.render(
        template,
        {"name": "Ada & Co", "total": 10},
        _options("invoice.docx"),
        DEFAULT_FORMATTERS,
    )

    body = document_text(rendered)
    assert "Dear Ada &amp; Co, total 10" in body
    with zipfile.ZipFile(io.BytesIO(rendered)) as archive:
        assert archive.namelist() == ["[Content_Types].xml", "_rels/.rels", "word/document.xml"]


def test_docx_rendering_is_deterministic(engine, tmp_path):
    template = _write(tmp_path, "invoice.docx", docx_template("{{ d.name }}"))
    options = _options("invoice.docx")

    first = engine.render(template, {"name": "Ada"}, options, DEFAULT_FORMATTERS)
    second = engine.render(template, {"name": "Ada"}, options, DEFAULT_FORMATTERS)

    assert first == second


def test_odt_mimetype_stays_first_and_stored(engine, tmp_path):
    template = _write(tmp_path, "letter.odt", odt_template("{{ d.name | upper }}"))

    rendered = engine.render(template, {"name": "ada"}, _options("letter.odt"), DEFAULT_FORMATTERS)

    with zipfile.ZipFile(io.BytesIO(rendered)) as archive:
        infos = archive.infolist()
        assert infos[0].filename == "mimetype"
        assert infos[0].compress_type == zipfile.ZIP_STORED
        assert "ADA" in archive.read("content.xml").decode("utf-8")
        # Binary parts are copied verbatim, never rendered.
        assert archive.read("Pictures/logo.png").endswith(b"{{ not a template }}")


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

def test_same_format_skips_conversion(engine, tmp_path):
    template = _write(tmp_path, "letter.txt", "plain")

    rendered = engine.render(
        template, {}, _options("letter.txt", convertTo="TXT"), DEFAULT_FORMATTERS
    )

    assert rendered == b"plain"


def test_template_without_extension_is_plain_text(engine, tmp_path):
    template = _write(tmp_path, "README", "Hello {{ d.name }}")

    rendered = engine.render(template, {"name": "Ada"}, _options("README"), DEFAULT_FORMATTERS)

    assert rendered == b"Hello Ada"


def test_conversion_without_converter_fails_the_render(engine, tmp_path):
    template = _write(tmp_path, "invoice.docx", docx_template("{{ d.name }}"))

    with pytest.raises(DocumentConversionError):
        engine.render(
            template, {"name": "Ada"}, _options("invoice.docx", convertTo="pdf"), DEFAULT_FORMATTERS
        )
