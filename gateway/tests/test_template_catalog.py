import pytest

from gateway.app.errors import InvalidRequest
from gateway.app.registry.templates import TemplateCatalog


@pytest.fixture
def catalog(tmp_path):
    catalog = TemplateCatalog(tmp_path / "templates")
    catalog.ensure_root()
    return catalog


def test_add_then_list(catalog):
    catalog.add("invoice.docx", b"PK\x03\x04template")

    templates = catalog.list()

    assert [t.templateId for t in templates] == ["invoice.docx"]
    assert templates[0].filename == "invoice.docx"
    assert templates[0].size == len(b"PK\x03\x04template")
    assert templates[0].updatedAt.tzinfo is not None


def test_add_existing_id_replaces_content(catalog):
    catalog.add("letter.txt", b"first")
    catalog.add("letter.txt", b"second version")

    assert catalog.read("letter.txt") == b"second version"
    assert len(catalog.list()) == 1


def test_remove_is_idempotent(catalog):
    catalog.add("letter.txt", b"hello")

    catalog.remove("letter.txt")
    catalog.remove("letter.txt")
    catalog.remove("never-existed.odt")

    assert catalog.list() == []


def test_list_filters_hidden_and_unknown_formats(catalog):
    root = catalog.root
    (root / ".hidden.docx").write_bytes(b"x")
    (root / "notes.md").write_bytes(b"x")
    (root / "archive.zip").write_bytes(b"x")
    (root / "folder.txt").mkdir()
    (root / "sheet.xlsx").write_bytes(b"x")
    (root / "page.html").write_bytes(b"x")

    ids = [t.templateId for t in catalog.list()]

    assert ids == ["page.html", "sheet.xlsx"]


def test_list_of_missing_directory_is_empty(tmp_path):
    assert TemplateCatalog(tmp_path / "absent").list() == []


@pytest.mark.parametrize(
    "template_id",
    ["", ".", "..", "../escape.docx", "nested/invoice.docx", "..\\win.docx", ".env"],
)
def test_rejects_ids_that_are_not_plain_file_names(catalog, template_id):
    with pytest.raises(InvalidRequest):
        catalog.add(template_id, b"x")


def test_add_leaves_no_temporary_files(catalog):
    catalog.add("a.txt", b"a")

    assert sorted(p.name for p in catalog.root.iterdir()) == ["a.txt"]
