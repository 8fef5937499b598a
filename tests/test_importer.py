import asyncio

import pytest

from errors import ExternalServiceError, ValidationError
from importer import DocAccepted, DocRejected, import_docs, import_from_catalog, transform, validate_doc

OWNER = "user-1"


def test_transform_takes_first_author_and_isbn():
    docs = [{
        "key": "/works/OL123W",
        "title": "T",
        "author_name": ["A", "B"],
        "first_publish_year": 2020,
        "isbn": ["1", "2"],
        "extra_field": "ignored",
    }]
    result = transform(docs)
    assert len(result) == 1
    assert result[0].catalog_fields() == {
        "ol_key": "/works/OL123W",
        "title": "T",
        "author": "A",
        "first_publish_year": 2020,
        "isbn": "1",
    }


def test_transform_handles_missing_optional_fields():
    result = transform([{"key": "/works/OL456W", "title": "Minimal Book"}])
    assert len(result) == 1
    assert result[0].author is None
    assert result[0].isbn is None
    assert result[0].first_publish_year is None


def test_transform_drops_invalid_documents():
    docs = [
        {"key": "/works/OL789W", "title": "Valid"},
        {"title": "No Key"},
        {"key": "/works/OL000W"},
    ]
    result = transform(docs)
    assert [d.title for d in result] == ["Valid"]


def test_transform_drops_malformed_values():
    docs = [
        None,
        "not a doc",
        {"key": "", "title": "Empty key"},
        {"key": "/works/OL1W", "title": 42},
        {"key": "/works/OL2W", "title": "Bad authors", "author_name": "not-a-list"},
        {"key": "/works/OL3W", "title": "Bad year", "first_publish_year": "soon"},
        {"key": "/works/OL4W", "title": "Kept"},
    ]
    assert [d.ol_key for d in transform(docs)] == ["/works/OL4W"]


def test_transform_preserves_order_and_empty_input():
    docs = [{"key": f"/works/OL{n}W", "title": str(n)} for n in range(5)]
    assert [d.title for d in transform(docs)] == ["0", "1", "2", "3", "4"]
    assert transform([]) == []


def test_validate_doc_returns_tagged_result():
    accepted = validate_doc({"key": "K", "title": "T"})
    assert isinstance(accepted, DocAccepted) and accepted.ok
    rejected = validate_doc({"key": "K"})
    assert isinstance(rejected, DocRejected) and not rejected.ok
    assert "title" in rejected.reason


def test_import_requires_a_list(lib):
    for bad in (None, {}, "docs", 3):
        with pytest.raises(ValidationError, match="docs array is required"):
            import_docs(lib, OWNER, bad)


def test_import_counts_valid_documents_only(lib):
    docs = [{"key": "/works/OL1W", "title": "Valid Book"}, {"title": "Missing Key"}, {"key": "/works/OL2W"}]
    assert import_docs(lib, OWNER, docs) == 1
    assert len(lib.list_books(OWNER)) == 1


def test_import_upserts_by_key(lib):
    import_docs(lib, OWNER, [{"key": "K", "title": "v1"}])
    assert import_docs(lib, OWNER, [{"key": "K", "title": "v2"}]) == 1
    books = lib.list_books(OWNER)
    assert len(books) == 1
    assert books[0].title == "v2"


def test_import_into_master_list(lib):
    import_docs(lib, None, [{"key": "K", "title": "Master"}])
    assert [b.title for b in lib.list_master_books()] == ["Master"]
    assert lib.list_books(OWNER) == []


def test_import_from_catalog(lib):
    from conftest import FakeCatalog

    catalog = FakeCatalog(docs=[{"key": "/works/OL1W", "title": "Eloquent JavaScript", "author_name": ["Haverbeke"]},
                                {"title": "No key"}])
    imported = asyncio.run(import_from_catalog(lib, catalog, "  javascript ", OWNER))
    assert imported == 1
    assert catalog.queries == ["javascript"]
    assert lib.list_books(OWNER)[0].author == "Haverbeke"


def test_import_from_catalog_requires_query(lib):
    from conftest import FakeCatalog

    with pytest.raises(ValidationError, match="query is required"):
        asyncio.run(import_from_catalog(lib, FakeCatalog(), "   ", OWNER))


def test_import_from_catalog_propagates_catalog_errors(lib):
    from conftest import FakeCatalog

    catalog = FakeCatalog(error=ExternalServiceError("Open Library unreachable"))
    with pytest.raises(ExternalServiceError):
        asyncio.run(import_from_catalog(lib, catalog, "python", OWNER))
    assert lib.list_books(OWNER) == []
