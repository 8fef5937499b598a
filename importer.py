"""Open Library search documents -> book drafts -> per-owner upserts."""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, List, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, StringConstraints
from starlette.concurrency import run_in_threadpool

from book import Book
from errors import ValidationError
from library import Library

logger = logging.getLogger(__name__)

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]


class OpenLibraryDoc(BaseModel):
    """The part of an Open Library search ``doc`` the importer reads."""

    model_config = ConfigDict(extra="ignore")

    key: NonEmptyStr
    title: NonEmptyStr
    author_name: Optional[List[NonEmptyStr]] = None
    first_publish_year: Optional[int] = None
    isbn: Optional[List[NonEmptyStr]] = None

    def to_draft(self) -> Book:
        return Book(
            ol_key=self.key,
            title=self.title,
            author=self.author_name[0] if self.author_name else None,
            first_publish_year=self.first_publish_year,
            isbn=self.isbn[0] if self.isbn else None,
        )


@dataclass
class DocAccepted:
    draft: Book
    ok: bool = True


@dataclass
class DocRejected:
    reason: str
    ok: bool = False


DocResult = Union[DocAccepted, DocRejected]


def validate_doc(raw: Any) -> DocResult:
    """Validate one raw document without raising."""
    try:
        doc = OpenLibraryDoc.model_validate(raw)
    except pydantic.ValidationError as e:
        return DocRejected(reason=str(e))
    return DocAccepted(draft=doc.to_draft())


def transform(raw_docs: List[Any]) -> List[Book]:
    """Turn raw search documents into drafts, silently dropping the invalid ones.

    Output order follows the order of the valid input documents.
    """
    drafts = []
    for raw in raw_docs:
        result = validate_doc(raw)
        if result.ok:
            drafts.append(result.draft)
        else:
            logger.debug("Skipping catalog document: %s", result.reason)
    return drafts


def import_docs(library: Library, owner: Optional[str], raw_docs: Any) -> int:
    """Upsert every valid document into ``owner``'s list (None = master list).

    Returns how many drafts were written; created and updated records are not
    told apart. Each upsert commits on its own, so a failure part-way leaves
    the earlier documents imported.
    """
    if not isinstance(raw_docs, list):
        raise ValidationError("docs array is required")
    drafts = transform(raw_docs)
    for draft in drafts:
        library.upsert_book(owner, draft)
    logger.info("Imported %d of %d catalog documents for %s", len(drafts), len(raw_docs), owner or "master list")
    return len(drafts)


async def import_from_catalog(library: Library, catalog, query: str, owner: Optional[str]) -> int:
    """Run a catalog search and import its documents; the writes run in the threadpool."""
    if not query or not query.strip():
        raise ValidationError("query is required")
    data = await catalog.search(query.strip())
    return await run_in_threadpool(import_docs, library, owner, data.get("docs") or [])
