"""Dataclass models representing DB rows and store results.

These are plain Python objects, not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class User:
    id: int
    open_id: str
    name: Optional[str]
    email: Optional[str]
    role: str
    created_at: int
    updated_at: int


@dataclass
class Project:
    id: int
    user_id: int
    name: str
    description: Optional[str]
    thumbnail: Optional[str]
    settings: dict[str, Any]
    created_at: int
    updated_at: int


@dataclass
class Page:
    id: int
    project_id: int
    name: str
    slug: str
    is_home_page: bool
    settings: dict[str, Any]
    created_at: int
    updated_at: int


@dataclass
class Element:
    id: int
    page_id: int
    parent_id: Optional[int]
    element_type: str
    order: int
    content: Optional[str]
    styles: dict[str, Any]
    attributes: dict[str, Any]
    responsive_styles: dict[str, Any]
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ElementSpec:
    """Input record for :func:`~openflow.db.elements.create_elements_batch`."""

    page_id: int
    element_type: str
    parent_id: Optional[int] = None
    # Index of an earlier spec in the same batch to use as parent.
    parent_index: Optional[int] = None
    order: int = 0
    content: Optional[str] = None
    styles: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    responsive_styles: dict[str, Any] = field(default_factory=dict)


@dataclass
class Conversation:
    id: int
    user_id: int
    project_id: Optional[int]
    page_id: Optional[int]
    provider: str
    model: Optional[str]
    messages: list[dict[str, Any]]
    context: dict[str, Any]
    created_at: int
    updated_at: int


@dataclass
class ProviderConfig:
    id: int
    user_id: int
    provider: str
    api_key: Optional[str]
    base_url: Optional[str]
    model: Optional[str]
    settings: dict[str, Any]
    is_active: bool
    created_at: int
    updated_at: int


@dataclass
class LibraryItem:
    """A saved template or reusable component."""

    id: int
    kind: str
    user_id: Optional[int]
    name: str
    description: Optional[str]
    thumbnail: Optional[str]
    category: Optional[str]
    structure: list[dict[str, Any]]
    is_public: bool
    created_at: int
    updated_at: int


# ---------------------------------------------------------------------------
# Bulk operation results
# ---------------------------------------------------------------------------

@dataclass
class DuplicateResult:
    project_id: int
    pages_count: int
    elements_count: int


@dataclass
class DeleteProjectResult:
    deleted_pages: int
    deleted_elements: int


@dataclass
class IntegrityReport:
    project_id: int
    project_exists: bool
    pages_count: int = 0
    elements_count: int = 0
    # (element_id, missing_or_foreign_parent_id)
    orphaned_elements: list[tuple[int, int]] = field(default_factory=list)
    cycles: list[int] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.project_exists and not self.orphaned_elements and not self.cycles

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "is_valid": self.is_valid}


@dataclass
class BatchFailure:
    index: int
    error: BaseException


@dataclass
class BatchResult:
    """Outcome of :func:`~openflow.db.transaction.with_batch_transaction`.

    ``complete`` is true only when every member succeeded; a best-effort run
    with failures is ``partial`` and must be reported as such.
    """

    successful: int = 0
    failed: int = 0
    errors: list[BatchFailure] = field(default_factory=list)
    results: list[Any] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.failed == 0

    @property
    def partial(self) -> bool:
        return self.failed > 0 and self.successful > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "complete": self.complete,
            "partial": self.partial,
            "errors": [
                {"index": e.index, "message": str(e.error)} for e in self.errors
            ],
        }
