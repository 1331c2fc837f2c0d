"""Snapshot documents of a publication and their arrangement into a tree."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PublicationDocument:
    """A frozen copy of a document taken when a space is published."""

    publication_id: str
    original_doc_id: str
    title: str
    slug: str
    content: str = ""
    excerpt: Optional[str] = None
    parent_id: Optional[str] = None
    order_index: int = 0
    word_count: int = 0
    reading_time: int = 0
    created_at: Optional[datetime] = field(default_factory=_now)
    id: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PublicationDocument":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class PublicationDocumentNode:
    id: str
    title: str
    slug: str
    excerpt: Optional[str]
    order_index: int
    children: list["PublicationDocumentNode"] = field(default_factory=list)


def build_document_tree(
    documents: Iterable[PublicationDocument],
) -> list[PublicationDocumentNode]:
    """Arrange snapshots by their original parent links, ordered by ``order_index``.

    Documents without an id are skipped; those whose parent is not in the
    publication become roots.
    """
    documents = list(documents)
    published_by_original = {d.original_doc_id: d.id for d in documents if d.id is not None}

    nodes: dict[str, PublicationDocumentNode] = {}
    children: dict[str, list[str]] = {}
    roots: list[str] = []

    for doc in documents:
        if doc.id is None:
            continue
        nodes[doc.id] = PublicationDocumentNode(
            id=doc.id,
            title=doc.title,
            slug=doc.slug,
            excerpt=doc.excerpt,
            order_index=doc.order_index,
        )
        parent = published_by_original.get(doc.parent_id) if doc.parent_id is not None else None
        if parent is not None:
            children.setdefault(parent, []).append(doc.id)
        else:
            if doc.parent_id is not None:
                log.info("Parent %s not published, treating %s as root", doc.parent_id, doc.id)
            roots.append(doc.id)

    def build(doc_id: str) -> Optional[PublicationDocumentNode]:
        node = nodes.pop(doc_id, None)
        if node is None:
            return None
        child_ids = children.get(doc_id)
        if child_ids:
            node.children = [c for c in map(build, child_ids) if c is not None]
            node.children.sort(key=lambda child: child.order_index)
        return node

    tree = [n for n in map(build, roots) if n is not None]
    tree.sort(key=lambda n: n.order_index)
    return tree