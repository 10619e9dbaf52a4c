"""
Search Engine
In-memory inverted index over completed page text with ranked,
highlighted snippets.

Matching is case-insensitive whole-word (\\w+ tokens, no stemming). A page
matches when it contains any query term. Score = distinct query terms
present + term-frequency share of the page, so more matched terms always
rank first and ties between equally-matched pages go to the denser page.
"""

import logging
import math
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .models import Page, PageStatus

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens of a text"""
    return TOKEN_PATTERN.findall((text or "").lower())


def query_terms(query: str) -> List[str]:
    """Distinct lowercase terms of a query, in query order"""
    terms = []
    for word in (query or "").lower().split():
        for token in TOKEN_PATTERN.findall(word):
            if token not in terms:
                terms.append(token)
    return terms


def highlight(snippet: str, terms: List[str], tag: str = "mark") -> str:
    """
    Wrap every case-insensitive occurrence of any term in <tag>...</tag>.

    All terms are combined into a single alternation (longest first) so each
    occurrence is marked exactly once.
    """
    if not terms:
        return snippet
    alternation = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    pattern = re.compile(f"({alternation})", re.IGNORECASE)
    return pattern.sub(rf"<{tag}>\1</{tag}>", snippet)


@dataclass
class _IndexedPage:
    page_id: str
    document_id: str
    document_name: str
    page_number: int
    text: str
    confidence: float
    tokens: Counter
    token_count: int
    sequence: int


@dataclass
class SearchResult:
    document_id: str
    document_name: str
    page_id: str
    page_number: int
    snippet: str
    confidence: float
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'documentId': self.document_id,
            'documentName': self.document_name,
            'pageId': self.page_id,
            'pageNumber': self.page_number,
            'snippet': self.snippet,
            'confidence': self.confidence,
            'score': self.score,
        }


@dataclass
class SearchResponse:
    query: str
    page: int
    limit: int
    total: int
    results: List[SearchResult] = field(default_factory=list)

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'results': [r.to_dict() for r in self.results],
            'pagination': {
                'page': self.page,
                'limit': self.limit,
                'total': self.total,
                'pages': self.pages,
            },
            'query': self.query,
        }


class SearchEngine:
    """
    Full-text index of completed pages.

    Thread-safe: workers index pages while callers search.
    """

    def __init__(self, store=None, snippet_radius: int = 100, fallback_length: int = 200):
        """
        Args:
            store: Optional DocumentStore to build the initial index from
            snippet_radius: Characters kept on each side of the first match
            fallback_length: Snippet length when no query word is found
        """
        self.snippet_radius = snippet_radius
        self.fallback_length = fallback_length

        self._pages: Dict[str, _IndexedPage] = {}
        self._postings: Dict[str, set] = {}
        self._sequence = 0
        self._lock = threading.RLock()

        if store is not None:
            self.rebuild(store)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pages)

    # ===== Indexing =====

    def index_page(self, page: Page, document_name: str = "") -> bool:
        """
        Add or replace a page in the index.

        Only completed pages are indexed; anything else is removed instead.

        Returns:
            True if the page is now indexed
        """
        if page.status != PageStatus.COMPLETED or page.text is None:
            self.remove_page(page.id)
            return False

        tokens = Counter(tokenize(page.text))

        with self._lock:
            previous = self._pages.get(page.id)
            if previous is not None:
                self._drop_postings(previous)
                sequence = previous.sequence
            else:
                self._sequence += 1
                sequence = self._sequence

            entry = _IndexedPage(
                page_id=page.id,
                document_id=page.document_id,
                document_name=document_name or (previous.document_name if previous else ""),
                page_number=page.page_number,
                text=page.text,
                confidence=page.confidence,
                tokens=tokens,
                token_count=sum(tokens.values()),
                sequence=sequence,
            )
            self._pages[page.id] = entry
            for token in tokens:
                self._postings.setdefault(token, set()).add(page.id)

        return True

    def remove_page(self, page_id: str) -> bool:
        with self._lock:
            entry = self._pages.pop(page_id, None)
            if entry is None:
                return False
            self._drop_postings(entry)
            return True

    def remove_document(self, document_id: str) -> int:
        """Remove every indexed page of a document, returns the count removed"""
        with self._lock:
            page_ids = [pid for pid, e in self._pages.items() if e.document_id == document_id]
            for page_id in page_ids:
                self.remove_page(page_id)

        if page_ids:
            logger.debug(f"Removed {len(page_ids)} pages of {document_id[:8]}... from index")
        return len(page_ids)

    def rebuild(self, store) -> int:
        """
        Replace the index with every completed page in the store.

        Returns:
            Number of pages indexed
        """
        names: Dict[str, str] = {}

        with self._lock:
            self._pages.clear()
            self._postings.clear()
            self._sequence = 0

            for page in store.iter_completed_pages():
                if page.document_id not in names:
                    document = store.get_document(page.document_id)
                    names[page.document_id] = document.original_name if document else ""
                self.index_page(page, names[page.document_id])

            count = len(self._pages)

        logger.info(f"Search index rebuilt: {count} pages")
        return count

    def _drop_postings(self, entry: _IndexedPage) -> None:
        for token in entry.tokens:
            posting = self._postings.get(token)
            if posting is not None:
                posting.discard(entry.page_id)
                if not posting:
                    del self._postings[token]

    # ===== Querying =====

    def search(self, query: str, page: int = 1, limit: int = 10) -> SearchResponse:
        """
        Ranked search over indexed pages.

        Args:
            query: Search words (whitespace separated, case-insensitive)
            page: 1-based results page
            limit: Results per page

        Returns:
            SearchResponse with the requested slice and the total match count

        Raises:
            ValidationError: On a blank query or invalid pagination
        """
        if query is None or not str(query).strip():
            raise ValidationError("Query parameter is required")
        if page < 1:
            raise ValidationError(f"page must be at least 1, got {page}")
        if limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit}")

        terms = query_terms(query)

        with self._lock:
            candidate_ids = set()
            for term in terms:
                candidate_ids |= self._postings.get(term, set())

            scored = []
            for page_id in candidate_ids:
                entry = self._pages[page_id]
                scored.append((self._score(entry, terms), entry.sequence, entry))

        scored.sort(key=lambda item: (-item[0], item[1]))
        total = len(scored)

        start = (page - 1) * limit
        results = [
            SearchResult(
                document_id=entry.document_id,
                document_name=entry.document_name,
                page_id=entry.page_id,
                page_number=entry.page_number,
                snippet=self.snippet(entry.text, terms),
                confidence=entry.confidence,
                score=score,
            )
            for score, _, entry in scored[start:start + limit]
        ]

        logger.debug(f"Search '{query}': {total} matches, returning {len(results)}")
        return SearchResponse(query=query, page=page, limit=limit, total=total, results=results)

    @staticmethod
    def _score(entry: _IndexedPage, terms: List[str]) -> float:
        matched = [t for t in terms if entry.tokens.get(t)]
        occurrences = sum(entry.tokens[t] for t in matched)
        frequency = occurrences / entry.token_count if entry.token_count else 0.0
        return round(len(matched) + frequency, 6)

    def snippet(self, text: str, terms: List[str]) -> str:
        """
        Highlighted excerpt around the first occurrence of a query word.

        Words are tried in query order; the first one found anywhere in the
        text anchors a window of snippet_radius characters on each side.
        Falls back to the start of the text when no word is found.
        """
        for term in terms:
            match = re.search(re.escape(term), text, re.IGNORECASE)
            if match:
                start = max(0, match.start() - self.snippet_radius)
                end = min(len(text), match.end() + self.snippet_radius)
                return highlight(text[start:end], terms)

        return text[:self.fallback_length]
