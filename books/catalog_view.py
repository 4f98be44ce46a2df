"""
Client-side state of the catalog screen.

``CatalogView`` keeps the full book list fetched from ``GET /books`` and
derives what is shown from three independent controls: a title search, a
tag selection and a sort order. The fetched list is a read-through cache:
a successful create/update/delete invalidates it and the next read goes
back to the API. Nothing is applied optimistically, so a failed call
leaves the view exactly as it was.
"""

import locale
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from client import CatalogApiError, CatalogClient
from logging_utils import StructuredLogger
from models import BookRequest, BookResponse, first_error_message

logger = StructuredLogger("catalog-view")

SORT_ASC = "asc"
SORT_DESC = "desc"


def title_sort_key(title: str):
    # strxfrm follows the active collation; casefold keeps "apple" next to "Apple"
    return (locale.strxfrm(title.casefold()), title)


def filter_and_sort(
    books: Iterable[BookResponse],
    search_term: str = "",
    selected_tag: str = "",
    sort_order: str = SORT_ASC,
) -> List[BookResponse]:
    filtered = list(books)

    if search_term:
        needle = search_term.lower()
        filtered = [book for book in filtered if needle in book.title.lower()]

    if selected_tag:
        filtered = [book for book in filtered if book.tags and selected_tag in book.tags]

    filtered.sort(key=lambda book: title_sort_key(book.title), reverse=sort_order == SORT_DESC)
    return filtered


def distinct_tags(books: Iterable[BookResponse]) -> List[str]:
    """Every non-blank tag of the unfiltered list, once, sorted."""
    return sorted({tag for book in books for tag in (book.tags or []) if tag and tag.strip()})


@dataclass(frozen=True)
class Notification:
    level: str
    message: str


@dataclass(frozen=True)
class PendingDelete:
    book_id: str
    title: str


class CatalogView:
    def __init__(self, client: CatalogClient, notify: Optional[Callable[[Notification], None]] = None):
        self.client = client
        self.search_term = ""
        self.selected_tag = ""
        self.sort_order = SORT_ASC
        self.pending_delete: Optional[PendingDelete] = None
        self.notifications: List[Notification] = []
        self._notify = notify
        self._books: List[BookResponse] = []
        self._stale = True

    # -------- notifications --------
    def _push(self, level: str, message: str):
        notification = Notification(level, message)
        self.notifications.append(notification)
        if self._notify is not None:
            self._notify(notification)

    def _fail(self, action: str, error: Exception):
        message = error.message if isinstance(error, CatalogApiError) else str(error)
        logger.warning("Catalog call failed", action=action, error=message)
        self._push("error", f"Error {action}: {message}")

    # -------- cache --------
    def invalidate(self):
        self._stale = True

    def refresh(self) -> bool:
        """Fetch the full list; on failure the previous list is kept.

        A failed fetch is not retried on the next read, only by another
        explicit refresh or after the next invalidate().
        """
        self._stale = False
        try:
            books = self.client.list_books()
        except (CatalogApiError, httpx.HTTPError) as e:
            self._fail("fetching books", e)
            return False
        self._books = books
        return True

    @property
    def books(self) -> List[BookResponse]:
        if self._stale:
            self.refresh()
        return list(self._books)

    # -------- derived state --------
    def set_search(self, term: str):
        self.search_term = term

    def select_tag(self, tag: str):
        self.selected_tag = tag

    def set_sort_order(self, order: str):
        if order not in (SORT_ASC, SORT_DESC):
            raise ValueError(f"Unknown sort order: {order}")
        self.sort_order = order

    def visible_books(self) -> List[BookResponse]:
        return filter_and_sort(self.books, self.search_term, self.selected_tag, self.sort_order)

    def all_tags(self) -> List[str]:
        return distinct_tags(self.books)

    def empty_message(self) -> Optional[str]:
        books = self.books
        if filter_and_sort(books, self.search_term, self.selected_tag, self.sort_order):
            return None
        if not books:
            return "No books yet"
        return "No books found"

    # -------- mutations --------
    def _validated(self, title: str, author: str, tags: Optional[List[str]], cover_image: Optional[str]) -> Optional[BookRequest]:
        try:
            return BookRequest.model_validate(
                {"title": title, "author": author, "tags": tags, "cover_image": cover_image}
            )
        except ValidationError as e:
            self._push("error", first_error_message(e))
            return None

    def create_book(self, title: str, author: str, tags: Optional[List[str]] = None, cover_image: Optional[str] = None) -> Optional[BookResponse]:
        book = self._validated(title, author, tags, cover_image)
        if book is None:
            return None
        try:
            created = self.client.create_book(book)
        except (CatalogApiError, httpx.HTTPError) as e:
            self._fail("creating book", e)
            return None
        self._push("success", "Book created successfully!")
        self.invalidate()
        return created

    def load_book(self, book_id: str) -> Optional[BookResponse]:
        try:
            return self.client.get_book(book_id)
        except (CatalogApiError, httpx.HTTPError) as e:
            self._fail("loading book", e)
            return None

    def update_book(self, book_id: str, title: str, author: str, tags: Optional[List[str]] = None, cover_image: Optional[str] = None) -> Optional[BookResponse]:
        book = self._validated(title, author, tags, cover_image)
        if book is None:
            return None
        try:
            updated = self.client.update_book(book_id, book)
        except (CatalogApiError, httpx.HTTPError) as e:
            self._fail("updating book", e)
            return None
        self._push("success", "Book updated successfully!")
        self.invalidate()
        return updated

    def request_delete(self, book: BookResponse) -> PendingDelete:
        self.pending_delete = PendingDelete(book.id, book.title)
        return self.pending_delete

    def cancel_delete(self):
        self.pending_delete = None

    def confirm_delete(self) -> bool:
        if self.pending_delete is None:
            return False
        try:
            self.client.delete_book(self.pending_delete.book_id)
        except (CatalogApiError, httpx.HTTPError) as e:
            self._fail("deleting book", e)
            return False
        self._push("success", "Book deleted successfully")
        self.pending_delete = None
        self.invalidate()
        self.refresh()
        return True
