from typing import Any, Dict, List, Optional

import httpx

from config import Config
from models import BookRequest, BookResponse, UserResponse


class CatalogApiError(Exception):
    """Raised when the catalog API answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class CatalogClient:
    """Thin wrapper around the catalog HTTP API.

    Any ``httpx.Client`` can be passed in (FastAPI's ``TestClient`` included);
    otherwise one is created against ``Config.CATALOG_API_URL``. The session
    cookie set by sign-in lives in the underlying client's cookie jar.
    """

    def __init__(self, http: Optional[httpx.Client] = None, base_url: Optional[str] = None):
        self._owns_http = http is None
        self.http = http or httpx.Client(base_url=base_url or Config.CATALOG_API_URL)

    def close(self):
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "CatalogClient":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = self.http.request(method, url, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            raise CatalogApiError(response.status_code, message or f"Request failed with status {response.status_code}")
        return body

    # -------- books --------
    def list_books(self, search: Optional[str] = None, tag: Optional[str] = None, sort: str = "asc") -> List[BookResponse]:
        params = {"sort": sort}
        if search:
            params["search"] = search
        if tag:
            params["tag"] = tag
        body = self._request("GET", "/books", params=params)
        return [BookResponse.model_validate(book) for book in body.get("books") or []]

    def get_book(self, book_id: str) -> BookResponse:
        body = self._request("GET", f"/books/{book_id}")
        return BookResponse.model_validate(body["book"])

    def create_book(self, book: BookRequest) -> BookResponse:
        body = self._request("POST", "/books", json=book.model_dump())
        return BookResponse.model_validate(body["book"])

    def update_book(self, book_id: str, book: BookRequest) -> BookResponse:
        body = self._request("PUT", f"/books/{book_id}", json=book.model_dump())
        return BookResponse.model_validate(body["book"])

    def delete_book(self, book_id: str) -> str:
        body = self._request("DELETE", f"/books/{book_id}")
        return body.get("message", "")

    # -------- auth --------
    def sign_up(self, email: str, password: str) -> UserResponse:
        body = self._request("POST", "/auth/signup", json={"email": email, "password": password})
        return UserResponse.model_validate(body["user"])

    def sign_in(self, email: str, password: str) -> UserResponse:
        body = self._request("POST", "/auth/login", json={"email": email, "password": password})
        return UserResponse.model_validate(body["user"])

    def sign_out(self) -> None:
        self._request("POST", "/auth/logout")

    def current_user(self) -> Optional[UserResponse]:
        try:
            body = self._request("GET", "/auth/me")
        except CatalogApiError as e:
            if e.status_code == 401:
                return None
            raise
        return UserResponse.model_validate(body["user"])
