import json
import uuid
import time
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pydantic import ValidationError
from sqlalchemy.orm import Session
from sqlalchemy import select, delete, func, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError

from models import (
    BookRequest,
    BookResponse,
    BookEnvelope,
    BooksEnvelope,
    MessageResponse,
    SignUpRequest,
    LoginRequest,
    UserResponse,
    UserEnvelope,
    first_error_message,
)
from database import Book, User
from db_session import get_db_session, db_manager
from config import Config
from security import hash_password, verify_password, create_session_token, read_session_token
from logging_utils import StructuredLogger

from prometheus_fastapi_instrumentator import Instrumentator

app = FastAPI(title="Book Catalog API", version="1.0.0")

instrumentator = Instrumentator(
    excluded_handlers=["/health", "/metrics", "/docs", "/openapi.json"],
    env_var_name="ENABLE_METRICS",
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

logger = StructuredLogger("books")

BOOK_NOT_FOUND = "Book not found"
EMAIL_TAKEN = "Email already registered"
DEPRECATED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:])
        messages.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Validation failed"})


# Starlette's base class also covers router 404/405 responses
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.time()
    logger.info("Request started", method=request.method, path=str(request.url.path), request_id=request_id)
    response = await call_next(request)
    latency = round((time.time() - start_time) * 1000, 2)
    logger.info(
        "Request completed",
        method=request.method,
        path=str(request.url.path),
        status=response.status_code,
        latency=latency,
        request_id=request_id,
    )
    response.headers["X-Request-ID"] = request_id
    return response


def store_error_message(exc: SQLAlchemyError) -> str:
    """The driver's own message when there is one, otherwise SQLAlchemy's."""
    return str(getattr(exc, "orig", None) or exc)


async def read_book_request(request: Request) -> BookRequest:
    """Parse and normalize a book body; raises a 400 before the store is touched."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    try:
        return BookRequest.model_validate(payload)
    except ValidationError as e:
        message = first_error_message(e)
        logger.warning("Validation error", path=str(request.url.path), error=message)
        raise HTTPException(status_code=400, detail=message)


def tag_filter(db: Session, tag: str):
    if db.get_bind().dialect.name == "postgresql":
        return type_coerce(Book.tags, JSONB).contains([tag])
    tag_values = func.json_each(Book.tags).table_valued("value")
    return select(tag_values.c.value).where(tag_values.c.value == tag).correlate(Book).exists()


@app.get("/books", response_model=BooksEnvelope)
async def list_books(
    search: Optional[str] = Query(None, description="Case-insensitive substring of the title"),
    tag: Optional[str] = Query(None, description="Only books carrying this tag"),
    sort: str = Query("asc", description="Title order: asc or desc"),
    db: Session = Depends(get_db_session),
):
    try:
        stmt = select(Book)
        if search:
            stmt = stmt.where(Book.title.icontains(search, autoescape=True))
        if tag:
            stmt = stmt.where(tag_filter(db, tag))
        # Only "asc" (or an empty value) is ascending; anything else sorts descending
        if (sort or "asc") == "asc":
            stmt = stmt.order_by(Book.title.asc())
        else:
            stmt = stmt.order_by(Book.title.desc())

        books = db.execute(stmt).scalars().all()
        responses: List[BookResponse] = [BookResponse.model_validate(book) for book in books]
        return BooksEnvelope(books=responses)
    except SQLAlchemyError as e:
        logger.error("Database error fetching books", error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))


@app.get("/books/{book_id}", response_model=BookEnvelope)
async def get_book(book_id: str, db: Session = Depends(get_db_session)):
    try:
        book = db.execute(select(Book).where(Book.id == book_id)).scalar_one()
        return BookEnvelope(book=BookResponse.model_validate(book))
    except NoResultFound:
        raise HTTPException(status_code=404, detail=BOOK_NOT_FOUND)
    except SQLAlchemyError as e:
        logger.error("Database error fetching book", book_id=book_id, error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))


@app.post("/books", response_model=BookEnvelope, status_code=201)
async def create_book(request: Request, db: Session = Depends(get_db_session)):
    book_data = await read_book_request(request)
    try:
        book = Book(
            title=book_data.title,
            author=book_data.author,
            tags=book_data.tags,
            cover_image=book_data.cover_image,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        logger.info("Book created successfully", book_id=book.id, title=book.title)
        return BookEnvelope(book=BookResponse.model_validate(book))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error creating book", error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))


@app.put("/books/{book_id}", response_model=BookEnvelope)
async def update_book(book_id: str, request: Request, db: Session = Depends(get_db_session)):
    book_data = await read_book_request(request)
    try:
        book = db.execute(select(Book).where(Book.id == book_id)).scalar_one()

        # Full replace: fields missing from the body are cleared
        book.title = book_data.title
        book.author = book_data.author
        book.tags = book_data.tags
        book.cover_image = book_data.cover_image
        book.updated_at = func.now()

        db.commit()
        db.refresh(book)
        logger.info("Book updated successfully", book_id=book.id, title=book.title)
        return BookEnvelope(book=BookResponse.model_validate(book))
    except NoResultFound:
        raise HTTPException(status_code=404, detail=BOOK_NOT_FOUND)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error updating book", book_id=book_id, error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))


@app.delete("/books/{book_id}", response_model=MessageResponse)
async def delete_book(book_id: str, db: Session = Depends(get_db_session)):
    try:
        # No existence check: deleting an unknown id still succeeds
        db.execute(delete(Book).where(Book.id == book_id))
        db.commit()
        logger.info("Book deleted", book_id=book_id)
        return MessageResponse(message="Book deleted successfully")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error deleting book", book_id=book_id, error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))


# -------- Deprecated aliases --------
@app.api_route("/recipes", methods=DEPRECATED_METHODS, include_in_schema=False)
async def recipes_moved():
    raise HTTPException(status_code=410, detail="This endpoint has been moved to /books")


@app.api_route("/recipes/{recipe_id}", methods=DEPRECATED_METHODS, include_in_schema=False)
async def recipe_moved(recipe_id: str):
    raise HTTPException(status_code=410, detail="This endpoint has been moved to /books/{id}")


# -------- Auth --------
def set_session_cookie(response: Response, user: User) -> None:
    response.set_cookie(
        key=Config.AUTH_COOKIE_NAME,
        value=create_session_token(user.id),
        max_age=Config.AUTH_TOKEN_TTL_MINUTES * 60,
        httponly=True,
        secure=Config.AUTH_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def get_current_user(request: Request, db: Session = Depends(get_db_session)) -> User:
    token = request.cookies.get(Config.AUTH_COOKIE_NAME)
    user_id = read_session_token(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


@app.post("/auth/signup", response_model=UserEnvelope, status_code=201)
async def signup(payload: SignUpRequest, response: Response, db: Session = Depends(get_db_session)):
    try:
        existing = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
        if existing is not None:
            raise HTTPException(status_code=400, detail=EMAIL_TAKEN)

        user = User(email=payload.email, password_hash=hash_password(payload.password))
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError:
        # Lost a race with a concurrent sign-up for the same email
        db.rollback()
        logger.warning("Duplicate sign-up", email=payload.email)
        raise HTTPException(status_code=400, detail=EMAIL_TAKEN)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error signing up", error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))

    logger.info("User signed up", user_id=user.id)
    set_session_cookie(response, user)
    return UserEnvelope(user=UserResponse.model_validate(user))


@app.post("/auth/login", response_model=UserEnvelope)
async def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db_session)):
    try:
        user = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("Database error signing in", error=str(e))
        raise HTTPException(status_code=500, detail=store_error_message(e))

    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("Failed sign-in", email=payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    set_session_cookie(response, user)
    return UserEnvelope(user=UserResponse.model_validate(user))


@app.post("/auth/logout", response_model=MessageResponse)
async def logout(response: Response):
    response.delete_cookie(Config.AUTH_COOKIE_NAME, path="/")
    return MessageResponse(message="Signed out")


@app.get("/auth/me", response_model=UserEnvelope)
async def me(user: User = Depends(get_current_user)):
    return UserEnvelope(user=UserResponse.model_validate(user))


@app.get("/health")
async def health_check():
    if not db_manager.check_health():
        logger.error("Health check failed")
        raise HTTPException(status_code=503, detail="Database connection failed")
    return {"status": "healthy", "service": "books"}


if __name__ == "__main__":
    import uvicorn
    Config.validate_required()
    db_manager.create_tables()
    uvicorn.run("main:app", host="0.0.0.0", port=Config.PORT, reload=False, log_level="info")
