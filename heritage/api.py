"""FastAPI app: citation resolver, image proxy, gallery uploads and the CRUD
endpoints behind the admin panel, trip builder and notebook.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

import httpx
import structlog
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AuthError, AuthUser
from .config import settings
from .db import get_session
from .deps import get_current_user, get_http_client, get_storage, require_admin
from .images import ImageProcessingError, assert_acceptable, proxy_resize
from .logging_config import setup_logging
from .pipelines import bibliography, collections, icons, notebook, portfolio, reviews, sites, trips, wishlists
from .pipelines.gallery import GalleryUploadError, list_site_images, upload_with_variants
from .pipelines.records import NotFoundError, OwnershipError, RecordsError, ValidationError
from .pipelines.resolver import ResolverError, batch_resolve, resolve_citation
from .storage import StorageClient, StorageError

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    ok: bool = False
    error: str
    detail: str | None = None


class ResolveRequest(BaseModel):
    input: str | None = None


class BatchResolveRequest(BaseModel):
    inputs: list[str] = Field(min_length=1, max_length=100)


class HardDeleteRequest(BaseModel):
    reviewId: str | None = None


class PortfolioUpdate(BaseModel):
    photo_id: str
    order_index: int


class PortfolioReorderRequest(BaseModel):
    updates: list[PortfolioUpdate] = Field(default_factory=list)


class CreateTripRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    is_public: bool | None = None


class AddTripItemRequest(BaseModel):
    site_id: str
    order_index: int | None = Field(default=None, ge=0)


class TripItemPatch(BaseModel):
    id: str
    order_index: int | None = Field(default=None, ge=0)
    date_in: str | None = Field(default=None, max_length=10)
    date_out: str | None = Field(default=None, max_length=10)
    notes: str | None = None


class TripItemsBatchRequest(BaseModel):
    items: list[TripItemPatch]


class ReorderItemsRequest(BaseModel):
    item_ids: list[str]


class CreateNoteRequest(BaseModel):
    type: Literal["note", "checklist", "todo"] = "note"


class UpdateNoteRequest(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    type: Literal["note", "checklist", "todo"] | None = None
    content: dict[str, Any] | None = None
    content_text: str | None = None
    is_archived: bool | None = None


class PersonDTO(BaseModel):
    role: Literal["author", "editor", "translator"] = "author"
    kind: Literal["person", "organization"] = "person"
    given: str | None = None
    family: str | None = None
    literal: str | None = None


class SourceRequest(BaseModel):
    title: str = Field(min_length=1)
    type: str = "book"
    container_title: str | None = None
    publisher: str | None = None
    year_int: int | None = Field(default=None, ge=1, le=3000)
    doi: str | None = None
    isbn: str | None = None
    issn: str | None = None
    url: str | None = None
    notes: str | None = None
    people: list[PersonDTO] = Field(default_factory=list)


class SourcePatchRequest(BaseModel):
    title: str | None = None
    type: str | None = None
    container_title: str | None = None
    publisher: str | None = None
    year_int: int | None = Field(default=None, ge=1, le=3000)
    doi: str | None = None
    isbn: str | None = None
    issn: str | None = None
    url: str | None = None
    notes: str | None = None
    people: list[PersonDTO] | None = None


class SaveCSLRequest(BaseModel):
    csl: dict[str, Any]
    listing_id: str | None = None


class AttachRequest(BaseModel):
    biblio_id: str


class MoveRequest(BaseModel):
    direction: Literal[-1, 1]


class TaxonomiesRequest(BaseModel):
    category_ids: list[int] = Field(default_factory=list)
    region_ids: list[int] = Field(default_factory=list)


class CreateWishlistRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    is_public: bool = False


class WishlistPatchRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    is_public: bool | None = None
    cover_image_url: str | None = None
    notes: str | None = None


class WishlistSiteRequest(BaseModel):
    site_id: str


class ImageRefDTO(BaseModel):
    site_image_id: str | None = None
    storage_path: str | None = None
    image_url: str | None = None
    site_id: str | None = None
    alt_text: str | None = None
    caption: str | None = None
    credit: str | None = None

    def to_ref(self) -> collections.ImageRef:
        return collections.ImageRef(**self.model_dump())


class CreatePhotoCollectionRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    is_public: bool = False


class CollectionCoverRequest(BaseModel):
    collected_id: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    app.state.http_client = httpx.AsyncClient(timeout=settings.backend.timeout_seconds)
    logger.info(f"{settings.app_name} starting up ({settings.environment.value})")

    yield

    # Shutdown
    await app.state.http_client.aclose()
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Heritage-site CMS and travel planner backend with a citation resolver",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    """Tag every log line written while serving a request with its method and path."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)
    return await call_next(request)


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


# Exception handlers
@app.exception_handler(ResolverError)
async def resolver_error_handler(request, exc: ResolverError):
    """Handle unresolvable citation input."""
    logger.warning(f"Resolver error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "resolver_error", exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    logger.warning(f"Validation error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "validation_error", exc)


@app.exception_handler(ImageProcessingError)
async def image_error_handler(request, exc: ImageProcessingError):
    logger.warning(f"Image processing error: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "image_error", exc)


@app.exception_handler(AuthError)
async def auth_error_handler(request, exc: AuthError):
    return _error(status.HTTP_401_UNAUTHORIZED, "not_authenticated", exc)


@app.exception_handler(OwnershipError)
async def ownership_error_handler(request, exc: OwnershipError):
    logger.warning(f"Forbidden: {exc}")
    return _error(status.HTTP_403_FORBIDDEN, "forbidden", exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "not_found", exc)


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    """Handle failures of the hosted storage service."""
    logger.error(f"Storage error: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "storage_error", exc)


@app.exception_handler(GalleryUploadError)
async def gallery_error_handler(request, exc: GalleryUploadError):
    logger.error(f"Gallery upload error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "gallery_upload_error", exc)


@app.exception_handler(RecordsError)
async def records_error_handler(request, exc: RecordsError):
    logger.error(f"Records error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "records_error", exc)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


# Citations
@app.post("/api/cite/resolve")
async def cite_resolve(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
) -> dict:
    """Resolve a URL, DOI, ISBN or title into ranked CSL-JSON candidates.

    A missing, unparsable or oddly shaped body counts as missing input.
    """
    try:
        body = ResolveRequest.model_validate(await request.json())
    except ValueError:
        body = ResolveRequest()
    resolution = await resolve_citation(client, body.input or "")
    return resolution.to_json()


@app.post("/api/cite/batch-resolve")
async def cite_batch_resolve(
    request: BatchResolveRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
) -> dict:
    results = await batch_resolve(client, request.inputs)
    return {"ok": True, "results": results}


# Images
@app.get("/api/img-proxy")
async def img_proxy(
    url: str | None = None,
    w: int = Query(default=settings.images.proxy_default_width),
    q: int = Query(default=settings.images.proxy_default_quality),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """Fetch an image, downscale and recompress it as JPEG."""
    if not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing url")
    try:
        upstream = await client.get(url, follow_redirects=True)
        upstream.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Image proxy fetch failed for {url}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Fetch failed") from e

    body = proxy_resize(upstream.content, w, q)
    return Response(content=body, media_type="image/jpeg", headers={"Cache-Control": IMMUTABLE_CACHE})


@app.post("/api/gallery/upload")
async def gallery_upload(
    file: UploadFile | None = File(default=None),
    siteId: str | None = Form(default=None),
    key: str | None = Form(default=None),
    storage: StorageClient = Depends(get_storage),
    _admin: AuthUser = Depends(require_admin),
) -> dict:
    """Upload an original gallery image plus its downscaled variants."""
    if file is None or not siteId or not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing file, siteId or key")
    try:
        content = await file.read()
        assert_acceptable(file.content_type, len(content))
        await upload_with_variants(storage, content, file.content_type, siteId, key)
    finally:
        await file.close()
    return {"ok": True, "siteId": siteId, "key": key}


@app.get("/api/admin/listings/{listing_id}/gallery")
async def gallery_list(
    listing_id: str,
    storage: StorageClient = Depends(get_storage),
    _admin: AuthUser = Depends(require_admin),
) -> list[dict]:
    return await list_site_images(storage, listing_id)


# Reviews
@app.post("/api/reviews/hard-delete")
async def review_hard_delete(
    request: HardDeleteRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> dict:
    if not request.reviewId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing reviewId")
    await reviews.hard_delete_review(session, storage, request.reviewId, user.id)
    return {"ok": True}


@app.get("/api/reviews/mine")
async def my_reviews(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    rows = await reviews.list_user_reviews(session, user.id)
    count = await reviews.count_user_visits(session, user.id)
    return {
        "reviews": [
            {
                "id": r.id,
                "site_id": r.site_id,
                "rating": r.rating,
                "review_text": r.review_text,
                "visited_year": r.visited_year,
                "visited_month": r.visited_month,
                "status": r.status,
                "created_at": r.created_at,
            }
            for r in rows
        ],
        "badge": reviews.progress_to_next_badge(count),
    }


@app.post("/api/reviews/{review_id}/soft-delete")
async def review_soft_delete(
    review_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await reviews.soft_delete_review(session, review_id, user.id)
    return {"ok": True}


@app.get("/api/reviews/{review_id}/helpful")
async def review_helpful_state(
    review_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    return {"voted": await reviews.has_user_voted(session, review_id, user.id)}


@app.post("/api/reviews/{review_id}/helpful")
async def review_toggle_helpful(
    review_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    voted = await reviews.toggle_helpful(session, review_id, user.id)
    return {"voted": voted}


# Portfolio
@app.post("/api/portfolio/reorder")
async def portfolio_reorder(
    request: PortfolioReorderRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    count = await portfolio.reorder_portfolio(session, user.id, [u.model_dump() for u in request.updates])
    return {"ok": True, "count": count}


@app.post("/api/portfolio/prefs")
async def portfolio_prefs(
    body: dict[str, Any],
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    patch = await portfolio.update_portfolio_prefs(session, user.id, body)
    return {"ok": True, **patch}


# Trips
@app.get("/api/trips")
async def trips_list(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return [trips.trip_to_dict(t) for t in await trips.list_user_trips(session, user.id)]


@app.post("/api/trips", status_code=status.HTTP_201_CREATED)
async def trips_create(
    request: CreateTripRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    trip = await trips.create_trip(session, user.id, request.name, request.is_public)
    return trips.trip_to_dict(trip)


@app.get("/api/trips/by-slug/{username}/{slug}")
async def trips_by_slug(
    username: str,
    slug: str,
    session: AsyncSession = Depends(get_session),
) -> dict:
    trip = await trips.get_trip_by_username_slug(session, username, slug)
    return await trips.get_trip_with_items(session, trip.id)


@app.get("/api/trips/{trip_id}")
async def trips_get(
    trip_id: str,
    session: AsyncSession = Depends(get_session),
) -> dict:
    data = await trips.get_trip_with_items(session, trip_id)
    data["url"] = await trips.get_trip_url_by_id(session, trip_id)
    return data


@app.post("/api/trips/{trip_id}/items", status_code=status.HTTP_201_CREATED)
async def trips_add_item(
    trip_id: str,
    request: AddTripItemRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    item = await trips.add_site_to_trip(session, user.id, trip_id, request.site_id, request.order_index)
    return trips.item_to_dict(item)


@app.patch("/api/trips/{trip_id}/items")
async def trips_update_items(
    trip_id: str,
    request: TripItemsBatchRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    patches = [item.model_dump(exclude_unset=True) for item in request.items]
    count = await trips.update_trip_items_batch(session, user.id, patches, trip_id)
    return {"ok": True, "count": count}


@app.post("/api/trips/{trip_id}/reorder")
async def trips_reorder(
    trip_id: str,
    request: ReorderItemsRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await trips.reorder_trip_items(session, user.id, trip_id, request.item_ids)
    return {"ok": True}


@app.delete("/api/trips/items/{item_id}")
async def trips_delete_item(
    item_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await trips.delete_trip_item(session, user.id, item_id)
    return {"ok": True}


# Notebook
@app.get("/api/notes")
async def notes_list(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return [notebook.note_to_dict(n) for n in await notebook.list_notes(session, user.id)]


@app.post("/api/notes", status_code=status.HTTP_201_CREATED)
async def notes_create(
    request: CreateNoteRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    return notebook.note_to_dict(await notebook.create_note(session, user.id, request.type))


@app.get("/api/notes/{note_id}")
async def notes_get(
    note_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    note = await notebook.get_note(session, user.id, note_id)
    if note is None:
        raise NotFoundError("Note not found")
    return notebook.note_to_dict(note)


@app.patch("/api/notes/{note_id}")
async def notes_update(
    note_id: str,
    request: UpdateNoteRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    note = await notebook.update_note(session, user.id, note_id, request.model_dump(exclude_unset=True))
    return notebook.note_to_dict(note)


@app.delete("/api/notes/{note_id}")
async def notes_delete(
    note_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await notebook.delete_note(session, user.id, note_id)
    return {"ok": True}


# Wishlists
@app.get("/api/wishlists")
async def wishlists_list(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return await wishlists.list_wishlists(session, user.id)


@app.post("/api/wishlists", status_code=status.HTTP_201_CREATED)
async def wishlists_create(
    request: CreateWishlistRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    wishlist = await wishlists.create_wishlist(session, user.id, request.name, request.is_public)
    return wishlists.wishlist_to_dict(wishlist, 0)


@app.get("/api/wishlists/containing/{site_id}")
async def wishlists_containing(
    site_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    return {"wishlist_ids": await wishlists.lists_containing_site(session, user.id, site_id)}


@app.patch("/api/wishlists/{wishlist_id}")
async def wishlists_update(
    wishlist_id: str,
    request: WishlistPatchRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    patch = request.model_dump(exclude_unset=True)
    return wishlists.wishlist_to_dict(await wishlists.update_wishlist(session, user.id, wishlist_id, patch))


@app.delete("/api/wishlists/{wishlist_id}")
async def wishlists_delete(
    wishlist_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await wishlists.delete_wishlist(session, user.id, wishlist_id)
    return {"ok": True}


@app.get("/api/wishlists/{wishlist_id}/items")
async def wishlists_items(
    wishlist_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return await wishlists.list_items(session, user.id, wishlist_id)


@app.post("/api/wishlists/{wishlist_id}/items", status_code=status.HTTP_201_CREATED)
async def wishlists_add_site(
    wishlist_id: str,
    request: WishlistSiteRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    item = await wishlists.add_site(session, user.id, wishlist_id, request.site_id)
    return {"id": item.id, "wishlist_id": item.wishlist_id, "site_id": item.site_id}


@app.delete("/api/wishlists/{wishlist_id}/items/{site_id}")
async def wishlists_remove_site(
    wishlist_id: str,
    site_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await wishlists.remove_site(session, user.id, wishlist_id, site_id)
    return {"ok": True}


# Saved images and photo collections
@app.get("/api/collected-images")
async def collected_list(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> list[dict]:
    return await collections.list_collected(session, storage, user.id)


@app.post("/api/collected-images/status")
async def collected_status(
    request: ImageRefDTO,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    image = request.to_ref()
    return {
        "collected": await collections.is_collected(session, user.id, image),
        "collection_ids": await collections.collections_containing(session, user.id, image),
    }


@app.post("/api/collected-images/toggle")
async def collected_toggle(
    request: ImageRefDTO,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    return {"result": await collections.toggle_collected(session, user.id, request.to_ref())}


@app.get("/api/photo-collections")
async def photo_collections_list(
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> list[dict]:
    return await collections.list_photo_collections(session, storage, user.id)


@app.post("/api/photo-collections", status_code=status.HTTP_201_CREATED)
async def photo_collections_create(
    request: CreatePhotoCollectionRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    collection = await collections.create_photo_collection(session, user.id, request.name, request.is_public)
    return collections.photo_collection_to_dict(collection)


@app.delete("/api/photo-collections/{collection_id}")
async def photo_collections_delete(
    collection_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await collections.delete_photo_collection(session, user.id, collection_id)
    return {"ok": True}


@app.get("/api/photo-collections/{collection_id}/items")
async def photo_collection_items(
    collection_id: str,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> list[dict]:
    return await collections.list_collection_items(session, storage, user.id, collection_id)


@app.post("/api/photo-collections/{collection_id}/items", status_code=status.HTTP_201_CREATED)
async def photo_collection_add(
    collection_id: str,
    request: ImageRefDTO,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    item = await collections.add_to_collection(session, user.id, collection_id, request.to_ref())
    return {"id": item.id, "collection_id": item.collection_id, "collected_id": item.collected_id}


@app.post("/api/photo-collections/{collection_id}/items/remove")
async def photo_collection_remove(
    collection_id: str,
    request: ImageRefDTO,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await collections.remove_from_collection(session, user.id, collection_id, request.to_ref())
    return {"ok": True}


@app.post("/api/photo-collections/{collection_id}/reorder")
async def photo_collection_reorder(
    collection_id: str,
    request: ReorderItemsRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await collections.reorder_collection_items(session, user.id, collection_id, request.item_ids)
    return {"ok": True}


@app.put("/api/photo-collections/{collection_id}/cover")
async def photo_collection_cover(
    collection_id: str,
    request: CollectionCoverRequest,
    user: AuthUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await collections.set_collection_cover(session, user.id, collection_id, request.collected_id)
    return {"ok": True}


# Admin: bibliography
@app.get("/api/admin/bibliography/search")
async def biblio_search(
    q: str = "",
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return [bibliography.source_to_dict(s) for s in await bibliography.search_library(session, q)]


@app.post("/api/admin/bibliography", status_code=status.HTTP_201_CREATED)
async def biblio_create(
    request: SourceRequest,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    src = await bibliography.create_source(session, request.model_dump())
    return bibliography.source_to_dict(src)


@app.patch("/api/admin/bibliography/{biblio_id}")
async def biblio_update(
    biblio_id: str,
    request: SourcePatchRequest,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    src = await bibliography.update_source(session, biblio_id, request.model_dump(exclude_unset=True))
    return bibliography.source_to_dict(src)


@app.post("/api/admin/bibliography/from-csl", status_code=status.HTTP_201_CREATED)
async def biblio_from_csl(
    request: SaveCSLRequest,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Save a resolver candidate to the library, optionally attaching it to a listing."""
    src = await bibliography.create_source_from_csl(session, request.csl)
    if request.listing_id:
        await bibliography.attach(session, request.listing_id, src.id)
    return bibliography.source_to_dict(src)


@app.get("/api/admin/listings/{listing_id}/bibliography")
async def biblio_for_listing(
    listing_id: str,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return await bibliography.load_for_listing(session, listing_id)


@app.post("/api/admin/listings/{listing_id}/bibliography")
async def biblio_attach(
    listing_id: str,
    request: AttachRequest,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await bibliography.attach(session, listing_id, request.biblio_id)
    return {"ok": True}


@app.delete("/api/admin/listings/{listing_id}/bibliography/{biblio_id}")
async def biblio_detach(
    listing_id: str,
    biblio_id: str,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await bibliography.detach(session, listing_id, biblio_id)
    return {"ok": True}


@app.post("/api/admin/listings/{listing_id}/bibliography/{biblio_id}/move")
async def biblio_move(
    listing_id: str,
    biblio_id: str,
    request: MoveRequest,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    moved = await bibliography.move(session, listing_id, biblio_id, request.direction)
    return {"ok": True, "moved": moved}


# Admin: listings
@app.post("/api/admin/listings", status_code=status.HTTP_201_CREATED)
async def listings_create(
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    return sites.site_to_dict(await sites.create_listing(session))


@app.post("/api/admin/listings/{listing_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def listings_duplicate(
    listing_id: str,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    return sites.site_to_dict(await sites.duplicate_listing(session, listing_id))


@app.patch("/api/admin/listings/{listing_id}")
async def listings_update(
    listing_id: str,
    body: dict[str, Any],
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    site = await sites.update_listing(session, listing_id, body)
    return sites.site_to_dict(site)


@app.put("/api/admin/listings/{listing_id}/taxonomies")
async def listings_taxonomies(
    listing_id: str,
    request: TaxonomiesRequest,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await sites.set_taxonomies(session, listing_id, request.category_ids, request.region_ids)
    return {"ok": True}


@app.delete("/api/admin/listings/{listing_id}")
async def listings_soft_delete(
    listing_id: str,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await sites.soft_delete_listing(session, listing_id)
    return {"ok": True}


@app.post("/api/admin/listings/{listing_id}/restore")
async def listings_restore(
    listing_id: str,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await sites.restore_listing(session, listing_id)
    return {"ok": True}


# Admin: icons
@app.get("/api/admin/icons")
async def icons_list(
    q: str | None = None,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    return [icons.icon_to_dict(i) for i in await icons.list_icons(session, q)]


@app.post("/api/admin/icons", status_code=status.HTTP_201_CREATED)
async def icons_create(
    file: UploadFile = File(...),
    name: str = Form(...),
    tags: str = Form(default=""),
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> dict:
    try:
        raw = (await file.read()).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError("SVG must be UTF-8 text") from e
    finally:
        await file.close()
    icon = await icons.create_icon(session, storage, name, raw, tags)
    return icons.icon_to_dict(icon)


@app.delete("/api/admin/icons/{icon_id}")
async def icons_delete(
    icon_id: str,
    _admin: AuthUser = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> dict:
    await icons.delete_icon(session, storage, icon_id)
    return {"ok": True}


# Public read models
@app.get("/api/heritage/{slug}")
async def heritage_page(
    slug: str,
    session: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> dict:
    return await sites.heritage_detail(session, storage, slug)


@app.get("/api/sites/nearby")
async def sites_nearby(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Sites around a point, read from the Explore query keys."""
    params = sites.read_nearby_params(dict(request.query_params))
    if params["center_lat"] is None or params["center_lng"] is None:
        raise ValidationError("clat and clng are required")
    radius = params["radius_km"] or sites.DEFAULT_RADIUS_KM
    hits = await sites.sites_within_radius(
        session,
        params["center_lat"],
        params["center_lng"],
        radius,
        request.query_params.get("name"),
    )
    if sites.is_nearby_active({**params, "radius_km": radius}):
        hits = [h for h in hits if h["id"] != params["center_site_id"]]
    return {"center_site_id": params["center_site_id"], "radius_km": radius, "sites": hits}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "resolve_citation": "/api/cite/resolve",
            "batch_resolve": "/api/cite/batch-resolve",
            "image_proxy": "/api/img-proxy",
            "gallery_upload": "/api/gallery/upload",
            "review_hard_delete": "/api/reviews/hard-delete",
            "docs": "/docs",
        },
    }
