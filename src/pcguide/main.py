from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .builder import compare_parts, evaluate
from .builds import BuildService
from .config import Settings, configure_logging, load_settings
from .db import GuidesRepository, PartsRepository
from .errors import InvalidRequestError, PartNotFoundError, PCGuideError
from .schemas import (
    BatchRequest,
    CartAddRequest,
    CartUpdateRequest,
    CheckoutRequest,
    GuideCreate,
    GuideUpdate,
    PartCreate,
    PartFilters,
    PartIdsRequest,
    PCRequest,
    SavedBuildCreate,
    SavedBuildUpdate,
)
from .service import CartService, PCRequestSender, ReceiptSender
from .tools import Toolset

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"


def _require_part_ids(payload: PartIdsRequest) -> list[str]:
    if not payload.part_ids:
        raise InvalidRequestError("partIds must be a non-empty array")
    return payload.part_ids


def create_app(
    settings: Settings | None = None,
    receipt_sender: Optional[ReceiptSender] = None,
    request_sender: Optional[PCRequestSender] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    repo = PartsRepository(settings.parts_path)
    tool_map = Toolset(repo).register()
    carts = CartService(
        repo,
        store=settings.cart_store,
        db_path=settings.db_path,
        tax_rate=settings.tax_rate,
        currency=settings.currency,
        region=settings.region,
        receipt_sender=receipt_sender,
        request_sender=request_sender,
        session_ttl_seconds=settings.session_ttl_seconds,
        session_cleanup_interval_seconds=settings.session_cleanup_interval_seconds,
    )
    builds = BuildService(repo, store=settings.cart_store, db_path=settings.db_path)
    guides = GuidesRepository(settings.guides_path)

    app = FastAPI(title="PC Guide Pro")
    app.state.repo = repo
    app.state.carts = carts
    app.state.builds = builds
    app.state.guides = guides
    app.state.tool_map = tool_map
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PCGuideError)
    async def handle_pcguide_error(request: Request, exc: PCGuideError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in errors
        )
        return JSONResponse(status_code=400, content={"error": message or "Invalid request"})

    @app.get("/api/health")
    def health():
        return {"status": "ok", "parts": len(repo.all_parts())}

    # === Parts ===

    @app.get("/api/parts")
    def list_parts(
        type: Optional[str] = None,
        brand: Optional[str] = None,
        min_price: Optional[float] = Query(default=None, alias="minPrice"),
        max_price: Optional[float] = Query(default=None, alias="maxPrice"),
        query: Optional[str] = None,
    ):
        parts = repo.search_parts(type, brand, min_price, max_price, query)
        return [p.model_dump(by_alias=True) for p in parts]

    @app.get("/api/parts/browse")
    def browse_parts(
        type: Optional[str] = None,
        brand: Optional[str] = None,
        min_price: Optional[float] = Query(default=None, alias="minPrice"),
        max_price: Optional[float] = Query(default=None, alias="maxPrice"),
        query: Optional[str] = None,
        in_stock: Optional[bool] = Query(default=None, alias="inStock"),
        sort_by: str = Query(default="name", alias="sortBy"),
        sort_order: Literal["asc", "desc"] = Query(default="asc", alias="sortOrder"),
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ):
        filters = PartFilters(
            type=type,
            brand=brand,
            min_price=min_price,
            max_price=max_price,
            query=query,
            in_stock=in_stock,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
        return repo.search_parts_advanced(filters).model_dump(by_alias=True)

    @app.get("/api/parts/brands")
    def list_brands():
        return repo.all_brands()

    @app.get("/api/parts/types")
    def list_types():
        return repo.all_types()

    @app.post("/api/parts/batch")
    def parts_batch(payload: BatchRequest):
        return [p.model_dump(by_alias=True) for p in repo.get_parts_by_ids(payload.ids)]

    @app.get("/api/parts/{part_id}")
    def get_part(part_id: str):
        part = repo.find_by_id(part_id)
        if part is None:
            raise PartNotFoundError(part_id)
        return part.model_dump(by_alias=True)

    @app.post("/api/parts", status_code=201)
    def create_part(payload: PartCreate):
        return repo.add_part(payload).model_dump(by_alias=True)

    # === Compatibility ===

    @app.post("/api/compatibility/check")
    def check_compatibility(payload: PartIdsRequest):
        parts = repo.get_parts_by_ids(_require_part_ids(payload))
        verdict = evaluate(parts)
        logger.debug("compatibility check over %d parts: %s", len(parts), verdict.compatible)
        return verdict.model_dump(by_alias=True)

    @app.post("/api/power/estimate")
    def estimate_power(payload: PartIdsRequest):
        return tool_map["estimate_power"].invoke({"part_ids": _require_part_ids(payload)})

    @app.post("/api/compare")
    def compare(payload: PartIdsRequest):
        if len(payload.part_ids) < 2:
            raise InvalidRequestError("Need at least 2 part IDs to compare")
        parts = [repo.find_by_id(part_id) for part_id in payload.part_ids]
        return compare_parts([p for p in parts if p is not None]).model_dump(by_alias=True)

    # === Cart & checkout ===

    @app.get("/api/cart")
    def get_cart(session_id: str = Header(default="anonymous", alias=SESSION_HEADER)):
        return carts.get_cart(session_id).model_dump(by_alias=True)

    @app.post("/api/cart/add")
    def add_to_cart(
        payload: CartAddRequest,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        cart = carts.add_item(session_id, payload.part_id, payload.quantity)
        return {"success": True, "message": "Item added to cart", "cart": cart.model_dump(by_alias=True)}

    @app.patch("/api/cart/update")
    def update_cart(
        payload: CartUpdateRequest,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        cart = carts.update_item(session_id, payload.part_id, payload.quantity)
        return {"success": True, "message": "Cart updated", "cart": cart.model_dump(by_alias=True)}

    @app.delete("/api/cart/remove/{part_id}")
    def remove_from_cart(
        part_id: str,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        cart = carts.remove_item(session_id, part_id)
        return {"success": True, "message": "Item removed from cart", "cart": cart.model_dump(by_alias=True)}

    @app.delete("/api/cart/clear")
    def clear_cart(session_id: str = Header(default="anonymous", alias=SESSION_HEADER)):
        carts.clear(session_id)
        return {"success": True, "message": "Cart cleared"}

    @app.post("/api/checkout/complete")
    def checkout(
        payload: CheckoutRequest,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        result = carts.checkout(session_id, payload.customer_name, payload.customer_email)
        return result.model_dump(by_alias=True)

    @app.get("/api/orders/{order_number}")
    def get_order(order_number: str):
        return carts.get_order(order_number).model_dump(by_alias=True, mode="json")

    @app.post("/api/pc-request")
    def pc_request(
        payload: PCRequest,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        return carts.submit_pc_request(session_id, payload).model_dump(by_alias=True)

    # === Saved builds ===

    @app.get("/api/builds")
    def list_builds(session_id: str = Header(default="anonymous", alias=SESSION_HEADER)):
        return [b.model_dump(by_alias=True, mode="json") for b in builds.list_for_session(session_id)]

    @app.get("/api/builds/public")
    def list_public_builds():
        return [b.model_dump(by_alias=True, mode="json") for b in builds.list_public()]

    @app.get("/api/builds/{build_id}")
    def get_build(build_id: str, session_id: str = Header(default="anonymous", alias=SESSION_HEADER)):
        return builds.get(session_id, build_id).model_dump(by_alias=True, mode="json")

    @app.post("/api/builds", status_code=201)
    def create_build(
        payload: SavedBuildCreate,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        return builds.create(session_id, payload).model_dump(by_alias=True, mode="json")

    @app.patch("/api/builds/{build_id}")
    def update_build(
        build_id: str,
        payload: SavedBuildUpdate,
        session_id: str = Header(default="anonymous", alias=SESSION_HEADER),
    ):
        return builds.update(session_id, build_id, payload).model_dump(by_alias=True, mode="json")

    @app.delete("/api/builds/{build_id}")
    def delete_build(build_id: str, session_id: str = Header(default="anonymous", alias=SESSION_HEADER)):
        builds.delete(session_id, build_id)
        return {"success": True}

    # === Guides ===

    @app.get("/api/guides")
    def list_guides(query: Optional[str] = None):
        found = guides.search(query) if query else guides.all_guides()
        return [g.model_dump(by_alias=True, mode="json") for g in found]

    @app.get("/api/guides/{guide_id}")
    def get_guide(guide_id: str):
        return guides.get(guide_id).model_dump(by_alias=True, mode="json")

    @app.post("/api/guides", status_code=201)
    def create_guide(payload: GuideCreate):
        return guides.create(payload).model_dump(by_alias=True, mode="json")

    @app.patch("/api/guides/{guide_id}")
    def update_guide(guide_id: str, payload: GuideUpdate):
        return guides.update(guide_id, payload).model_dump(by_alias=True, mode="json")

    @app.delete("/api/guides/{guide_id}")
    def delete_guide(guide_id: str):
        guides.delete(guide_id)
        return {"success": True}

    return app


app = create_app()
