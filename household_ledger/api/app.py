"""
HTTP API

A small Starlette app over the orchestrator flows. Authentication lives
in front of this service; it forwards the caller's household and user as
the X-Household-Id and X-User-Id headers.

Every handler returns JSON: `{"data": ...}` on success, `{"error": ...}`
or `{"errors": {field: [messages]}}` on failure.

Flow calls block on sqlite3 (and on BEGIN IMMEDIATE retries while the
database is busy), so handlers run them in the threadpool.
"""

import functools
from datetime import date
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from household_ledger.config import get_settings
from household_ledger.models.receipt import InventoryItemUpdate, issues_from_validation_error
from household_ledger.orchestrator import ConfirmationRejected, create_app_components
from household_ledger.services.parser import ReceiptParseError, ReceiptParser
from household_ledger.services.storage import NotFoundError, StorageBusyError


logger = structlog.get_logger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


def _parse_int(value: Optional[str], *, default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    if parsed < minimum:
        return minimum
    if parsed > maximum:
        return maximum
    return parsed


def _parse_uuid(value: Optional[str], what: str) -> UUID:
    try:
        return UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {what}") from exc


def _household_context(request: Request) -> tuple[UUID, Optional[UUID]]:
    """Household and user forwarded by the auth layer."""
    raw_household = request.headers.get("x-household-id")
    raw_user = request.headers.get("x-user-id")
    try:
        household_id = UUID(raw_household) if raw_household else None
        user_id = UUID(raw_user) if raw_user else None
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid household context") from exc
    if household_id is None:
        raise HTTPException(status_code=401, detail="Missing household context")
    return household_id, user_id


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def create_app(
    db_path: Optional[str] = None,
    *,
    parser: Optional[ReceiptParser] = None,
    allow_origins: Optional[list[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing the receipt and budget API."""

    receipt_flow, budget_flow, catalog_flow, audit_logger = create_app_components(
        db_path=db_path,
        parser=parser,
    )

    def endpoint(handler: Handler) -> Handler:
        """Map domain exceptions to JSON error responses."""

        @functools.wraps(handler)
        async def wrapper(request: Request) -> Response:
            try:
                return await handler(request)
            except HTTPException as exc:
                return JSONResponse({"error": exc.detail}, status_code=exc.status_code)
            except ConfirmationRejected as exc:
                return JSONResponse({"errors": exc.result.to_error_map()}, status_code=422)
            except ReceiptParseError as exc:
                return JSONResponse({"error": str(exc)}, status_code=422)
            except NotFoundError as exc:
                return JSONResponse({"error": str(exc)}, status_code=404)
            except StorageBusyError as exc:
                logger.warning("database_busy", path=request.url.path, error=str(exc))
                return JSONResponse({"error": "Database is busy, please retry"}, status_code=503)
            except ValidationError as exc:
                errors: dict[str, list[str]] = {}
                for issue in issues_from_validation_error(exc):
                    errors.setdefault(issue.field, []).append(issue.message)
                return JSONResponse({"errors": errors}, status_code=422)
            except ValueError as exc:
                return JSONResponse({"error": str(exc)}, status_code=422)
            except Exception as exc:
                logger.exception("request_failed", path=request.url.path, method=request.method)
                audit_logger.log_error(
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                    details={"path": request.url.path, "method": request.method},
                )
                return JSONResponse({"error": f"Internal server error: {exc}"}, status_code=500)

        return wrapper

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @endpoint
    async def scan_receipt(request: Request) -> JSONResponse:
        household_id, _ = _household_context(request)
        body = await _json_body(request)
        image = body.get("image")
        if not isinstance(image, str) or not image.strip():
            raise HTTPException(status_code=400, detail="Missing 'image' parameter")
        receipt = await run_in_threadpool(receipt_flow.scan, image, household_id)
        return JSONResponse({"data": receipt.model_dump(mode="json")})

    @endpoint
    async def confirm_receipt(request: Request) -> JSONResponse:
        household_id, user_id = _household_context(request)
        body = await _json_body(request)
        confirmation = await run_in_threadpool(receipt_flow.confirm, body, user_id, household_id)
        return JSONResponse({"data": confirmation.to_response()}, status_code=201)

    @endpoint
    async def budget_entries(request: Request) -> JSONResponse:
        household_id, _ = _household_context(request)
        qp = request.query_params
        tag_ids = ",".join(qp.getlist("tag_ids")) or None
        entries = await run_in_threadpool(budget_flow.list_entries, household_id, {
            "start_date": qp.get("start_date"),
            "end_date": qp.get("end_date"),
            "type": qp.get("type"),
            "tag_ids": tag_ids,
        })
        return JSONResponse({"data": [entry.model_dump(mode="json") for entry in entries]})

    @endpoint
    async def budget_summary(request: Request) -> JSONResponse:
        household_id, _ = _household_context(request)
        qp = request.query_params
        today = date.today()
        year = _parse_int(qp.get("year"), default=today.year, minimum=1970, maximum=9999)
        month = _parse_int(qp.get("month"), default=today.month, minimum=1, maximum=12)
        summary = await run_in_threadpool(budget_flow.monthly_summary, household_id, year, month)
        return JSONResponse({"data": summary.model_dump(mode="json")})

    @endpoint
    async def suggest_by_brand(request: Request) -> JSONResponse:
        household_id, _ = _household_context(request)
        params = dict(request.query_params)
        if request.method == "POST" and await request.body():
            params.update(await _json_body(request))
        brand = params.get("brand")
        if not isinstance(brand, str) or not brand.strip():
            return JSONResponse({"errors": {"brand": ["Missing 'brand' parameter"]}}, status_code=422)
        store_id = params.get("store_id")
        suggestion = await run_in_threadpool(
            catalog_flow.suggest_for_brand,
            household_id,
            brand,
            store_id=_parse_uuid(store_id, "store_id") if store_id else None,
        )
        return JSONResponse({"data": suggestion.model_dump(mode="json")})

    @endpoint
    async def update_store_item(request: Request) -> JSONResponse:
        household_id, _ = _household_context(request)
        store_id = _parse_uuid(request.path_params["store_id"], "store_id")
        item_id = _parse_uuid(request.path_params["item_id"], "item_id")
        update = InventoryItemUpdate.model_validate(await _json_body(request))
        result = await run_in_threadpool(catalog_flow.update_store_item, household_id, store_id, item_id, update)
        return JSONResponse({"data": result.model_dump(mode="json")})

    @endpoint
    async def delete_purchase(request: Request) -> Response:
        household_id, _ = _household_context(request)
        purchase_id = _parse_uuid(request.path_params["purchase_id"], "purchase_id")
        await run_in_threadpool(receipt_flow.delete_purchase, purchase_id, household_id)
        return Response(status_code=204)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/receipts/scan", scan_receipt, methods=["POST"]),
        Route("/receipts/confirm", confirm_receipt, methods=["POST"]),
        Route("/budget/entries", budget_entries, methods=["GET"]),
        Route("/budget/summary", budget_summary, methods=["GET"]),
        Route("/purchases/suggest-by-brand", suggest_by_brand, methods=["GET", "POST"]),
        Route("/purchases/{purchase_id}", delete_purchase, methods=["DELETE"]),
        Route("/stores/{store_id}/inventory/{item_id}", update_store_item, methods=["PUT"]),
    ]

    settings = get_settings().app
    app = Starlette(debug=settings.debug_mode, routes=routes)

    origins = allow_origins or settings.cors_origins_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


__all__ = ["create_app"]
