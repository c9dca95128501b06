import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from openai import OpenAIError
from pydantic import BaseModel

from nitikbatik.classifier import BatikAssistant
from nitikbatik.config import load_settings
from nitikbatik.context import AppContext
from nitikbatik.errors import ApiError, FormValidationError, error_message
from nitikbatik.guard import RoleGuardMiddleware

settings = load_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.assistant = BatikAssistant(settings)
    yield
    await app.state.assistant.aclose()


app = FastAPI(
    title="NitikBatik",
    version="1.0.0",
    description="Client-state layer of the NitikBatik batik marketplace",
    lifespan=lifespan,
)
app.add_middleware(
    RoleGuardMiddleware,
    cookie_name=settings.session_cookie_name,
    login_path=settings.login_path,
)


class PromptRequest(BaseModel):
    prompt: Optional[str] = None


class ClassifyRequest(BaseModel):
    img: Optional[str] = None


def get_assistant(request: Request) -> BatikAssistant:
    return request.app.state.assistant


async def request_context(request: Request) -> AsyncIterator[AppContext]:
    """Per-request context carrying the caller's session cookie."""
    raw = request.cookies.get(settings.session_cookie_name)
    async with AppContext.from_cookie(raw, settings) as context:
        yield context


@app.get("/health", summary="Liveness check")
def health():
    return {"status": "ok"}


# ── AI ───────────────────────────────────────────────────────────────────────

@app.post("/api/gpt", summary="Ask the batik assistant a question")
async def ask_assistant(body: PromptRequest, assistant: BatikAssistant = Depends(get_assistant)):
    if not body.prompt or not body.prompt.strip():
        return JSONResponse({"error": "Prompt is required"}, status_code=400)
    try:
        answer = await assistant.describe(body.prompt)
    except (ApiError, OpenAIError) as exc:
        logger.error("assistant request failed: %s", exc)
        return JSONResponse({"error": "Failed to process request"}, status_code=500)
    return {"success": True, "data": answer}


@app.post("/api/classify", summary="Classify the batik motif of an image")
async def classify_image(body: ClassifyRequest, assistant: BatikAssistant = Depends(get_assistant)):
    try:
        prediction = await assistant.classify(body.img or "")
    except FormValidationError as exc:
        raise HTTPException(400, exc.message)
    except ApiError as exc:
        raise HTTPException(502, error_message(exc, "Classification failed"))
    return {"prediksi": prediction}


@app.post("/api/classify/analyze", summary="Classify an image and explain the motif")
async def analyze_image(body: ClassifyRequest, assistant: BatikAssistant = Depends(get_assistant)):
    try:
        return await assistant.analyze(body.img or "")
    except FormValidationError as exc:
        raise HTTPException(400, exc.message)
    except ApiError as exc:
        raise HTTPException(502, error_message(exc, "Classification failed"))


# ── Dashboards ───────────────────────────────────────────────────────────────

@app.get("/admin/dashboard", summary="Admin statistics for the session's user")
async def admin_dashboard(context: AppContext = Depends(request_context)):
    view = context.dashboard()
    statistic = await view.load()
    return {
        "statistic": statistic,
        "error": context.articles.error or context.users.error,
    }


@app.get(
    "/penjual/dashboard/products",
    summary="The session seller's products, paged and searchable",
)
async def seller_products(
    page: int = Query(1, ge=1),
    search: str = Query(""),
    context: AppContext = Depends(request_context),
):
    await context.shops.initialize()
    view = context.product_management(page=page, search=search)
    if not view.can_manage_products:
        raise HTTPException(409, "Seller has no store yet")
    await view.mount()
    return {
        "store": view.store_info.model_dump(mode="json") if view.store_info else None,
        "products": [p.model_dump(mode="json") for p in view.items],
        "pagination": view.pagination.model_dump(),
        "stats": view.product_stats(),
        "error": view.error,
    }


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
