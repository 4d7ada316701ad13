# File: app/routers/ai.py

import base64
import binascii
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.datastructures import UploadFile
from pydantic import BaseModel, Field
from app.core.ratelimit import limiter
from app.core.security import get_current_user
from app.routers.issues import ALLOWED, MAX_BYTES
from app.services import ai as ai_service
from app.services.ai import AIProvider, get_ai_provider

router = APIRouter(prefix="/ai", tags=["ai"])


class CategorizeIn(BaseModel):
    title: str = ""
    description: str = Field(default="", max_length=2000)


class ResolutionIn(BaseModel):
    category: str = ""
    description: str = Field(default="", max_length=2000)
    priority: str = "medium"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def read_image(request: Request) -> tuple[bytes, str]:
    """Image from a multipart ``image`` field or a JSON body with base64 ``image`` and ``fileType``."""
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("image")
        if not isinstance(upload, UploadFile):
            raise HTTPException(status_code=400, detail="Image data is required")
        data, content_type = await upload.read(), upload.content_type or ""
    else:
        try:
            raw = await request.json()
        except ValueError:
            raw = None
        if not isinstance(raw, dict) or not raw.get("image"):
            raise HTTPException(status_code=400, detail="Image data is required")
        encoded = str(raw["image"])
        if encoded.startswith("data:") and "," in encoded:
            header, encoded = encoded.split(",", 1)
            content_type = header[5:].split(";")[0]
        else:
            content_type = str(raw.get("fileType") or "image/jpeg")
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="Image must be base64 encoded")
    if content_type not in ALLOWED:
        raise HTTPException(status_code=400, detail="Unsupported image type")
    if not data:
        raise HTTPException(status_code=400, detail="Image data is required")
    if len(data) > MAX_BYTES:
        raise HTTPException(status_code=400, detail="Image too large (max 5MB)")
    return data, content_type


@router.post("/analyze-image", dependencies=[Depends(get_current_user)])
@limiter.limit("10/minute")
async def analyze_image(request: Request, ai: AIProvider = Depends(get_ai_provider)):
    data, content_type = await read_image(request)
    analysis = ai.analyze_image(data, content_type) if ai.available else None
    if analysis is None:
        return {
            "description": "Image uploaded successfully. AI analysis is currently unavailable.",
            "issues": [],
            "suggestedCategory": "other",
            "confidence": 0,
            "provider": "fallback",
            "timestamp": _now(),
        }
    return {**analysis.as_record(), "timestamp": _now()}


@router.post("/categorize", dependencies=[Depends(get_current_user)])
@limiter.limit("30/minute")
def categorize(request: Request, body: CategorizeIn, ai: AIProvider = Depends(get_ai_provider)):
    if not body.description.strip():
        raise HTTPException(status_code=400, detail="Description is required")
    result = ai.categorize(body.title.strip(), body.description.strip())
    out = result.model_dump(by_alias=True)
    out["timestamp"] = _now()
    return out


@router.post("/resolution-suggestions", dependencies=[Depends(get_current_user)])
@limiter.limit("30/minute")
def resolution(request: Request, body: ResolutionIn, ai: AIProvider = Depends(get_ai_provider)):
    if not body.category.strip() or not body.description.strip():
        raise HTTPException(status_code=400, detail="Category and description are required")
    return ai.suggest_resolution(body.category.strip(), body.description.strip(), body.priority)


@router.get("/health")
def ai_health(ai: AIProvider = Depends(get_ai_provider)):
    state = ai.status()
    state["status"] = "healthy" if state["available"] else "limited"
    state["timestamp"] = _now()
    return state


@router.get("/stats", dependencies=[Depends(get_current_user)])
def ai_stats(ai: AIProvider = Depends(get_ai_provider)):
    return {
        **ai_service.usage.snapshot(),
        "provider": ai.name,
        "modelsAvailable": ai.models(),
        "supportedFeatures": {
            "imageAnalysis": ai.available,
            "categorization": True,
            "resolutionSuggestions": True,
        },
    }
