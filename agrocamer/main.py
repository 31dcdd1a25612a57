import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agrocamer import auth as auth_module
from agrocamer.errors import CompressionError, CompressionTooLarge, ImageTooLarge
from agrocamer.i18n import normalize_language, translate
from agrocamer.models import MANUAL_ACCURACY_M, Position
from agrocamer.services import advisory, analysis, weather
from agrocamer.services.compression import PRESETS, ImageCompressor, validate_upload
from agrocamer.services.geo import MANUAL_LOCATIONS, location_info

logger = logging.getLogger(__name__)

app = FastAPI(title="AgroCamer API", version="0.1.0")

_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

compressor = ImageCompressor()


def _fail(status: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status, content=body)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# -- serverless functions ------------------------------------------------------

class PlantAnalysisRequest(BaseModel):
    image: Optional[str] = None
    language: Optional[str] = "fr"
    crop_hint: Optional[str] = None
    userSpecifiedCrop: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None


class HarvestAnalysisRequest(BaseModel):
    image: Optional[str] = None
    language: Optional[str] = "fr"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    regionName: Optional[str] = None
    climateZone: Optional[str] = None


class WeatherRequest(BaseModel):
    region: Optional[str] = "centre"
    language: Optional[str] = "fr"
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class TipsRequest(BaseModel):
    category: Optional[str] = "seasonal"
    region: Optional[str] = "centre"
    language: Optional[str] = "fr"


class AlertsRequest(BaseModel):
    region: Optional[str] = "centre"
    language: Optional[str] = "fr"


class ChatMessage(BaseModel):
    role: str = "user"
    content: str = ""


class ChatRequest(BaseModel):
    messages: Optional[List[ChatMessage]] = None
    language: Optional[str] = "fr"
    region: Optional[str] = "centre"
    sessionId: Optional[str] = None
    session_id: Optional[str] = None


def _unavailable(e: analysis.AnalysisUnavailable, lang: str) -> JSONResponse:
    if e.reason == "no_provider":
        logger.error("No AI provider configured")
        return _fail(500, translate("api.no_provider", lang))
    return _fail(503, translate("api.providers_unavailable", lang), e.details)


@app.post("/functions/v1/analyze-plant")
def analyze_plant(req: PlantAnalysisRequest):
    lang = normalize_language(req.language)
    if not req.image:
        return _fail(400, translate("api.image_required", lang))
    try:
        out = analysis.analyze_plant(
            req.image,
            language=lang,
            crop_hint=req.crop_hint or req.userSpecifiedCrop,
            latitude=req.latitude,
            longitude=req.longitude,
            altitude=req.altitude,
        )
    except analysis.AnalysisUnavailable as e:
        return _unavailable(e, lang)
    return {"success": True, **out}


@app.post("/functions/v1/analyze-harvest")
def analyze_harvest(req: HarvestAnalysisRequest):
    lang = normalize_language(req.language)
    if not req.image:
        return _fail(400, translate("api.image_required", lang))
    try:
        out = analysis.analyze_harvest(
            req.image,
            language=lang,
            latitude=req.latitude,
            longitude=req.longitude,
            altitude=req.altitude,
            region_name=req.regionName,
            climate_zone=req.climateZone,
        )
    except analysis.AnalysisUnavailable as e:
        return _unavailable(e, lang)
    return {"success": True, **out}


@app.post("/functions/v1/get-weather")
def get_weather(req: WeatherRequest):
    lang = normalize_language(req.language)
    try:
        data = weather.fetch_weather(req.region or "centre", lang, req.latitude, req.longitude)
    except ValueError as e:
        logger.error("[Weather] get-weather failed: %s", e)
        return _fail(500, translate("api.weather_failed", lang), str(e))
    return {"success": True, "weather": data, "updated_at": _now()}


@app.post("/functions/v1/get-tips")
def get_tips(req: TipsRequest):
    lang = normalize_language(req.language)
    category = req.category if req.category in advisory.TIP_CATEGORIES else "seasonal"
    tips = advisory.generate_tips(category, req.region or "centre", lang)
    return {"success": True, "tips": tips, "category": category, "generated_at": _now()}


@app.post("/functions/v1/get-alerts")
def get_alerts(req: AlertsRequest):
    lang = normalize_language(req.language)
    alerts = advisory.generate_alerts(req.region or "centre", lang)
    return {"success": True, "alerts": alerts, "generated_at": _now()}


@app.post("/functions/v1/chat-assistant")
def chat_assistant(req: ChatRequest, authorization: Optional[str] = Header(None)):
    lang = normalize_language(req.language)
    if not req.messages:
        return _fail(400, translate("api.messages_required", lang))
    session_id = req.sessionId or req.session_id
    user_id = _optional_user_id(authorization)
    try:
        reply = advisory.chat_reply(
            [m.dict() for m in req.messages], language=lang, region=req.region or "centre"
        )
    except analysis.AnalysisUnavailable as e:
        return _unavailable(e, lang)
    if session_id:
        _save_chat_turn(session_id, user_id, req.messages[-1], reply)
    return {"success": True, "message": reply, "timestamp": _now()}


def _save_chat_turn(session_id: str, user_id: Optional[str], last: ChatMessage, reply: str) -> None:
    try:
        if last.role == "user" and last.content:
            auth_module.save_chat_message(session_id, "user", last.content, user_id)
        auth_module.save_chat_message(session_id, "assistant", reply, user_id)
    except sqlite3.Error as e:
        logger.warning("[Chat] Failed to store session %s: %s", session_id, e)


# -- location and images -------------------------------------------------------

@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/api/location/info")
def get_location_info(
    lat: float,
    lon: float,
    altitude: Optional[float] = None,
    accuracy: float = MANUAL_ACCURACY_M,
    language: str = "fr",
):
    try:
        position = Position(latitude=lat, longitude=lon, altitude=altitude, accuracy=accuracy, timestamp=0)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return location_info(position, normalize_language(language)).to_dict()


@app.get("/api/location/cities")
def list_cities():
    return {
        "cities": [
            {"id": c.id, "label": c.label, "lat": c.lat, "lon": c.lon, "altitude": c.altitude}
            for c in MANUAL_LOCATIONS
        ]
    }


@app.post("/api/compress")
async def compress_image(
    file: UploadFile = File(...),
    preset: str = Query("diagnosis"),
    language: str = Query("fr"),
):
    if preset not in PRESETS:
        raise HTTPException(status_code=400, detail=f"unknown preset: {preset}")
    lang = normalize_language(language)
    data = await file.read()
    try:
        validate_upload(data, file.content_type, lang)
        result = compressor.compress(data, PRESETS[preset], language=lang)
    except ImageTooLarge as e:
        raise HTTPException(status_code=413, detail=e.message)
    except CompressionTooLarge as e:
        raise HTTPException(status_code=422, detail=e.message)
    except CompressionError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"image": result.base64, **result.summary()}


# -- activity log --------------------------------------------------------------

class ActivityRequest(BaseModel):
    activity_type: str
    metadata: Dict[str, Any] = {}


def _optional_user_id(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1]
    else:
        token = authorization
    data = auth_module.decode_access_token(token)
    if not data or not data.get("sub"):
        return None
    return str(data["sub"])


def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    user_id = _optional_user_id(authorization)
    if user_id is None:
        raise HTTPException(status_code=401, detail="authentication_required")
    return {"id": user_id}


@app.post("/api/activity")
def post_activity(item: ActivityRequest, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        saved = auth_module.log_activity(user["id"], item.activity_type, item.metadata)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"saved": saved}


@app.get("/api/activity")
def get_activity(
    activity_type: Optional[str] = None,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
):
    return {"activity": auth_module.list_activity(user["id"], activity_type, offset, limit)}


@app.get("/api/activity/stats")
def get_activity_stats(user: Dict[str, Any] = Depends(get_current_user)):
    return auth_module.activity_stats(user["id"])


@app.get("/api/activity/similar")
def get_similar_cases(
    disease: str = Query(..., min_length=1),
    limit: int = Query(3, ge=1, le=20),
    user: Dict[str, Any] = Depends(get_current_user),
):
    return {"cases": auth_module.similar_cases(disease, limit)}


# -- chat history --------------------------------------------------------------

@app.get("/api/chat/sessions")
def get_chat_sessions(user: Dict[str, Any] = Depends(get_current_user)):
    return {"sessions": auth_module.list_chat_sessions(user["id"])}


@app.get("/api/chat/sessions/{session_id}")
def get_chat_session(
    session_id: str,
    limit: int = Query(50, ge=1, le=200),
    user: Dict[str, Any] = Depends(get_current_user),
):
    return {"session_id": session_id, "messages": auth_module.list_chat_messages(session_id, user["id"], limit)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
