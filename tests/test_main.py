from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from agrocamer import auth
from agrocamer.main import app
from agrocamer.services import advisory, analysis, weather

from .test_providers import PROVIDER_ENV

client = TestClient(app)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    for name in PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AGROCAMER_DB_PATH", str(tmp_path / "activity.db"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")


def _bearer(user_id="farmer-1"):
    return {"Authorization": f"Bearer {auth.create_access_token(user_id)}"}


def test_healthz():
    assert client.get("/healthz").json() == {"status": "ok"}


def test_analyze_plant_requires_image():
    resp = client.post("/functions/v1/analyze-plant", json={"language": "en"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "An image is required for analysis"


def test_analyze_plant_without_provider():
    resp = client.post("/functions/v1/analyze-plant", json={"image": "QUJD"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Aucun fournisseur IA configuré"


def test_analyze_plant_all_providers_failed(monkeypatch):
    def fail(*args, **kwargs):
        raise analysis.AnalysisUnavailable("providers_failed", "Gemini API 1: 429")

    monkeypatch.setattr(analysis, "analyze_plant", fail)
    resp = client.post("/functions/v1/analyze-plant", json={"image": "QUJD"})
    assert resp.status_code == 503
    assert resp.json()["details"] == "Gemini API 1: 429"


def test_analyze_plant_success(monkeypatch):
    captured = {}

    def fake(image, **kwargs):
        captured.update(kwargs, image=image)
        return {"analysis": {"is_healthy": True}, "analyzed_at": "2026-01-01T00:00:00+00:00", "provider": "AI Gateway"}

    monkeypatch.setattr(analysis, "analyze_plant", fake)
    resp = client.post("/functions/v1/analyze-plant", json={
        "image": "QUJD", "userSpecifiedCrop": "cacao", "latitude": 3.87, "longitude": 11.52,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["analysis"] == {"is_healthy": True}
    assert captured["crop_hint"] == "cacao"
    assert captured["latitude"] == 3.87


def test_analyze_harvest_passes_region(monkeypatch):
    captured = {}

    def fake(image, **kwargs):
        captured.update(kwargs)
        return {"analysis": {"grade": "B"}, "analyzed_at": "now", "provider": "Gemini API 1"}

    monkeypatch.setattr(analysis, "analyze_harvest", fake)
    resp = client.post("/functions/v1/analyze-harvest", json={
        "image": "QUJD", "regionName": "Ouest", "climateZone": "Western highlands",
    })
    assert resp.json()["analysis"] == {"grade": "B"}
    assert captured["region_name"] == "Ouest"


def test_get_weather(monkeypatch):
    monkeypatch.setattr(weather, "fetch_weather", lambda region, lang, lat, lon: {"location": region, "lang": lang})
    resp = client.post("/functions/v1/get-weather", json={"region": "littoral", "language": "en"})
    body = resp.json()
    assert body["success"] is True
    assert body["weather"] == {"location": "littoral", "lang": "en"}
    assert "updated_at" in body


def test_get_weather_failure(monkeypatch):
    def fail(*args):
        raise ValueError("Weather API error: 502")

    monkeypatch.setattr(weather, "fetch_weather", fail)
    resp = client.post("/functions/v1/get-weather", json={})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Impossible de récupérer la météo"


def test_get_tips_normalizes_category():
    resp = client.post("/functions/v1/get-tips", json={"category": "horoscope"})
    body = resp.json()
    assert body == {"success": True, "tips": [], "category": "seasonal", "generated_at": body["generated_at"]}


def test_get_alerts(monkeypatch):
    monkeypatch.setattr(advisory, "generate_alerts", lambda region, lang: [{"id": f"x-{region}-0"}])
    resp = client.post("/functions/v1/get-alerts", json={"region": "est"})
    assert resp.json()["alerts"] == [{"id": "x-est-0"}]


def test_chat_requires_messages():
    resp = client.post("/functions/v1/chat-assistant", json={"messages": []})
    assert resp.status_code == 400


def test_chat_success(monkeypatch):
    monkeypatch.setattr(advisory, "chat_reply", lambda messages, language, region: f"{len(messages)} {region}")
    resp = client.post("/functions/v1/chat-assistant", json={
        "messages": [{"role": "user", "content": "Bonjour"}], "region": "sud",
    })
    assert resp.json()["message"] == "1 sud"


def test_location_info():
    resp = client.get("/api/location/info", params={"lat": 3.8667, "lon": 11.5167, "altitude": 726,
                                                    "accuracy": 20, "language": "en"})
    body = resp.json()
    assert body["region"] == "centre"
    assert body["nearest_city"] == "Yaoundé"
    assert body["climate_zone"] == "Equatorial forest"
    assert body["is_high_accuracy"] is True


def test_location_info_rejects_out_of_range():
    resp = client.get("/api/location/info", params={"lat": 123, "lon": 11})
    assert resp.status_code == 400


def test_cities():
    cities = client.get("/api/location/cities").json()["cities"]
    assert len(cities) == 10
    assert cities[0]["id"] == "douala"


def _png(size=(1200, 900)):
    buf = BytesIO()
    Image.new("RGB", size, (200, 180, 40)).save(buf, format="PNG")
    return buf.getvalue()


def test_compress_upload():
    resp = client.post("/api/compress", params={"preset": "harvest"},
                       files={"file": ("maize.png", _png(), "image/png")})
    assert resp.status_code == 200
    body = resp.json()
    assert body["policy"] == "harvest"
    assert (body["width"], body["height"]) == (1024, 768)
    assert body["image"]


def test_compress_rejects_non_image():
    resp = client.post("/api/compress", files={"file": ("clip.mp4", b"0000", "video/mp4")})
    assert resp.status_code == 400


def test_compress_unknown_preset():
    resp = client.post("/api/compress", params={"preset": "tiny"},
                       files={"file": ("maize.png", _png((10, 10)), "image/png")})
    assert resp.status_code == 400


def test_activity_requires_auth():
    assert client.get("/api/activity").status_code == 401
    assert client.get("/api/activity/stats", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.post("/api/activity", json={"activity_type": "diagnosis"}).status_code == 401


def test_activity_flow():
    headers = _bearer()
    for activity in ("diagnosis", "diagnosis", "tip_read"):
        resp = client.post("/api/activity", json={"activity_type": activity, "metadata": {"crop": "Cacao"}},
                           headers=headers)
        assert resp.status_code == 200

    items = client.get("/api/activity", params={"activity_type": "diagnosis"}, headers=headers).json()["activity"]
    assert len(items) == 2
    assert items[0]["metadata"] == {"crop": "Cacao"}

    stats = client.get("/api/activity/stats", headers=headers).json()
    assert stats == {"diagnostics": 2, "analyses": 0, "tipsRead": 1}

    other = client.get("/api/activity/stats", headers=_bearer("farmer-2")).json()
    assert other["diagnostics"] == 0


def test_activity_rejects_unknown_type():
    resp = client.post("/api/activity", json={"activity_type": "selfie"}, headers=_bearer())
    assert resp.status_code == 400


def test_chat_session_is_stored(monkeypatch):
    monkeypatch.setattr(advisory, "chat_reply", lambda messages, language, region: "Paillez le sol.")
    headers = _bearer("farmer-7")
    resp = client.post("/functions/v1/chat-assistant", headers=headers, json={
        "messages": [{"role": "user", "content": "Comment garder l'humidité ?"}], "sessionId": "farmer-7",
    })
    assert resp.status_code == 200

    sessions = client.get("/api/chat/sessions", headers=headers).json()["sessions"]
    assert [s["session_id"] for s in sessions] == ["farmer-7"]
    assert sessions[0]["message_count"] == 2

    messages = client.get("/api/chat/sessions/farmer-7", headers=headers).json()["messages"]
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "Comment garder l'humidité ?"),
        ("assistant", "Paillez le sol."),
    ]
    assert client.get("/api/chat/sessions", headers=_bearer("farmer-8")).json()["sessions"] == []


def test_chat_without_session_is_not_stored(monkeypatch):
    monkeypatch.setattr(advisory, "chat_reply", lambda messages, language, region: "ok")
    client.post("/functions/v1/chat-assistant", json={"messages": [{"role": "user", "content": "?"}]})
    assert auth.list_chat_sessions("farmer-1") == []


def test_similar_cases_endpoint():
    auth.log_activity("farmer-2", "diagnosis", {"disease": "Mosaïque du manioc", "region": "Est"})
    resp = client.get("/api/activity/similar", params={"disease": "mosaïque"}, headers=_bearer())
    assert resp.json()["cases"] == [
        {"disease": "Mosaïque du manioc", "region": "Est", "count": 1, "last_seen": resp.json()["cases"][0]["last_seen"]}
    ]
    assert client.get("/api/activity/similar", params={"disease": "x"}).status_code == 401
