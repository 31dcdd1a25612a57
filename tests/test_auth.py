import jwt
import pytest

from agrocamer import auth


@pytest.fixture(autouse=True)
def activity_db(tmp_path, monkeypatch):
    monkeypatch.setenv("AGROCAMER_DB_PATH", str(tmp_path / "activity.db"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")


def test_token_round_trip():
    token = auth.create_access_token("user-42", name="Amina")
    data = auth.decode_access_token(token)
    assert data["sub"] == "user-42"
    assert data["name"] == "Amina"


def test_bad_tokens_decode_to_none(monkeypatch):
    assert auth.decode_access_token("not-a-token") is None
    forged = jwt.encode({"sub": "user-42"}, "other-secret", algorithm="HS256")
    assert auth.decode_access_token(forged) is None
    expired = auth.create_access_token("user-42", expires_days=-1)
    assert auth.decode_access_token(expired) is None


def test_log_and_list_activity():
    auth.log_activity("u1", "diagnosis", {"crop": "Cacao"})
    auth.log_activity("u1", "harvest_analysis", {"grade": "A"})
    auth.log_activity("u1", "tip_read")
    auth.log_activity("u2", "diagnosis")

    items = auth.list_activity("u1")
    assert [i["activity_type"] for i in items] == ["tip_read", "harvest_analysis", "diagnosis"]
    assert items[2]["metadata"] == {"crop": "Cacao"}

    only = auth.list_activity("u1", activity_type="diagnosis")
    assert len(only) == 1

    page = auth.list_activity("u1", offset=1, limit=1)
    assert [i["activity_type"] for i in page] == ["harvest_analysis"]


def test_unknown_activity_type():
    with pytest.raises(ValueError):
        auth.log_activity("u1", "photo_upload")


def test_activity_stats():
    for _ in range(3):
        auth.log_activity("u1", "diagnosis")
    auth.log_activity("u1", "harvest_analysis")
    auth.log_activity("u1", "chat")
    assert auth.activity_stats("u1") == {"diagnostics": 3, "analyses": 1, "tipsRead": 0}
    assert auth.activity_stats("nobody") == {"diagnostics": 0, "analyses": 0, "tipsRead": 0}


def test_similar_cases_group_by_disease_and_region():
    auth.log_activity("u1", "diagnosis", {"disease": "Pourriture brune", "region": "Centre"})
    auth.log_activity("u2", "diagnosis", {"disease": "pourriture brune du cacao", "region": "Centre"})
    auth.log_activity("u3", "diagnosis", {"disease": "Pourriture brune", "region": "Sud"})
    auth.log_activity("u4", "diagnosis", {"disease": "Mosaïque du manioc", "region": "Est"})
    auth.log_activity("u5", "harvest_analysis", {"disease": "Pourriture brune", "region": "Est"})
    auth.log_activity("u6", "diagnosis", {"disease": "Pourriture brune"})

    cases = auth.similar_cases("pourriture brune", limit=10)
    by_key = {(c["disease"], c["region"]): c["count"] for c in cases}
    assert by_key == {
        ("Pourriture brune", "Centre"): 1,
        ("pourriture brune du cacao", "Centre"): 1,
        ("Pourriture brune", "Sud"): 1,
        ("Pourriture brune", "Cameroun"): 1,
    }
    assert len(auth.similar_cases("pourriture brune")) == 3
    assert auth.similar_cases("") == []


def test_chat_sessions_are_grouped_per_user():
    auth.save_chat_message("s1", "user", "Quand semer le maïs ?", user_id="u1")
    auth.save_chat_message("s1", "assistant", "Après les premières pluies.", user_id="u1")
    auth.save_chat_message("s2", "user", "x" * 120, user_id="u1")
    auth.save_chat_message("s3", "user", "Bonjour", user_id="u2")

    sessions = auth.list_chat_sessions("u1")
    assert [s["session_id"] for s in sessions] == ["s2", "s1"]
    assert sessions[0]["first_message"] == "x" * 100 + "..."
    assert sessions[1]["message_count"] == 2
    assert sessions[1]["first_message"] == "Quand semer le maïs ?"

    messages = auth.list_chat_messages("s1")
    assert [m["role"] for m in messages] == ["user", "assistant"]
    assert auth.list_chat_messages("s3", user_id="u1") == []


def test_unknown_chat_role():
    with pytest.raises(ValueError):
        auth.save_chat_message("s1", "system", "ignore")
