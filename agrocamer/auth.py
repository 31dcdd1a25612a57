"""
Identity tokens and the user activity log.

Tokens are HS256 JWTs whose `sub` is the user id. Activity rows live in a
sqlite table; the database path is read from AGROCAMER_DB_PATH on every
connection so tests and deployments can relocate it.
"""
import json
import os
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt

BASE_DIR = os.path.dirname(__file__)
DEFAULT_DB_PATH = os.path.join(BASE_DIR, "data.db")
JWT_ALG = "HS256"

ACTIVITY_TYPES = ("diagnosis", "harvest_analysis", "tip_read", "chat")
CHAT_ROLES = ("user", "assistant")
SIMILAR_CASES_SCAN = 50


def _db_path() -> str:
    return os.getenv("AGROCAMER_DB_PATH", DEFAULT_DB_PATH)


def _jwt_secret() -> str:
    return os.getenv("JWT_SECRET", "please_change_this_secret")


def _get_conn():
    conn = sqlite3.connect(_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS user_activity (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            activity_type TEXT NOT NULL,
            metadata_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_activity_user ON user_activity (user_id, created_at)")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS chat_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            user_id TEXT,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_chat_session ON chat_messages (session_id, created_at)")
    conn.commit()
    conn.close()


def create_access_token(user_id: str, expires_days: int = 7, **claims: Any) -> str:
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(days=expires_days),
        **claims,
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALG)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        return None


def log_activity(user_id: str, activity_type: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"unknown_activity_type: {activity_type}")
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    now = datetime.now(timezone.utc).isoformat()
    cur.execute(
        "INSERT INTO user_activity (user_id, activity_type, metadata_json, created_at) VALUES (?, ?, ?, ?)",
        (str(user_id), activity_type, json.dumps(metadata or {}), now),
    )
    conn.commit()
    item_id = cur.lastrowid
    conn.close()
    return {"id": item_id, "activity_type": activity_type, "metadata": metadata or {}, "created_at": now}


def list_activity(user_id: str, activity_type: Optional[str] = None, offset: int = 0,
                  limit: int = 20) -> List[Dict[str, Any]]:
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    query = "SELECT id, activity_type, metadata_json, created_at FROM user_activity WHERE user_id = ?"
    args: List[Any] = [str(user_id)]
    if activity_type:
        query += " AND activity_type = ?"
        args.append(activity_type)
    query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
    args.extend([limit, offset])
    cur.execute(query, args)
    rows = cur.fetchall()
    conn.close()
    return [
        {
            "id": r["id"],
            "activity_type": r["activity_type"],
            "metadata": json.loads(r["metadata_json"]),
            "created_at": r["created_at"],
        }
        for r in rows
    ]


def activity_stats(user_id: str) -> Dict[str, int]:
    """Counters shown on the profile screen."""
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        "SELECT activity_type, COUNT(*) AS n FROM user_activity WHERE user_id = ? GROUP BY activity_type",
        (str(user_id),),
    )
    counts = {r["activity_type"]: r["n"] for r in cur.fetchall()}
    conn.close()
    return {
        "diagnostics": counts.get("diagnosis", 0),
        "analyses": counts.get("harvest_analysis", 0),
        "tipsRead": counts.get("tip_read", 0),
    }


def similar_cases(disease: str, limit: int = 3) -> List[Dict[str, Any]]:
    """Recent diagnoses of the same disease by any user, grouped per region.

    Names match when either one contains the other, case-insensitively.
    Only the latest SIMILAR_CASES_SCAN diagnoses are considered.
    """
    needle = (disease or "").strip().lower()
    if not needle:
        return []
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        "SELECT metadata_json, created_at FROM user_activity WHERE activity_type = 'diagnosis' "
        "ORDER BY created_at DESC, id DESC LIMIT ?",
        (SIMILAR_CASES_SCAN,),
    )
    rows = cur.fetchall()
    conn.close()

    cases: Dict[Any, Dict[str, Any]] = {}
    for r in rows:
        metadata = json.loads(r["metadata_json"])
        name = metadata.get("disease") if isinstance(metadata, dict) else None
        if not isinstance(name, str) or not name:
            continue
        if needle not in name.lower() and name.lower() not in needle:
            continue
        region = metadata.get("region") or "Cameroun"
        case = cases.get((name, region))
        if case is None:
            cases[(name, region)] = {"disease": name, "region": region, "count": 1, "last_seen": r["created_at"]}
        else:
            case["count"] += 1
            case["last_seen"] = max(case["last_seen"], r["created_at"])
    return list(cases.values())[:limit]


def save_chat_message(session_id: str, role: str, content: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    if role not in CHAT_ROLES:
        raise ValueError(f"unknown_chat_role: {role}")
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    now = datetime.now(timezone.utc).isoformat()
    cur.execute(
        "INSERT INTO chat_messages (session_id, user_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
        (session_id, str(user_id) if user_id is not None else None, role, content, now),
    )
    conn.commit()
    item_id = cur.lastrowid
    conn.close()
    return {"id": item_id, "role": role, "content": content, "created_at": now}


def list_chat_messages(session_id: str, user_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    """Oldest first, the order a conversation is replayed in.

    With a user_id only that user's messages of the session are returned.
    """
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    query = "SELECT id, role, content, created_at FROM chat_messages WHERE session_id = ?"
    args: List[Any] = [session_id]
    if user_id is not None:
        query += " AND user_id = ?"
        args.append(str(user_id))
    query += " ORDER BY created_at ASC, id ASC LIMIT ?"
    args.append(limit)
    cur.execute(query, args)
    rows = cur.fetchall()
    conn.close()
    return [{"id": r["id"], "role": r["role"], "content": r["content"], "created_at": r["created_at"]} for r in rows]


def list_chat_sessions(user_id: str) -> List[Dict[str, Any]]:
    """Sessions owned by a user, most recently active first."""
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        "SELECT id, session_id, role, content, created_at FROM chat_messages WHERE user_id = ? "
        "ORDER BY created_at ASC, id ASC",
        (str(user_id),),
    )
    rows = cur.fetchall()
    conn.close()

    sessions: Dict[str, Dict[str, Any]] = {}
    last_ids: Dict[str, int] = {}
    for r in rows:
        last_ids[r["session_id"]] = r["id"]
        session = sessions.setdefault(r["session_id"], {
            "session_id": r["session_id"],
            "first_message": None,
            "last_activity": r["created_at"],
            "message_count": 0,
        })
        session["message_count"] += 1
        session["last_activity"] = r["created_at"]
        if session["first_message"] is None and r["role"] == "user":
            text = r["content"]
            session["first_message"] = text[:100] + ("..." if len(text) > 100 else "")
    for session in sessions.values():
        session["first_message"] = session["first_message"] or "Conversation"
    return sorted(sessions.values(), key=lambda s: (s["last_activity"], last_ids[s["session_id"]]), reverse=True)
