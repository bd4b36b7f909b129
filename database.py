# database.py
"""SQLite-backed profile, match and message store.

Every operation opens its own connection and closes it before returning, so
nothing is held open between calls. Connections run in autocommit mode; the
only multi-statement write (`commit_match`) takes an explicit
`BEGIN IMMEDIATE` transaction.
"""
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from config import DATABASE_FILE
from errors import PersistenceError
from models import MatchRecord, Message, Profile, ProfileCreate, utcnow

_PROFILE_COLUMNS = "id, name, vibe, interests, communication_style, matched, created_at"
_MATCH_COLUMNS = "id, user_a, user_b, created_at, expires_at, active"
_UPDATABLE_PROFILE_FIELDS = {"name", "vibe", "interests", "communication_style", "matched"}


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


# Timestamps are stored as integer microseconds since the epoch (UTC).
def _ts(value: datetime) -> int:
    return (value - _EPOCH) // _MICROSECOND


def _dt(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


def _new_id() -> str:
    return uuid.uuid4().hex


def _row_to_profile(row) -> Profile:
    return Profile(
        id=row[0],
        name=row[1],
        vibe=row[2],
        interests=json.loads(row[3]),
        communication_style=row[4],
        matched=bool(row[5]),
        created_at=_dt(row[6]),
    )


def _row_to_match(row) -> MatchRecord:
    return MatchRecord(
        id=row[0],
        user_a=row[1],
        user_b=row[2],
        created_at=_dt(row[3]),
        expires_at=_dt(row[4]),
        active=bool(row[5]),
    )


class Store:
    def __init__(self, path: str = DATABASE_FILE, timeout: float = 30.0):
        self.path = path
        self.timeout = timeout

    def get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None, check_same_thread=False)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self.get_conn()
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open {self.path}: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create the tables if they don't exist. Call this once at app startup."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    vibe TEXT NOT NULL,
                    interests TEXT NOT NULL,
                    communication_style TEXT NOT NULL,
                    matched INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS matches (
                    id TEXT PRIMARY KEY,
                    user_a TEXT NOT NULL,
                    user_b TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    expires_at INTEGER NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    match_id TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_matches_active ON matches (active, expires_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_match ON messages (match_id, created_at)")

    # ----------------------
    # Profiles
    # ----------------------
    def create_profile(self, data: ProfileCreate, now: Optional[datetime] = None) -> Profile:
        profile = Profile(
            id=_new_id(),
            name=data.name,
            vibe=data.vibe,
            interests=list(data.interests),
            communication_style=data.communication_style,
            matched=False,
            created_at=now or utcnow(),
        )
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO profiles ({_PROFILE_COLUMNS}) VALUES (?, ?, ?, ?, ?, 0, ?)",
                (profile.id, profile.name, profile.vibe.value, json.dumps(profile.interests),
                 profile.communication_style.value, _ts(profile.created_at)),
            )
        return profile

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        return _row_to_profile(row) if row else None

    def list_profiles(self, *, unmatched: bool = False, exclude_id: Optional[str] = None) -> List[Profile]:
        """Profiles in insertion order, optionally only the unmatched ones and without `exclude_id`."""
        clauses, params = [], []
        if unmatched:
            clauses.append("matched = 0")
        if exclude_id is not None:
            clauses.append("id != ?")
            params.append(exclude_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {_PROFILE_COLUMNS} FROM profiles{where} ORDER BY rowid", params).fetchall()
        return [_row_to_profile(r) for r in rows]

    def update_profile(self, profile_id: str, **fields) -> bool:
        """Partial update. Returns False if no such profile exists."""
        unknown = set(fields) - _UPDATABLE_PROFILE_FIELDS
        if unknown:
            raise ValueError(f"cannot update profile fields: {sorted(unknown)}")
        if not fields:
            return self.get_profile(profile_id) is not None
        values = []
        for key, value in fields.items():
            if key == "interests":
                value = json.dumps(list(value))
            elif key == "matched":
                value = int(bool(value))
            elif hasattr(value, "value"):
                value = value.value
            values.append(value)
        assignments = ", ".join(f"{key} = ?" for key in fields)
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE profiles SET {assignments} WHERE id = ?", (*values, profile_id))
        return cur.rowcount == 1

    def release_profile(self, profile_id: str) -> bool:
        """Set matched = 0 unless the profile is still in an active match."""
        with self._connect() as conn:
            cur = conn.execute(
                """UPDATE profiles SET matched = 0
                   WHERE id = ? AND matched = 1
                     AND NOT EXISTS (SELECT 1 FROM matches
                                     WHERE active = 1 AND (user_a = ? OR user_b = ?))""",
                (profile_id, profile_id, profile_id),
            )
        return cur.rowcount == 1

    # ----------------------
    # Matches
    # ----------------------
    def _insert_match(self, conn, user_a: str, user_b: str, expires_at: datetime, now: datetime) -> MatchRecord:
        match = MatchRecord(id=_new_id(), user_a=user_a, user_b=user_b,
                            created_at=now, expires_at=expires_at, active=True)
        conn.execute(
            f"INSERT INTO matches ({_MATCH_COLUMNS}) VALUES (?, ?, ?, ?, ?, 1)",
            (match.id, user_a, user_b, _ts(now), _ts(expires_at)),
        )
        return match

    def create_match(self, user_a: str, user_b: str, expires_at: datetime,
                     now: Optional[datetime] = None) -> MatchRecord:
        """Plain insert of an active record. Does not touch either profile."""
        with self._connect() as conn:
            return self._insert_match(conn, user_a, user_b, expires_at, now or utcnow())

    def commit_match(self, user_a: str, user_b: str, expires_at: datetime,
                     now: Optional[datetime] = None) -> Optional[MatchRecord]:
        """Flag both profiles matched and insert the record in one transaction.

        The flag is a compare-and-swap on matched = 0; if either profile was
        already taken nothing is written and None is returned.
        """
        if user_a == user_b:
            raise ValueError("cannot match a profile with itself")
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                "UPDATE profiles SET matched = 1 WHERE id IN (?, ?) AND matched = 0",
                (user_a, user_b),
            )
            if cur.rowcount != 2:
                conn.rollback()
                return None
            match = self._insert_match(conn, user_a, user_b, expires_at, now or utcnow())
            conn.commit()
        return match

    def get_match(self, match_id: str) -> Optional[MatchRecord]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_MATCH_COLUMNS} FROM matches WHERE id = ?", (match_id,)).fetchone()
        return _row_to_match(row) if row else None

    def list_matches(self, *, active: Optional[bool] = None, user_id: Optional[str] = None,
                     expired_before: Optional[datetime] = None) -> List[MatchRecord]:
        clauses, params = [], []
        if active is not None:
            clauses.append("active = ?")
            params.append(int(active))
        if user_id is not None:
            clauses.append("(user_a = ? OR user_b = ?)")
            params.extend([user_id, user_id])
        if expired_before is not None:
            clauses.append("expires_at < ?")
            params.append(_ts(expired_before))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {_MATCH_COLUMNS} FROM matches{where} ORDER BY rowid", params).fetchall()
        return [_row_to_match(r) for r in rows]

    def find_active_match(self, user_id: str) -> Optional[MatchRecord]:
        matches = self.list_matches(active=True, user_id=user_id)
        return matches[0] if matches else None

    def find_match_between(self, user_id: str, other_id: str) -> Optional[MatchRecord]:
        """Active record linking the two users, in either orientation."""
        with self._connect() as conn:
            row = conn.execute(
                f"""SELECT {_MATCH_COLUMNS} FROM matches
                    WHERE active = 1
                      AND ((user_a = ? AND user_b = ?) OR (user_a = ? AND user_b = ?))
                    ORDER BY rowid LIMIT 1""",
                (user_id, other_id, other_id, user_id),
            ).fetchone()
        return _row_to_match(row) if row else None

    def deactivate_match(self, match_id: str) -> bool:
        """active 1 -> 0. Returns False if the record was already inactive (or missing)."""
        with self._connect() as conn:
            cur = conn.execute("UPDATE matches SET active = 0 WHERE id = ? AND active = 1", (match_id,))
        return cur.rowcount == 1

    # ----------------------
    # Messages
    # ----------------------
    def create_message(self, match_id: str, sender_id: str, content: str,
                       now: Optional[datetime] = None) -> Message:
        message = Message(id=_new_id(), match_id=match_id, sender_id=sender_id,
                          content=content, created_at=now or utcnow())
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO messages (id, match_id, sender_id, content, created_at) VALUES (?, ?, ?, ?, ?)",
                (message.id, match_id, sender_id, content, _ts(message.created_at)),
            )
        return message

    def list_messages(self, match_id: str) -> List[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, match_id, sender_id, content, created_at FROM messages "
                "WHERE match_id = ? ORDER BY created_at, rowid",
                (match_id,),
            ).fetchall()
        return [Message(id=r[0], match_id=r[1], sender_id=r[2], content=r[3], created_at=_dt(r[4]))
                for r in rows]
