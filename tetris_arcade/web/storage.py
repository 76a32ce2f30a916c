"""
Score Storage
=============
Accounts, session tokens, key maps and finished-game stats.

PostgresScoreStore is the production store (asyncpg pool);
MemoryScoreStore keeps everything in process for local play and tests.
"""

from typing import Optional, Dict, Any, List
import itertools
import json
import logging

import asyncpg

logger = logging.getLogger(__name__)


class UserExistsError(Exception):
    """Username already registered"""


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id            SERIAL PRIMARY KEY,
    username      TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    key_map       JSONB,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS sessions (
    token      TEXT PRIMARY KEY,
    user_id    INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS scores (
    id           SERIAL PRIMARY KEY,
    user_id      INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    score        INTEGER NOT NULL,
    lines        INTEGER NOT NULL,
    level        INTEGER NOT NULL,
    time_seconds INTEGER NOT NULL,
    breakdown    JSONB NOT NULL,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS scores_user_idx ON scores (user_id);
"""


async def initialize_schema(pool: asyncpg.Pool) -> None:
    """Create tables if missing"""
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)


class PostgresScoreStore:

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def close(self) -> None:
        await self.pool.close()

    async def create_user(self, username: str, password_hash: str) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    "INSERT INTO users (username, password_hash) VALUES ($1, $2) "
                    "RETURNING id, username, password_hash, key_map",
                    username, password_hash
                )
            except asyncpg.UniqueViolationError:
                raise UserExistsError(username)
        return self._user(row)

    async def get_user(self, username: str) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, username, password_hash, key_map FROM users WHERE username = $1",
                username
            )
        return self._user(row) if row else None

    async def create_session(self, token: str, username: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO sessions (token, user_id) "
                "SELECT $1, id FROM users WHERE username = $2",
                token, username
            )

    async def user_for_token(self, token: str) -> Optional[str]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT u.username FROM sessions s JOIN users u ON u.id = s.user_id "
                "WHERE s.token = $1",
                token
            )

    async def save_key_map(self, username: str, key_map: Dict[str, str]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE users SET key_map = $2::jsonb WHERE username = $1",
                username, json.dumps(key_map)
            )

    async def add_score(self, username: str, stats: Dict[str, Any]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO scores (user_id, score, lines, level, time_seconds, breakdown) "
                "SELECT id, $2, $3, $4, $5, $6::jsonb FROM users WHERE username = $1",
                username, stats["score"], stats["lines"], stats["level"],
                stats["time"], json.dumps(stats["breakdown"])
            )

    async def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT u.username, MAX(s.score) AS score FROM scores s "
                "JOIN users u ON u.id = s.user_id "
                "GROUP BY u.username ORDER BY score DESC, u.username ASC LIMIT $1",
                limit
            )
        return [{"username": r["username"], "score": r["score"]} for r in rows]

    async def profile_stats(self, username: str) -> Dict[str, int]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT COUNT(s.id) AS games, COALESCE(MAX(s.score), 0) AS best, "
                "COALESCE(SUM(s.lines), 0) AS lines FROM users u "
                "LEFT JOIN scores s ON s.user_id = u.id WHERE u.username = $1",
                username
            )
        return {"gamesPlayed": row["games"], "bestScore": row["best"], "totalLines": row["lines"]}

    async def reset_scores(self, username: str) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM scores WHERE user_id = (SELECT id FROM users WHERE username = $1)",
                username
            )
        # "DELETE <n>"
        return int(result.split()[-1])

    @staticmethod
    def _user(row) -> Dict[str, Any]:
        key_map = row["key_map"]
        return {
            "id": row["id"],
            "username": row["username"],
            "password_hash": row["password_hash"],
            "key_map": json.loads(key_map) if key_map else None
        }


class MemoryScoreStore:

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, str] = {}
        self.scores: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    async def close(self) -> None:
        pass

    async def create_user(self, username: str, password_hash: str) -> Dict[str, Any]:
        if username in self.users:
            raise UserExistsError(username)
        user = {"id": next(self._ids), "username": username,
                "password_hash": password_hash, "key_map": None}
        self.users[username] = user
        return dict(user)

    async def get_user(self, username: str) -> Optional[Dict[str, Any]]:
        user = self.users.get(username)
        return dict(user) if user else None

    async def create_session(self, token: str, username: str) -> None:
        self.sessions[token] = username

    async def user_for_token(self, token: str) -> Optional[str]:
        return self.sessions.get(token)

    async def save_key_map(self, username: str, key_map: Dict[str, str]) -> None:
        self.users[username]["key_map"] = dict(key_map)

    async def add_score(self, username: str, stats: Dict[str, Any]) -> None:
        self.scores.append({"username": username, **stats})

    async def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        best: Dict[str, int] = {}
        for entry in self.scores:
            best[entry["username"]] = max(best.get(entry["username"], 0), entry["score"])
        ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))
        return [{"username": name, "score": score} for name, score in ranked[:limit]]

    async def profile_stats(self, username: str) -> Dict[str, int]:
        mine = [entry for entry in self.scores if entry["username"] == username]
        return {
            "gamesPlayed": len(mine),
            "bestScore": max((entry["score"] for entry in mine), default=0),
            "totalLines": sum(entry["lines"] for entry in mine)
        }

    async def reset_scores(self, username: str) -> int:
        before = len(self.scores)
        self.scores = [entry for entry in self.scores if entry["username"] != username]
        return before - len(self.scores)
