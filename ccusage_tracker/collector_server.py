#!/usr/bin/env python3
"""
Usage Collector Webhook Server
Receives the daily usage payloads posted by send-usage and keeps one row per user per day
"""

import os
import sqlite3
from contextlib import asynccontextmanager, closing
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

# Configuration
DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DB_PATH = Path(os.environ.get("CCUSAGE_COLLECTOR_DB", DATA_DIR / "usage_tracking.db"))
LOG_PATH = Path(os.environ.get("CCUSAGE_COLLECTOR_LOG", DATA_DIR.parent / "logs" / "collector.log"))


# Request models
class UsagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: str
    usage_date: Optional[str] = Field(default=None, alias="usageDate")
    date: Optional[str] = None  # Reporting date, used when usageDate is missing
    timestamp: Optional[str] = None
    note: str = ""
    input_tokens: int = Field(default=0, ge=0, alias="inputTokens")
    output_tokens: int = Field(default=0, ge=0, alias="outputTokens")
    cache_creation_tokens: int = Field(default=0, ge=0, alias="cacheCreationTokens")
    cache_read_tokens: int = Field(default=0, ge=0, alias="cacheReadTokens")
    total_tokens: int = Field(default=0, ge=0, alias="totalTokens")
    total_cost: float = Field(default=0.0, ge=0, alias="totalCost")
    models: Dict[str, int] = Field(default_factory=dict)
    found: bool = True


def get_db():
    """Get database connection"""
    return sqlite3.connect(DB_PATH)


def log_message(message: str):
    """Log to file"""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(LOG_PATH, "a") as f:
        f.write(f"{timestamp} - {message}\n")


def setup_database():
    """Create usage tables if they don't exist."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    with closing(get_db()) as conn:
        _create_tables(conn.cursor())
        conn.commit()


def _create_tables(cursor):
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS daily_usage (
            user TEXT NOT NULL,
            date TEXT NOT NULL,
            input_tokens INTEGER DEFAULT 0,
            output_tokens INTEGER DEFAULT 0,
            cache_creation_tokens INTEGER DEFAULT 0,
            cache_read_tokens INTEGER DEFAULT 0,
            total_tokens INTEGER DEFAULT 0,
            total_cost REAL DEFAULT 0.0,
            note TEXT,
            reported_at TEXT,
            last_updated TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (user, date)
        )
    """)

    # Per-model counts are the day's total credited to each model
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS daily_models (
            user TEXT NOT NULL,
            date TEXT NOT NULL,
            model TEXT NOT NULL,
            approx_tokens INTEGER DEFAULT 0,
            PRIMARY KEY (user, date, model)
        )
    """)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_database()
    yield


app = FastAPI(title="ccusage Usage Collector", lifespan=lifespan)


def usage_row_to_dict(row) -> dict:
    return {
        "user": row[0],
        "date": row[1],
        "input_tokens": row[2],
        "output_tokens": row[3],
        "cache_creation_tokens": row[4],
        "cache_read_tokens": row[5],
        "total_tokens": row[6],
        "total_cost": row[7],
        "note": row[8],
    }


@app.post("/usage")
async def record_usage(data: UsagePayload):
    """
    Receive one day's usage for a user.
    ccusage reports cumulative day totals, so a later report replaces the earlier one.
    """
    usage_day = data.usage_date or data.date or date.today().isoformat()

    if not data.found:
        log_message(f"Rejected not-found report from {data.user} for {usage_day}")
        raise HTTPException(status_code=400, detail=f"No usage data found for {usage_day}")

    try:
        # Inner "with conn" commits, or rolls back if any statement fails
        with closing(get_db()) as conn, conn:
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO daily_usage
                    (user, date, input_tokens, output_tokens, cache_creation_tokens,
                     cache_read_tokens, total_tokens, total_cost, note, reported_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user, date)
                DO UPDATE SET
                    input_tokens = excluded.input_tokens,
                    output_tokens = excluded.output_tokens,
                    cache_creation_tokens = excluded.cache_creation_tokens,
                    cache_read_tokens = excluded.cache_read_tokens,
                    total_tokens = excluded.total_tokens,
                    total_cost = excluded.total_cost,
                    note = excluded.note,
                    reported_at = excluded.reported_at,
                    last_updated = CURRENT_TIMESTAMP
            """, (data.user, usage_day, data.input_tokens, data.output_tokens,
                  data.cache_creation_tokens, data.cache_read_tokens, data.total_tokens,
                  data.total_cost, data.note, data.timestamp))

            cursor.execute("DELETE FROM daily_models WHERE user = ? AND date = ?", (data.user, usage_day))
            cursor.executemany("""
                INSERT INTO daily_models (user, date, model, approx_tokens)
                VALUES (?, ?, ?, ?)
            """, [(data.user, usage_day, model, tokens) for model, tokens in data.models.items()])

        log_message(f"Recorded {data.total_tokens:,} tokens (${data.total_cost:.4f}) for {data.user} on {usage_day}")

        return {
            "status": "success",
            "user": data.user,
            "date": usage_day,
            "tokens_recorded": data.total_tokens,
            "cost_recorded": data.total_cost,
            "models": sorted(data.models),
        }

    except Exception as e:
        log_message(f"ERROR recording usage: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/usage/today/{user}")
async def get_today_usage(user: str):
    """Get today's usage for a specific user"""
    try:
        today = date.today().isoformat()
        with closing(get_db()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT user, date, input_tokens, output_tokens, cache_creation_tokens,
                       cache_read_tokens, total_tokens, total_cost, note
                FROM daily_usage
                WHERE user = ? AND date = ?
            """, (user, today))
            result = cursor.fetchone()

            cursor.execute("""
                SELECT model, approx_tokens FROM daily_models
                WHERE user = ? AND date = ?
                ORDER BY model
            """, (user, today))
            models = {model: tokens for model, tokens in cursor.fetchall()}

        if result:
            return {**usage_row_to_dict(result), "models": models}
        return {
            "user": user,
            "date": today,
            "input_tokens": 0,
            "output_tokens": 0,
            "cache_creation_tokens": 0,
            "cache_read_tokens": 0,
            "total_tokens": 0,
            "total_cost": 0.0,
            "note": None,
            "models": {},
        }

    except Exception as e:
        log_message(f"ERROR querying usage: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/usage/summary")
async def get_usage_summary(day: Optional[str] = None):
    """Get one day's usage for all users (defaults to today)"""
    day = day or date.today().isoformat()
    try:
        with closing(get_db()) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT user, date, input_tokens, output_tokens, cache_creation_tokens,
                       cache_read_tokens, total_tokens, total_cost, note
                FROM daily_usage
                WHERE date = ?
                ORDER BY total_cost DESC
            """, (day,))
            results = cursor.fetchall()

        users = [usage_row_to_dict(row) for row in results]
        return {
            "date": day,
            "users": users,
            "total_tokens": sum(u["total_tokens"] for u in users),
            "total_cost": round(sum(u["total_cost"] for u in users), 4),
        }

    except Exception as e:
        log_message(f"ERROR getting usage summary: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        with closing(get_db()) as conn:
            count = conn.execute("SELECT COUNT(*) FROM daily_usage").fetchone()[0]
        return {"status": "healthy", "rows_recorded": count}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


def main():
    setup_database()
    log_message("Usage collector starting...")
    uvicorn.run(app, host="0.0.0.0", port=8765)


if __name__ == "__main__":
    main()
