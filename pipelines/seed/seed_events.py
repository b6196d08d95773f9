"""
Seed data generator -- creates the demo ``events`` and ``orders`` tables
declared in ``semantic_layer/datasources.yml``.

Generates:
  - ~50 000 events  (page views, signups, purchases) over 2024-2025
  - ~10 000 orders  (channel, region, gross amount, item count)

Run:  python -m pipelines.seed.seed_events
"""
from __future__ import annotations

import os
import random
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import create_engine, text

# ── Load .env from project root ─────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")

fake = Faker()
Faker.seed(42)
random.seed(42)

# ── Tunables ─────────────────────────────────────────────
NUM_USERS = 2_000
NUM_EVENTS = 50_000
NUM_ORDERS = 10_000

COUNTRIES = ["India", "US", "UK", "Germany", "Canada", "Australia", "France", "Brazil", "Japan", "Nigeria"]
PLATFORMS = ["ios", "android", "web"]
EVENT_TYPES = ["page_view", "signup", "purchase"]
EVENT_WEIGHTS = [0.85, 0.05, 0.10]
CHANNELS = ["organic", "paid_search", "email", "referral"]
REGIONS = ["emea", "amer", "apac"]

DATE_START = datetime(2024, 1, 1, tzinfo=timezone.utc)
DATE_END = datetime(2025, 12, 31, tzinfo=timezone.utc)

_DDL = [
    """
    CREATE TABLE IF NOT EXISTS public.events (
        event_id     SERIAL PRIMARY KEY,
        event_time   TIMESTAMPTZ NOT NULL,
        user_id      INTEGER NOT NULL,
        country      VARCHAR(40),
        platform     VARCHAR(20),
        event_type   VARCHAR(20) NOT NULL,
        value        NUMERIC(12, 2),
        duration_ms  INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS events_event_time_idx ON public.events (event_time)",
    """
    CREATE TABLE IF NOT EXISTS public.orders (
        order_id      SERIAL PRIMARY KEY,
        order_ts      TIMESTAMPTZ NOT NULL,
        customer_id   INTEGER NOT NULL,
        channel       VARCHAR(20),
        region        VARCHAR(10),
        gross_amount  NUMERIC(12, 2) NOT NULL,
        item_count    INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS orders_order_ts_idx ON public.orders (order_ts)",
]


def _db_url() -> str:
    user = os.getenv("POSTGRES_USER", "rolling")
    pw = os.getenv("POSTGRES_PASSWORD", "rolling_pw")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "analytics")
    return f"postgresql://{user}:{pw}@{host}:{port}/{db}"


def _rand_ts() -> datetime:
    return fake.date_time_between(start_date=DATE_START, end_date=DATE_END, tzinfo=timezone.utc)


# ── Generators ───────────────────────────────────────────

def gen_events() -> list[dict]:
    rows = []
    for _ in range(NUM_EVENTS):
        event_type = random.choices(EVENT_TYPES, weights=EVENT_WEIGHTS, k=1)[0]
        rows.append({
            "event_time": _rand_ts(),
            "user_id": random.randint(1, NUM_USERS),
            # A few rows without a country exercise null dimension values
            "country": random.choice(COUNTRIES) if random.random() > 0.02 else None,
            "platform": random.choice(PLATFORMS),
            "event_type": event_type,
            "value": round(random.uniform(5.0, 500.0), 2) if event_type == "purchase" else 0,
            "duration_ms": random.randint(50, 30_000),
        })
    return rows


def gen_orders() -> list[dict]:
    rows = []
    for _ in range(NUM_ORDERS):
        items = random.randint(1, 8)
        rows.append({
            "order_ts": _rand_ts(),
            "customer_id": random.randint(1, NUM_USERS),
            "channel": random.choice(CHANNELS),
            "region": random.choice(REGIONS),
            "gross_amount": round(items * random.uniform(5.0, 120.0), 2),
            "item_count": items,
        })
    return rows


# ── Bulk insert helper ───────────────────────────────────

def _bulk_insert(engine, table: str, rows: list[dict], batch_size: int = 2000):
    """Insert rows into *table* in batches using executemany-style VALUES."""
    if not rows:
        return
    cols = list(rows[0].keys())
    col_list = ", ".join(cols)
    param_list = ", ".join(f":{c}" for c in cols)
    sql = text(f"INSERT INTO {table} ({col_list}) VALUES ({param_list})")
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(sql, rows[i : i + batch_size])
    print(f"  ✓ {table}: {len(rows):,} rows")


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ Event Seed Generator ═══")
    engine = create_engine(_db_url(), echo=False)

    print("Creating tables …")
    with engine.begin() as conn:
        for ddl in _DDL:
            conn.execute(text(ddl))
        for t in ["public.events", "public.orders"]:
            conn.execute(text(f"TRUNCATE TABLE {t} RESTART IDENTITY"))

    print("Generating data …")
    events = gen_events()
    orders = gen_orders()

    print("Inserting …")
    _bulk_insert(engine, "public.events", events)
    _bulk_insert(engine, "public.orders", orders)

    print(f"\nDone: seeded {len(events):,} events and {len(orders):,} orders.")


if __name__ == "__main__":
    main()
