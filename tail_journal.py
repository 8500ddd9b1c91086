import json
import sqlite3
import sys

DB_PATH = "data/bot.db"

limit = int(sys.argv[1]) if len(sys.argv) > 1 else 20

conn = sqlite3.connect(DB_PATH)
cur = conn.cursor()

cur.execute(
    "SELECT run_id, started_at, stopped_at, mode FROM runs ORDER BY started_at DESC LIMIT 1"
)
run = cur.fetchone()
print("LAST RUN:", run)

cur.execute(
    "SELECT timestamp_utc, event_type, pair_id, action, details_json FROM events ORDER BY id DESC LIMIT ?",
    (limit,),
)

for ts, event_type, pair_id, action, details in reversed(cur.fetchall()):
    print(ts, event_type, pair_id or "-", action or "-", json.loads(details or "{}"))

conn.close()
