from dotenv import load_dotenv

load_dotenv()

import os
import requests

token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
tg_base = os.getenv("TELEGRAM_API_BASE_URL", "https://api.telegram.org").strip().rstrip("/")
dex_base = os.getenv("DEXSCREENER_BASE_URL", "https://api.dexscreener.com").strip().rstrip("/")
query = os.getenv("DEXSCREENER_QUERY", "solana").strip()

if not token:
    raise SystemExit("Missing TELEGRAM_BOT_TOKEN")

r = requests.get(f"{tg_base}/bot{token}/getMe", timeout=10)
print("telegram getMe:", r.status_code)
print(r.text[:400])

r = requests.get(f"{dex_base}/latest/dex/search", params={"q": query}, timeout=15)
print("dexscreener search:", r.status_code)
pairs = []
if r.status_code == 200:
    pairs = (r.json() or {}).get("pairs") or []
print("pairs returned:", len(pairs))
for p in pairs[:5]:
    base = (p.get("baseToken") or {}).get("symbol")
    vol = (p.get("volume") or {}).get("m5")
    print(f"  {p.get('chainId')} {base} liq={(p.get('liquidity') or {}).get('usd')} vol5m={vol}")
