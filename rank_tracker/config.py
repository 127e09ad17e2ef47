"""設定モジュール（環境変数・定数定義）."""

import os
from datetime import timedelta, timezone
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.getenv("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA = "rank_tracker"

# --- Naver OpenAPI（未設定ならブラウザ検索にフォールバック）---
NAVER_CLIENT_ID: str = os.getenv("NAVER_CLIENT_ID", "")
NAVER_CLIENT_SECRET: str = os.getenv("NAVER_CLIENT_SECRET", "")
OPENAPI_URL = "https://openapi.naver.com/v1/search/shop.json"

# --- ネイバーショッピング検索 ---
SEARCH_URL_TEMPLATE = (
    "https://search.shopping.naver.com/search/all"
    "?query={keyword}&pagingIndex={page}&pagingSize={page_size}"
    "&productSet=total&sort=rel&viewType=list"
)
AD_SEARCH_URL_TEMPLATE = SEARCH_URL_TEMPLATE + "&adQuery={keyword}"
SEARCH_BASE_URL = "https://search.shopping.naver.com"

# --- User-Agent ---
PC_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

# --- 順位計算 ---
PAGE_SIZE = 40  # 検索画面の 1 ページあたり件数
API_PAGE_SIZE = 100  # OpenAPI の display 上限
API_PAGE_STARTS = (1, 101)  # 上位 200 件
REDIRECT_BATCH_SIZE = 8

# --- リクエスト設定 ---
REQUEST_TIMEOUT = 8  # 秒
REDIRECT_TIMEOUT = 8  # 秒

# --- ブラウザ ---
HEADLESS = os.getenv("HEADLESS", "1") not in {"0", "false", "False"}
BROWSER_MAX_PAGES = int(os.getenv("BROWSER_MAX_PAGES", "5"))
AD_MAX_PAGES = int(os.getenv("AD_MAX_PAGES", "10"))
NAVIGATION_TIMEOUT_MS = 90_000
CARD_WAIT_TIMEOUT_MS = 15_000

# --- キュー ---
MAX_RETRIES = 2
RETRY_BACKOFF = 2.0  # 秒
AFTER_SUCCESS_DELAY = 0.5  # 秒
PROGRESS_RETENTION = timedelta(minutes=30)

# --- スケジューラ ---
# 60 = 分単位, 10 = 秒単位（テスト・デモ用）
TICK_SECONDS = int(os.getenv("TICK_SECONDS", "60"))
KST = timezone(timedelta(hours=9))
HISTORY_RETENTION_YEARS = 3
SNAPSHOT_DAYS = 7

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)
