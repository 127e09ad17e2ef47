"""商品 ID の正規化・照合モジュール.

ネイバーショッピングの商品 ID は URL ごとに表現が揃っていない。
  - 先頭ゼロ・ゼロ幅文字・空白が混入する
  - HTML エンティティ化（&amp;）や多重パーセントエンコードされる
  - ID がリダイレクト用ラッパー URL の url= などの中にしか無い
そのため照合前に正規化し、URL は複数段階でデコードしてから抽出する。
"""

from __future__ import annotations

import html
import re
from urllib.parse import parse_qs, unquote, urlsplit

from rank_tracker.models import IdentifierCandidateSet

_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"[^0-9]")

# リダイレクト先 URL を運ぶクエリパラメータ
INNER_URL_KEYS = (
    "url", "u", "link", "redir", "redirect", "redirect_url",
    "targetUrl", "origUrl", "dest", "to",
)

_PROD_NO_PATH = re.compile(r"/products?/(\d+)", re.IGNORECASE)
_CATALOG_PATH = re.compile(r"/catalog/(\d+)", re.IGNORECASE)
_NV_MID_QUERY = re.compile(r"[?&](?:nvMid|nv_mid)=(\d+)", re.IGNORECASE)
_PRODUCT_ID_QUERY = re.compile(r"[?&]productId=(\d+)", re.IGNORECASE)
_PROD_NO_QUERY = re.compile(r"[?&]prodNo=(\d+)", re.IGNORECASE)
_PRD_NO_QUERY = re.compile(r"[?&]prdNo=(\d+)", re.IGNORECASE)  # 11番街


def normalize(raw: object) -> str:
    """ID 文字列を比較用の数字列に正規化する（冪等）."""
    if raw is None:
        return ""
    text = _ZERO_WIDTH.sub("", str(raw))
    text = _WHITESPACE.sub("", text)
    text = _NON_DIGIT.sub("", text)
    return text.lstrip("0")


def equals(a: object, b: object) -> bool:
    """2 つの ID が同じ商品を指すか判定する. None や空 ID は一致しない."""
    if a is None or b is None:
        return False
    na = normalize(a)
    return bool(na) and na == normalize(b)


def matches_any(ids: IdentifierCandidateSet, target: str, *extra: str | None) -> bool:
    """抽出済み ID 群（と追加の ID）のどれかが target と一致するか."""
    return any(equals(value, target) for value in (*ids.values(), *extra))


def safe_decode(value: str, times: int = 3) -> str:
    """HTML エンティティを戻し、最大 times 回パーセントデコードする.

    デコードしても変化しなくなった時点で打ち切る。
    """
    current = html.unescape(value)
    for _ in range(times):
        decoded = unquote(current)
        if decoded == current:
            break
        current = decoded
    return current


def _inner_urls(url: str) -> list[str]:
    """クエリ文字列からリダイレクト先らしき値を INNER_URL_KEYS 順に取り出す."""
    try:
        query = urlsplit(url).query
    except ValueError:
        return []
    params = parse_qs(query)
    return [params[key][0] for key in INNER_URL_KEYS if params.get(key)]


def _scan(text: str) -> IdentifierCandidateSet:
    prod_no = _first_group(text, _PROD_NO_PATH, _PROD_NO_QUERY)
    nv_mid = _first_group(text, _NV_MID_QUERY)
    product_id = _first_group(text, _CATALOG_PATH, _PRODUCT_ID_QUERY, _PRD_NO_QUERY)
    return IdentifierCandidateSet(prod_no=prod_no, nv_mid=nv_mid, product_id=product_id)


def _first_group(text: str, *patterns: re.Pattern) -> str | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m.group(1)
    return None


def candidate_urls(url: str) -> list[str]:
    """ID 探索対象の文字列を外側（未デコード）→ 内側（デコード済み）の順に並べる."""
    outer = html.unescape(url)
    decoded = safe_decode(url)
    candidates = [outer, decoded]

    inner_values: list[str] = []
    for source in (outer, decoded):
        for value in _inner_urls(source):
            if value not in inner_values:
                inner_values.append(value)
    for value in inner_values:
        candidates.append(value)
        candidates.append(safe_decode(value))
    return candidates


def extract_candidate_ids(url: str | None) -> IdentifierCandidateSet:
    """URL から prodNo / nvMid / productId を抽出する.

    候補を外側から順に走査し、いずれかの ID が見つかった最初の候補の結果を返す。
    見つからなければ空の IdentifierCandidateSet。
    """
    if not url:
        return IdentifierCandidateSet()
    for text in candidate_urls(url):
        ids = _scan(text)
        if ids:
            return ids
    return IdentifierCandidateSet()
