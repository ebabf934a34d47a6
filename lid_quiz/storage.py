"""
storage.py
======================

複数のバックエンドにフォールバックする永続ストレージ。

優先順位:
    durable (JSON ファイル) > session (st.session_state など) > cookie

- 書き込みは「使える中で最良のストア」を優先し、失敗したら順に下位へ落とす
- 読み込みは書き込み先を仮定せず、durable → session → cookie の順に探す
  （以前 durable に書いていた環境で durable が使えなくなっても読めるように）
- 削除は 3 つすべてから行う
- どの操作も例外を呼び出し側へ投げない（ログに残して bool / None を返す）
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
import uuid
from datetime import datetime, timedelta, timezone
from http.cookies import CookieError, SimpleCookie
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

STORAGE_VERSION = "1.0"
VERSION_KEY = "_storage_version"
PROBE_KEY = "__test__"

# 約 100 年
DEFAULT_COOKIE_DAYS = 36500


APP_COOKIE_PREFIX = "lid."
CLIENT_ID_KEY = "lid.clientId"
_CLIENT_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class StorageUnavailableError(RuntimeError):
    """ストアが使えない（無効化・容量超過・未接続など）ことを表す。"""


def is_app_cookie(name: str) -> bool:
    return name.startswith(APP_COOKIE_PREFIX) or name == VERSION_KEY


# ----------------------------------------------------------------------
#  ブラウザごとの保存先
# ----------------------------------------------------------------------
def is_valid_client_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_CLIENT_ID_RE.match(value))


def resolve_client_id(cookies: Optional[Mapping[str, str]] = None) -> str:
    """
    Cookie の lid.clientId を返す。無い・形式が不正なら新しく発行する。
    id はそのままディレクトリ名になるので 32 桁の 16 進数以外は受け付けない。
    """
    value = (cookies or {}).get(CLIENT_ID_KEY)
    if is_valid_client_id(value):
        return value
    return uuid.uuid4().hex


def client_path(path: Path, client_id: Optional[str]) -> Path:
    """data/storage.json → data/<client_id>/storage.json"""
    path = Path(path)
    if client_id is None:
        return path
    if not is_valid_client_id(client_id):
        raise ValueError(f"不正なクライアント id です: {client_id!r}")
    return path.parent / client_id / path.name


# ----------------------------------------------------------------------
#  各ストア（生の文字列だけを扱う）
# ----------------------------------------------------------------------
class StorageTier:
    """get_item / set_item / remove_item を持つストアの共通インターフェース。"""

    name = "tier"

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, raw: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def is_available(self) -> bool:
        """捨てキーを書いて消せるかどうかで利用可否を判定する。"""
        try:
            self.set_item(PROBE_KEY, "test")
            self.remove_item(PROBE_KEY)
            return True
        except Exception:
            return False


_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    """同じファイルを指す DurableStore どうしで共有するロック。"""
    key = str(path.resolve())
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


class DurableStore(StorageTier):
    """
    プロセスを再起動しても残るストア。
    1 つの JSON ファイルに {key: 文字列} の形で保存する。

    Streamlit はセッションごとに別スレッドで動き、タイマーも別スレッドから書く。
    読み込み→更新→書き込みはパスごとのロックの中で行い、
    一時ファイルは書き込みごとに別名にする。
    """

    name = "durable"

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageUnavailableError(f"{self.path} を読めません: {e}") from e
        if not isinstance(data, dict):
            raise StorageUnavailableError(f"{self.path} の形式が不正です")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=self.path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            json.dump(data, tmp, ensure_ascii=False, indent=2)
        try:
            os.replace(tmp.name, self.path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_item(self, key: str, raw: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = raw
            self._write_all(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)


class SessionStore(StorageTier):
    """
    セッションの間だけ残るストア。
    Streamlit では st.session_state を渡す（テストでは普通の dict）。
    """

    name = "session"
    # st.session_state の他のキーとぶつからないように接頭辞を付ける
    prefix = "_lid_store:"

    def __init__(self, backing: Optional[MutableMapping[str, Any]] = None):
        self.backing = backing if backing is not None else {}

    def get_item(self, key: str) -> Optional[str]:
        return self.backing.get(self.prefix + key)

    def set_item(self, key: str, raw: str) -> None:
        self.backing[self.prefix + key] = raw

    def remove_item(self, key: str) -> None:
        self.backing.pop(self.prefix + key, None)


class CookieJarStore(StorageTier):
    """
    Cookie を保存するストア。

    - 値は URL エンコードして保存する
    - expires (既定 約 100 年) / path=/ / SameSite=Lax
    - Secure は https で配信している場合のみ
    - path を指定すると Set-Cookie 形式でファイルに保存し、次回起動時に読み戻す
    """

    name = "cookie"

    def __init__(self, path: Optional[Path] = None, secure: bool = False):
        self.path = Path(path) if path is not None else None
        self.secure = secure
        self.jar = SimpleCookie()
        if self.path is not None and self.path.exists():
            for line in self.path.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    self.jar.load(line)
                except CookieError as e:
                    logger.warning("Cookie 行を読み飛ばしました: %s", e)

    # ------------------------------------------------------------------
    # リクエスト Cookie の取り込み / Set-Cookie ヘッダの出力
    # ------------------------------------------------------------------
    def load_request_cookies(self, cookies: Mapping[str, str]) -> None:
        """
        ブラウザから届いた Cookie（st.context.cookies など）を取り込む。
        このアプリのキー（lid.* と VERSION_KEY）だけを対象にし、_xsrf などは無視する。
        """
        for name, value in cookies.items():
            if not is_app_cookie(name):
                continue
            if name not in self.jar:
                self.jar[name] = value
                self._apply_attributes(name, DEFAULT_COOKIE_DAYS)

    def remember_client_id(self, client_id: str) -> None:
        """lid.clientId は JSON 化せずそのまま保存する（ディレクトリ名として使うため）。"""
        morsel = self.jar.get(CLIENT_ID_KEY)
        if morsel is not None and morsel.value == client_id:
            return
        self.jar[CLIENT_ID_KEY] = client_id
        self._apply_attributes(CLIENT_ID_KEY, DEFAULT_COOKIE_DAYS)
        self._save()

    def headers(self) -> List[str]:
        """ブラウザへ返す Set-Cookie ヘッダの値一覧。"""
        return [morsel.OutputString() for morsel in self.jar.values()]

    # ------------------------------------------------------------------
    # StorageTier
    # ------------------------------------------------------------------
    def get_item(self, key: str) -> Optional[str]:
        morsel = self.jar.get(key)
        if morsel is None or not morsel.value:
            return None
        return unquote(morsel.value)

    def set_item(self, key: str, raw: str, days: int = DEFAULT_COOKIE_DAYS) -> None:
        if days < 0:
            self.remove_item(key)
            return
        self.jar[key] = quote(raw, safe="")
        self._apply_attributes(key, days)
        self._save()

    def remove_item(self, key: str) -> None:
        if key in self.jar:
            del self.jar[key]
            self._save()

    def _apply_attributes(self, key: str, days: int) -> None:
        expires = datetime.now(timezone.utc) + timedelta(days=days)
        morsel = self.jar[key]
        morsel["expires"] = expires.strftime("%a, %d %b %Y %H:%M:%S GMT")
        morsel["path"] = "/"
        morsel["samesite"] = "Lax"
        if self.secure:
            morsel["secure"] = True

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n".join(self.headers()) + "\n", encoding="utf-8")


# ----------------------------------------------------------------------
#  StorageAdapter
# ----------------------------------------------------------------------
class StorageAdapter:
    """
    durable → session → cookie の 3 段フォールバックを持つ統一ストレージ。

    主な API:
    - set(key, value, enabled) -> bool
    - get(key) -> value | None
    - remove(key) -> None
    - info() -> dict（デバッグ表示用）
    """

    def __init__(
        self,
        durable: StorageTier,
        session: StorageTier,
        cookie: StorageTier,
    ):
        self.durable = durable
        self.session = session
        self.cookie = cookie

    @property
    def tiers(self) -> List[StorageTier]:
        return [self.durable, self.session, self.cookie]

    def tier(self, name: str) -> StorageTier:
        for t in self.tiers:
            if t.name == name:
                return t
        raise ValueError(f"未知のストア: {name}")

    # ------------------------------------------------------------------
    # ストア選択
    # ------------------------------------------------------------------
    def best_tier(self) -> StorageTier:
        """プローブで使える最良のストアを返す。どれも使えなければ cookie。"""
        if self.durable.is_available():
            return self.durable
        if self.session.is_available():
            return self.session
        return self.cookie

    # ------------------------------------------------------------------
    # 書き込み
    # ------------------------------------------------------------------
    def set(self, key: str, value: Any, enabled: bool = True) -> bool:
        """
        value を JSON 化して保存する。
        優先ストアで失敗したら session → cookie の順にフォールバックし、
        どこかで成功すれば True、すべて失敗なら False。
        """
        if not enabled:
            return False

        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error("%s をシリアライズできません: %s", key, e)
            return False

        best = self.best_tier()

        try:
            self._write(best, key, raw)
            return True
        except Exception as e:
            logger.error("%s への書き込みに失敗しました (%s): %s", best.name, key, e)

        # フォールバック: session
        if best is not self.session and best is not self.cookie and self.session.is_available():
            try:
                self._write(self.session, key, raw)
                return True
            except Exception as e:
                logger.error("session へのフォールバックに失敗しました (%s): %s", key, e)

        # 最終フォールバック: cookie
        if best is not self.cookie:
            try:
                self._write(self.cookie, key, raw)
                return True
            except Exception as e:
                logger.error("cookie へのフォールバックに失敗しました (%s): %s", key, e)

        return False

    def _write(self, tier: StorageTier, key: str, raw: str) -> None:
        tier.set_item(key, raw)
        if tier is not self.cookie:
            tier.set_item(VERSION_KEY, json.dumps(STORAGE_VERSION))

    # ------------------------------------------------------------------
    # 読み込み
    # ------------------------------------------------------------------
    def get(self, key: str) -> Any:
        """durable → session → cookie の順に探し、最初に見つかった値を返す。"""
        for tier in self.tiers:
            try:
                if tier is not self.cookie and not tier.is_available():
                    continue
                raw = tier.get_item(key)
            except Exception as e:
                logger.error("%s からの読み込みに失敗しました (%s): %s", tier.name, key, e)
                continue
            if raw is None or raw == "":
                continue
            try:
                return json.loads(raw)
            except ValueError as e:
                logger.error("%s の %s を JSON として読めません: %s", tier.name, key, e)
                return None
        return None

    # ------------------------------------------------------------------
    # 削除
    # ------------------------------------------------------------------
    def remove(self, key: str) -> None:
        """すべてのストアから key を削除する（失敗は握りつぶしてログのみ）。"""
        for tier in self.tiers:
            try:
                tier.remove_item(key)
            except Exception as e:
                logger.error("%s からの削除に失敗しました (%s): %s", tier.name, key, e)

    # ------------------------------------------------------------------
    # 生データアクセス（移行処理用）
    # ------------------------------------------------------------------
    def raw_get(self, tier_name: str, key: str) -> Optional[str]:
        try:
            return self.tier(tier_name).get_item(key)
        except Exception as e:
            logger.error("%s の生データ取得に失敗しました (%s): %s", tier_name, key, e)
            return None

    def raw_set(self, tier_name: str, key: str, raw: str) -> bool:
        try:
            self.tier(tier_name).set_item(key, raw)
            return True
        except Exception as e:
            logger.error("%s への生データ書き込みに失敗しました (%s): %s", tier_name, key, e)
            return False

    # ------------------------------------------------------------------
    # デバッグ情報
    # ------------------------------------------------------------------
    def info(self) -> Dict[str, Any]:
        """ストレージの状態をまとめて返す（StorageDebug 表示用）。"""
        try:
            best = self.best_tier().name
            available = {
                "durable": self.durable.is_available(),
                "session": self.session.is_available(),
                "cookie": self.cookie.is_available(),
            }
            version = self.get(VERSION_KEY) or "legacy"
        except Exception as e:
            logger.error("ストレージ情報の取得に失敗しました: %s", e)
            return {"best": None, "available": {}, "version": "legacy"}
        return {"best": best, "available": available, "version": version}


def build_adapter(
    durable_path: Path,
    session_backing: Optional[MutableMapping[str, Any]] = None,
    cookie_path: Optional[Path] = None,
    secure: bool = False,
    request_cookies: Optional[Mapping[str, str]] = None,
    client_id: Optional[str] = None,
) -> StorageAdapter:
    """
    設定値から 3 段の StorageAdapter を組み立てる。
    client_id を渡すと durable / cookie ファイルをブラウザごとのディレクトリに分ける。
    """
    durable_path = client_path(durable_path, client_id)
    if cookie_path is not None:
        cookie_path = client_path(cookie_path, client_id)

    cookie = CookieJarStore(cookie_path, secure=secure)
    if request_cookies:
        cookie.load_request_cookies(request_cookies)
    if client_id is not None:
        cookie.remember_client_id(client_id)
    return StorageAdapter(
        durable=DurableStore(durable_path),
        session=SessionStore(session_backing),
        cookie=cookie,
    )


def keys_present(adapter: StorageAdapter, keys: Iterable[str]) -> Dict[str, bool]:
    """各キーがどこかのストアに存在するかを返す（デバッグ表示用）。"""
    return {k: adapter.get(k) is not None for k in keys}
