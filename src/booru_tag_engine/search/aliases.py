"""エイリアス解決.

タグ名を有効なエイリアス（antecedent → consequent）で正規名に置き換えます。
承認時にチェーンは畳み込まれるため、解決は常に1段です。
"""

from __future__ import annotations

import threading

from loguru import logger

from booru_tag_engine.core.store import TagStore


class AliasResolver:
    """読み取りキャッシュ付きのエイリアス解決器.

    ストアの alias_generation が変わるとキャッシュを破棄するため、同一プロセス内の
    エイリアス変更は即座に反映される。
    """

    def __init__(self, store: TagStore) -> None:
        self._store = store
        self._cache: dict[str, str] = {}
        self._generation = store.alias_generation
        self._lock = threading.Lock()

    def resolve(self, name: str) -> str:
        """正規名を返す. エイリアスがなければそのまま返す（存在しないタグ名も含む）."""
        with self._lock:
            if self._generation != self._store.alias_generation:
                self._cache.clear()
                self._generation = self._store.alias_generation
            cached = self._cache.get(name)
        if cached is not None:
            return cached

        consequent = self._store.active_alias_consequent(name)
        resolved = consequent if consequent is not None else name
        if consequent is not None:
            logger.debug(f"Alias resolved: {name} -> {consequent}")
        with self._lock:
            self._cache[name] = resolved
        return resolved
