"""現在のスナップショットへの参照を保持するストア"""

from __future__ import annotations

import threading

from .models import ToggleSnapshot


class ToggleStore:
    """最新のトグルスナップショットを保持するストア。

    読み取りはロックを取らず、参照を 1 回読むだけ。書き込みは参照の差し替えのみで、
    差し替えの間だけ書き込み側のロックを保持する。
    """

    def __init__(self, initial: ToggleSnapshot | None = None) -> None:
        self._snapshot = initial if initial is not None else ToggleSnapshot.empty()
        self._write_lock = threading.Lock()

    def current_snapshot(self) -> ToggleSnapshot:
        return self._snapshot

    def install(self, snapshot: ToggleSnapshot) -> ToggleSnapshot:
        """スナップショットを差し替え、直前のスナップショットを返す。"""
        with self._write_lock:
            previous = self._snapshot
            self._snapshot = snapshot
        return previous

    @property
    def revision(self) -> str | None:
        return self._snapshot.revision
