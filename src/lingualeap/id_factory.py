"""ID 生成ユーティリティ。

語彙アイテムの ID は URL パスにそのまま載せられる文字だけで構成し、
種別が一目で分かるよう prefix "v:" を付与する。
"""

from __future__ import annotations

import uuid


def generate_vocabulary_id() -> str:
    """語彙アイテムの新規 ID を生成する。"""

    return f"v:{uuid.uuid4().hex}"
