"""Pytest configuration: point the module-level store at a throwaway database."""

import os
import tempfile
from pathlib import Path

# 設定クラスは import 時点で環境変数を読むため、lingualeap を読み込む前に一時 DB を指定する。
_TMP_DIR = Path(tempfile.mkdtemp(prefix="lingualeap-tests-"))
os.environ.setdefault("VOCABULARY_DB_PATH", str(_TMP_DIR / "default.sqlite3"))
os.environ.setdefault("AUTO_SEED_ON_STARTUP", "false")
