#!/usr/bin/env python
"""デモ用の語彙（スペイン語・フランス語の初級語）を SQLite ストアへ投入するユーティリティ。"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--db-path",
        default=None,
        type=Path,
        help="投入先 SQLite のパス（既定: VOCABULARY_DB_PATH または .data/lingualeap.sqlite3）",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="既存データの有無に関わらず不足しているデモ語を追加する場合に指定。",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    # 設定クラスは import 時点で環境変数を読むため、先に上書きしてから読み込む。
    if args.db_path is not None:
        os.environ["VOCABULARY_DB_PATH"] = str(args.db_path)

    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root / "src"))

    from lingualeap.logging import configure_logging
    from lingualeap.seed import seed_demo_vocabulary
    from lingualeap.store import store

    configure_logging()
    inserted = seed_demo_vocabulary(store, force=args.force)
    if inserted == 0:
        print("Vocabulary already present. Skipping seed.")
    else:
        print(f"Seeded {inserted} vocabulary words into {store.db_path}.")


if __name__ == "__main__":
    main()
