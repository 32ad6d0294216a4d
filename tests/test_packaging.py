import re
import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def _requirements() -> dict[str, str]:
    data = tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))
    parsed = {}
    for requirement in data["project"]["dependencies"]:
        name, spec = re.match(r"([A-Za-z0-9_.-]+)(.*)", requirement).groups()
        parsed[name.lower()] = spec.strip()
    return parsed


def test_pydantic_settings_floor_supports_nodecode():
    # config.py は NoDecode を使うため 2.7 以降が必要
    from pydantic_settings import NoDecode  # noqa: F401

    spec = _requirements()["pydantic-settings"]
    floor = re.match(r">=\s*(\d+)\.(\d+)", spec)
    assert floor is not None, spec
    assert (int(floor.group(1)), int(floor.group(2))) >= (2, 7)


def test_runtime_dependencies_are_declared():
    assert {"fastapi", "pydantic", "pydantic-settings", "structlog"} <= set(_requirements())
