import copy
import json
from pathlib import Path


def write_json(tmp_path: Path, data: dict, filename: str = "rules.json") -> Path:
    path = tmp_path / filename
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def clone(data: dict) -> dict:
    return copy.deepcopy(data)
