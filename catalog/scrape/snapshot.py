from pathlib import Path
from typing import Iterable

import orjson

from ..models import Record


def append_jsonl(path: Path, records: Iterable[Record]) -> int:
    """Append records to a JSON-lines snapshot file; returns how many were written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with open(path, "ab") as f:
        for record in records:
            f.write(orjson.dumps(record.model_dump(mode="json")) + b"\n")
            n += 1
    return n
