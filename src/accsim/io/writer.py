from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List


class OutputWriter:
    def __init__(self, output_root: str) -> None:
        self.output_root = Path(output_root)

    def write_run(self, run_id: str, trajectory: List[Dict[str, Any]], labels: Dict[str, Any], meta: Dict[str, Any]) -> Path:
        run_dir = self.output_root / "runs" / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        with open(run_dir / "meta.json", "w", encoding="utf-8") as f:
            json.dump(meta, f, ensure_ascii=False, indent=2)
        with open(run_dir / "labels.json", "w", encoding="utf-8") as f:
            json.dump(_json_safe(labels), f, ensure_ascii=False, indent=2)

        try:
            import pandas as pd

            df = pd.DataFrame(trajectory)
            df.to_parquet(run_dir / "trajectory.parquet", index=False)
        except Exception:
            with open(run_dir / "trajectory.json", "w", encoding="utf-8") as f:
                json.dump(trajectory, f, ensure_ascii=False)
        return run_dir


def _json_safe(values: Dict[str, Any]) -> Dict[str, Any]:
    # JSON has no infinity; an unbounded TTC is written as null
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, float) and value in (float("inf"), float("-inf")):
            out[key] = None
        else:
            out[key] = value
    return out
