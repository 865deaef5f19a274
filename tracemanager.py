import os
from datetime import datetime, timezone
import json


def _now():
    return datetime.now(timezone.utc).isoformat()


class TraceManager:
    def __init__(self, enabled=True, out_dir="traces"):
        self.enabled = enabled
        self.out_dir = out_dir
        self.trace = []
        self.step = 0

        if enabled:
            os.makedirs(out_dir, exist_ok=True)

    def start_step(self, action, target=None, params=None):
        self.step += 1
        entry = {
            "step": self.step,
            "action": action,
            "target": target,
            "params": params or {},
            "start_time": _now(),
            "retries": 0,
            "result": None,
            "error": None,
            "artifacts": {}
        }
        self.trace.append(entry)
        return entry

    def record_retry(self, entry, fault=None):
        entry["retries"] += 1
        if fault is not None:
            entry["error"] = str(fault)

    def success(self, entry):
        entry["end_time"] = _now()
        entry["result"] = "SUCCESS"
        entry["error"] = None

    def failure(self, entry, error):
        entry["end_time"] = _now()
        entry["result"] = "FAILURE"
        entry["error"] = str(error)

    def timed_out(self, entry, budget_seconds):
        # last transient fault, if any, stays in "error"
        entry["end_time"] = _now()
        entry["result"] = "TIMEOUT"
        entry["params"]["budget_seconds"] = budget_seconds

    def attach_artifact(self, entry, name, filename):
        entry["artifacts"][name] = filename

    def artifact_path(self, entry, suffix):
        return os.path.join(self.out_dir, f"step_{entry['step']}.{suffix}")

    def dump(self):
        path = os.path.join(self.out_dir, "trace.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.trace, f, indent=2)
        return path
