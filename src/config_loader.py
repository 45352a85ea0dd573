import os
from typing import Optional

import yaml
from dotenv import load_dotenv


load_dotenv()

DEFAULTS = {
    "limits": {"max_bytes": 10 * 1024 * 1024, "min_amount": "0.01", "max_amount": "10000000"},
    "enhancement": {
        "scale": 2.0,
        "methods": ["standard", "high-contrast", "denoised"],
        "window": 15,
        "offset": 15,
        "min_threshold": 50,
        "contrast": 3.0,
        "binary_threshold": 140,
        "unsharp_amount": 1.5,
        "gamma": 1.5,
    },
    "recognition": {"max_workers": 1},
    "pdf": {"scale": 2.0, "min_embedded_text": 50},
    "dates": {"days_past": 365, "days_future": 30},
}


def _default_path() -> str:
    return os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config", "extraction.yml")


def merge_config(cfg: Optional[dict]) -> dict:
    # shallow merge defaults
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}
    for k, v in (cfg or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged


def load_extraction_config(path: Optional[str] = None) -> dict:
    path = path or os.getenv("RECEIPT_EXTRACTION_CONFIG") or _default_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return merge_config(None)
    return merge_config(cfg)
