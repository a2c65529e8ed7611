"""
Experiment configuration.

Edit CONFIG directly to change the design; every key is read with a
default so partial dicts work in tests.
"""

from dataclasses import dataclass


CONFIG = {
    # ── Design ────────────────────────────────────────────────────────────
    "points_per_trial": 5,
    "trials_per_condition": 20,

    # ── Conditions (one visual encoding each) ─────────────────────────────
    # id must match a renderer in viz.default_renderers()
    "conditions": [
        {"id": "bw", "label": "Bar Chart (B&W)",
         "hypothesis": "Position along a common scale → lowest error (baseline)"},
        {"id": "multicolor", "label": "Bar Chart (Multi-Color)",
         "hypothesis": "Color coding aids identification but may inflate error vs B&W"},
        {"id": "gradient", "label": "Bar Chart (Gradient)",
         "hypothesis": "Gradient fill may hinder accurate length estimation vs solid fill"},
    ],

    # ── Trial generation ──────────────────────────────────────────────────
    "value_lower": 2,
    "value_upper": 99,
    "min_marked_gap": 5,            # |v1 - v2| lower bound; 0 = off
    "max_generation_attempts": 10000,

    # ── Display ───────────────────────────────────────────────────────────
    "screen_width": 900,
    "screen_height": 700,
    "chart_size": 420,
    "bg_color": (230, 230, 245),
    "text_color": (30, 30, 35),
    "accent_color": (100, 180, 255),
    "error_color": (200, 60, 60),
    "font_size_title": 30,
    "font_size_text": 22,
    "font_size_small": 16,

    # ── Logging / reproducibility ─────────────────────────────────────────
    "log_dir": "logs",              # JSONL session logs; None = off
    "rng_seed": None,               # int to reproduce exactly; None = auto-generate

    # ── Persistence ───────────────────────────────────────────────────────
    "data_dir": "data",
    "storage_key": "cm_experiment_records_v1",
    "export_dir": "exports",
}


@dataclass(frozen=True)
class Condition:
    id: str
    label: str
    hypothesis: str = ""


def load_conditions(config: dict) -> list[Condition]:
    conditions = []
    for c in config.get("conditions", []):
        conditions.append(Condition(
            id=c["id"],
            label=c.get("label", c["id"]),
            hypothesis=c.get("hypothesis", ""),
        ))
    return conditions
