"""Per-condition error summary for a finished session."""

import math


def _mean(xs: list[float]) -> float | None:
    return sum(xs) / len(xs) if xs else None


def _sd(xs: list[float]) -> float | None:
    if len(xs) < 2:
        return None
    m = sum(xs) / len(xs)
    return math.sqrt(sum((x - m) ** 2 for x in xs) / (len(xs) - 1))


def summarize(records: list[dict]) -> dict[str, dict]:
    """
    Group trial records by condition and compute error statistics.

    The 95 % interval on the mean log2 error uses the normal
    approximation (mean ± 1.96 · SD / √n) and is None below two trials.
    """
    groups: dict[str, list[dict]] = {}
    for r in records:
        groups.setdefault(r["condition_id"], []).append(r)

    summary = {}
    for cond_id, rows in groups.items():
        log2 = [float(r["log2_error"]) for r in rows]
        raw = [float(r["raw_error"]) for r in rows]
        rts = [float(r["reaction_time_ms"]) for r in rows if r.get("reaction_time_ms") is not None]
        mean_log2 = _mean(log2)
        sd_log2 = _sd(log2)
        ci = None
        if sd_log2 is not None:
            half = 1.96 * sd_log2 / math.sqrt(len(log2))
            ci = (mean_log2 - half, mean_log2 + half)
        summary[cond_id] = {
            "condition_id": cond_id,
            "condition_label": rows[0].get("condition_label", cond_id),
            "n": len(rows),
            "mean_raw_error": _mean(raw),
            "mean_log2_error": mean_log2,
            "sd_log2_error": sd_log2,
            "ci95_log2_error": ci,
            "mean_reaction_time_ms": _mean(rts),
        }
    return summary


def format_summary(summary: dict[str, dict]) -> str:
    hdr = (f"{'Condition':<26} {'Trials':>6} {'Raw err':>8} {'log2 err':>9} "
           f"{'95 % CI':>18} {'RT (ms)':>9}")
    lines = [hdr, "─" * len(hdr)]
    for s in summary.values():
        ci = s["ci95_log2_error"]
        ci_str = f"[{ci[0]:.2f}, {ci[1]:.2f}]" if ci else "N/A"
        rt = s["mean_reaction_time_ms"]
        rt_str = f"{rt:.0f}" if rt is not None else "N/A"
        lines.append(
            f"{s['condition_label']:<26} {s['n']:>6} {s['mean_raw_error']:>8.2f} "
            f"{s['mean_log2_error']:>9.3f} {ci_str:>18} {rt_str:>9}"
        )
    return "\n".join(lines)
