import json, math, base64, io
from pathlib import Path
from datetime import datetime, timezone
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt


# -------------------------
# Helpers
# -------------------------
def _read_json(path):
    try:
        return json.loads(Path(path).read_text())
    except Exception:
        return {}


def _png_bytes_to_data_uri(buf):
    b64 = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{b64}"


def _col(df, *names):
    for c in df.columns:
        if str(c).strip().lower() in names:
            return c
    return None


def operation_table(locust_stats_csv) -> pd.DataFrame:
    """One row per tsdb operation (insert, read, scan[...]) from a locust stats csv."""
    df = pd.read_csv(locust_stats_csv)
    name_col = _col(df, "name")
    req_col = _col(df, "request count", "requests", "num_requests")
    fail_col = _col(df, "failure count", "failures", "num_failures")
    if name_col is None or req_col is None:
        return pd.DataFrame(columns=["operation", "requests", "failures", "failure_%", "median_ms", "p95_ms", "rps"])

    df = df[df[name_col].astype(str) != "Aggregated"].copy()
    out = pd.DataFrame({"operation": df[name_col].astype(str)})
    out["requests"] = df[req_col].fillna(0).astype(float).values
    out["failures"] = df[fail_col].fillna(0).astype(float).values if fail_col is not None else 0.0
    out["failure_%"] = (100.0 * out["failures"] / out["requests"]).where(out["requests"] > 0)
    median_col = _col(df, "median response time", "50%")
    p95_col = _col(df, "95%")
    rps_col = _col(df, "requests/s")
    out["median_ms"] = df[median_col].astype(float).values if median_col is not None else math.nan
    out["p95_ms"] = df[p95_col].astype(float).values if p95_col is not None else math.nan
    out["rps"] = df[rps_col].astype(float).values if rps_col is not None else math.nan
    return out.sort_values("operation").reset_index(drop=True)


def _bar(x, y, title, ylabel, highlight=None):
    fig, ax = plt.subplots(figsize=(7, 4))
    colors = ["#ff6f69" if v == highlight else "#88d8b0" for v in x]
    ax.bar(list(x), list(y), color=colors)
    ax.set_title(title)
    ax.set_ylabel(ylabel)
    ax.tick_params(axis="x", labelrotation=30)
    buf = io.BytesIO()
    plt.tight_layout()
    plt.savefig(buf, format="png")
    plt.close(fig)
    return _png_bytes_to_data_uri(buf)


# -------------------------
# Main analysis
# -------------------------
def analyze_run(run_dir: str):
    run_dir = Path(run_dir)

    manifest = _read_json(run_dir / "manifest.json")
    summary = _read_json(run_dir / "summary.json")
    stats_csv = manifest.get("files", {}).get("locust_stats") or str(run_dir / "locust_stats.csv")

    df = operation_table(stats_csv)

    slowest = (
        df.dropna(subset=["p95_ms"]).sort_values("p95_ms", ascending=False).iloc[0]["operation"]
        if df["p95_ms"].notna().any()
        else None
    )
    worst = (
        df.dropna(subset=["failure_%"]).sort_values("failure_%", ascending=False).iloc[0]["operation"]
        if df["failure_%"].notna().any() and df["failure_%"].max() > 0
        else None
    )

    figs = {}
    if len(df):
        figs["rps"] = _bar(df["operation"], df["rps"].fillna(0), "Throughput by operation", "ops/s")
        figs["p95"] = _bar(df["operation"], df["p95_ms"].fillna(0), "p95 latency by operation", "ms",
                           highlight=slowest)
        figs["fail"] = _bar(df["operation"], df["failure_%"].fillna(0), "Failed or not found", "%",
                            highlight=worst)

    insights = []
    if slowest:
        v = float(df.loc[df["operation"] == slowest, "p95_ms"].values[0])
        insights.append(f"<li><b>{slowest}</b> is the slowest operation (p95 {v:.1f} ms).</li>")
    if worst:
        v = float(df.loc[df["operation"] == worst, "failure_%"].values[0])
        insights.append(f"<li><b>{worst}</b> has the highest failure rate ({v:.1f}%).</li>")
    if not insights:
        insights.append("<li>No failures recorded.</li>" if len(df) else "<li>No locust statistics found.</li>")

    def _img(key):
        return f"<img src='{figs[key]}' width='640'/>" if key in figs else "<p>No data.</p>"

    html = f"""
<!doctype html>
<html>
<head>
<meta charset="utf-8"/>
<title>TSDB Bench Report</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 32px; }}
.card {{ border:1px solid #ddd; border-radius:12px; padding:16px; margin:16px 0; }}
.badge {{ display:inline-block; padding:4px 10px; border-radius:999px; background:#eef; }}
</style>
</head>
<body>

<h1>TSDB Benchmark Report</h1>

<div class="card">
<b>Scenario</b> <span class="badge">{summary.get('scenario')}</span><br/>
<b>Backend</b> <span class="badge">{summary.get('backend')}</span><br/>
<b>Window</b> <span class="badge">{summary.get('start_iso')} → {summary.get('end_iso')}</span>
</div>

<h2>Highlights</h2>
<ul>{''.join(insights)}</ul>

<div class="card"><h2>Throughput</h2>{_img('rps')}</div>
<div class="card"><h2>Latency</h2>{_img('p95')}</div>
<div class="card"><h2>Failures</h2>{_img('fail')}</div>

<div class="card">
<h2>Operations – Table</h2>
{df.round(3).to_html(index=False)}
</div>

<p style="color:#888">Generated at {datetime.now(timezone.utc).isoformat()}</p>

</body>
</html>
"""

    (run_dir / "tsdb_report.html").write_text(html, encoding="utf-8")

    analysis = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "backend": summary.get("backend"),
        "slowest_operation": slowest,
        "most_failing_operation": worst,
        "operations": json.loads(df.to_json(orient="records")),
    }
    (run_dir / "analysis_summary.json").write_text(json.dumps(analysis, indent=2), encoding="utf-8")

    print(f"[OK] Report: {run_dir/'tsdb_report.html'}")
    print(f"[OK] Summary: {run_dir/'analysis_summary.json'}")
    return analysis


if __name__ == "__main__":
    import argparse

    ap = argparse.ArgumentParser()
    ap.add_argument("--run", required=True)
    args = ap.parse_args()

    analyze_run(args.run)
