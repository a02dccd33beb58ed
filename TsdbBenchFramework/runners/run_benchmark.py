import argparse, json, logging, sys, time, datetime, pathlib, yaml
from TsdbBenchFramework.adapters.base import SUCCESS, AggregationKind, ConfigError, TimeUnit
from TsdbBenchFramework.adapters.load.locust_adapter import LocustAdapter
from TsdbBenchFramework.adapters.tsdb.client import BACKENDS, TsdbClient
from TsdbBenchFramework.adapters.tsdb.config import load_properties

log = logging.getLogger("run_benchmark")

def iso_now():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()

def smoke(backend: str, props: dict, metric: str = "cpu", settle_s: float = 1.0) -> dict:
    """insert one point, read it back with a matching and a non-matching tag, scan around it."""
    client = TsdbClient(backend)
    client.init(props)
    try:
        ts = time.time_ns()
        out = {"insert": client.insert(metric, ts, 42.0, {"host": "a"})}
        if settle_s and not client.test:
            time.sleep(settle_s)
        out["read_host_a"] = client.read(metric, ts, {"host": ["a"]})
        out["read_host_b"] = client.read(metric, ts, {"host": ["b"]})
        minute = TimeUnit.MINUTES.nanos
        for kind in AggregationKind:
            out[f"scan_{kind.value}"] = client.scan(metric, ts - minute, ts + minute, {}, kind)
        return out
    finally:
        client.cleanup()

def main(argv=None):
    ap = argparse.ArgumentParser()
    ap.add_argument("--scenario", required=True)
    ap.add_argument("--out-root", default="TsdbBenchFramework/artifacts")
    ap.add_argument("--smoke", action="store_true", help="run a single round trip instead of a locust load")
    ap.add_argument("--report", action="store_true", help="render report.html after the locust run")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    with open(args.scenario) as f:
        sc = yaml.safe_load(f)

    backend = sc["backend"]
    if backend not in BACKENDS:
        ap.error(f"unknown backend {backend!r}, expected one of {sorted(BACKENDS)}")
    props_path = sc.get("properties")
    if props_path:
        props_path = str(pathlib.Path(args.scenario).parent / props_path)
    props = load_properties(props_path) if props_path else {"test": True}

    if args.smoke:
        try:
            statuses = smoke(backend, props, metric=sc.get("metric", "cpu"))
        except ConfigError as e:
            log.error("%s", e)
            return 2
        print(json.dumps(statuses, indent=2))
        return 0 if statuses["insert"] == SUCCESS and statuses["read_host_a"] == SUCCESS else 1

    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    name = sc.get("name") or pathlib.Path(args.scenario).stem
    out_dir = pathlib.Path(args.out_root) / f"{ts}_{name}"
    out_dir.mkdir(parents=True, exist_ok=True)

    env = {
        "TSDB_BACKEND": backend,
        "TSDB_PROPERTIES": str(pathlib.Path(props_path).resolve()) if props_path else "",
        "TSDB_METRIC": sc.get("metric", "cpu"),
        "TSDB_SCAN_SECONDS": str(sc.get("scan_seconds", 60)),
    }
    if sc.get("seed") is not None:
        env["LOCUST_SEED"] = str(sc["seed"])

    start_iso = iso_now()
    loc = LocustAdapter()
    artifacts = loc.run(
        locustfile=f"TsdbBenchFramework/load/locust/{sc.get('locustfile', 'locustfile_tsdb.py')}",
        host=sc.get("host", f"tsdb://{backend}"),
        users=int(sc["users"]),
        spawn_rate=int(sc["spawn_rate"]),
        run_time=str(sc["run_time"]),
        out_dir=str(out_dir),
        env=env,
    )
    end_iso = iso_now()

    summary = {
        "scenario": name,
        "backend": backend,
        "start_iso": start_iso,
        "end_iso": end_iso,
        "locust": artifacts,
    }
    with (out_dir / "summary.json").open("w") as f:
        json.dump(summary, f, indent=2)

    manifest = {
        "root": str(out_dir),
        "files": {
            "locust_stats": artifacts.get("stats_csv"),
            "locust_history": artifacts.get("stats_history_csv"),
            "locust_failures": artifacts.get("failures_csv"),
            "locust_report": artifacts.get("report_html"),
            "summary": str(out_dir / "summary.json"),
        }
    }
    with (out_dir / "manifest.json").open("w") as f:
        json.dump(manifest, f, indent=2)

    if args.report:
        from TsdbBenchFramework.analyzer.analyze_run import analyze_run
        analyze_run(str(out_dir))

    print(json.dumps(summary, indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(main())
