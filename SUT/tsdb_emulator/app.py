import logging
import re
import threading
import time
from collections import defaultdict
from datetime import datetime
from statistics import mean
from flask import Flask, request, jsonify

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("tsdb_emulator")

# instant queries look back this far for the latest sample, like prometheus
LOOKBACK_MS = 5 * 60 * 1000

SELECTOR = re.compile(
    r'^\s*(?:(?P<fn>[a-z]+)_over_time\(\s*)?'
    r'(?P<name>[a-zA-Z_:][a-zA-Z0-9_:]*)\{(?P<matchers>(?:[^}"]|"(?:[^"\\]|\\.)*")*)\}'
    r'(?:\[(?P<duration>\d+)s\]\s*offset\s+(?P<offset>-?\d+)s\s*\))?\s*$'
)
MATCHER = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=~\s*"((?:[^"\\]|\\.)*)"\s*')
STRING_ESCAPE = re.compile(r'\\(.)', re.S)

REDUCERS = {
    "any": lambda vals: vals[0],
    "avg": mean,
    "count": len,
    "sum": sum,
    "min": min,
    "max": max,
}
OVER_TIME = {
    "min": min,
    "max": max,
    "avg": mean,
    "sum": sum,
    "count": len,
}


def _pointer(doc, ptr):
    cur = doc
    for part in [p for p in ptr.split("/") if p]:
        if not isinstance(cur, dict) or part not in cur:
            return None
        cur = cur[part]
    return cur


def _parse_line(line):
    """measurement,tag=v field=1.0 1700000000000 (no escaping support)"""
    head, fields, *rest = line.split(" ")
    measurement, *tag_parts = head.split(",")
    tags = dict(t.split("=", 1) for t in tag_parts)
    values = {}
    for f in fields.split(","):
        k, v = f.split("=", 1)
        values[k] = float(v.rstrip("i"))
    ts = int(rest[0]) if rest else None
    return measurement, tags, values, ts


def _to_ms(ts, precision):
    factor = {"n": 1e-6, "ns": 1e-6, "u": 1e-3, "ms": 1, "s": 1000, "m": 60000, "h": 3600000}
    return int(ts * factor.get(precision or "n", 1e-6))


def _eval_time_ms(value):
    if not value:
        return int(time.time() * 1000)
    try:
        return int(round(float(value) * 1000))
    except ValueError:
        return int(round(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000))


def create_app():
    app = Flask(__name__)
    lock = threading.Lock()
    databases = {}  # seriesly db -> list of (ts_ms, doc)
    series = defaultdict(list)  # (name, frozenset(labels)) -> list of (ts_ms, value)
    app.config["TSDB_STATE"] = {"databases": databases, "series": series}

    # ---------------- seriesly ----------------

    @app.route('/<db>', methods=['PUT'])
    def create_db(db):
        with lock:
            databases.setdefault(db, [])
        return jsonify({"ok": True}), 201

    @app.route('/<db>', methods=['POST'])
    def add_document(db):
        if db not in databases:
            return jsonify({"error": "no such db"}), 404
        try:
            ts = int(request.args["ts"])
        except (KeyError, ValueError):
            ts = int(time.time() * 1000)
        doc = request.get_json(force=True, silent=True)
        if not isinstance(doc, dict):
            return jsonify({"error": "document must be a json object"}), 400
        with lock:
            databases[db].append((ts, doc))
        return jsonify({"id": len(databases[db])}), 201

    @app.route('/<db>/_query', methods=['GET'])
    def query_db(db):
        if db not in databases:
            return jsonify({"error": "no such db"}), 404
        args = request.args
        try:
            start, end = int(args["from"]), int(args["to"])
            group = max(1, int(args.get("group", 1)))
        except (KeyError, ValueError):
            return jsonify({"error": "bad from/to/group"}), 400
        reducer = REDUCERS.get(args.get("reducer", "any"))
        if reducer is None:
            return jsonify({"error": "unknown reducer"}), 400
        ptr = args.get("ptr", "/")
        filters = list(zip(args.getlist("f"), args.getlist("fv")))

        buckets = defaultdict(list)
        with lock:
            docs = list(databases[db])
        for ts, doc in docs:
            if not start <= ts <= end:
                continue
            if any(str(_pointer(doc, f)) != fv for f, fv in filters):
                continue
            value = _pointer(doc, ptr)
            if value is not None:
                buckets[ts - ts % group].append(value)
        return jsonify({str(k): [reducer(buckets[k])] for k in sorted(buckets)})

    # ---------------- victoriametrics ----------------

    @app.route('/write', methods=['POST'])
    def influx_write():
        precision = request.args.get("precision")
        body = request.get_data(as_text=True)
        count = 0
        try:
            for line in body.splitlines():
                if not line.strip():
                    continue
                measurement, tags, values, ts = _parse_line(line.strip())
                ts_ms = _to_ms(ts, precision) if ts is not None else int(time.time() * 1000)
                with lock:
                    for field, value in values.items():
                        series[(f"{measurement}_{field}", frozenset(tags.items()))].append((ts_ms, value))
                count += 1
        except (ValueError, IndexError) as e:
            return jsonify({"error": f"cannot parse line protocol: {e}"}), 400
        logger.debug("stored %d points", count)
        return "", 204

    @app.route('/api/v1/query', methods=['GET', 'POST'])
    def prom_query():
        expr = request.values.get("query", "")
        m = SELECTOR.match(expr)
        if not m:
            return jsonify({"status": "error", "errorType": "bad_data", "error": f"unsupported query {expr!r}"}), 400
        try:
            matchers = [(k, re.compile(STRING_ESCAPE.sub(r"\1", v)))
                        for k, v in MATCHER.findall(m.group("matchers"))]
            at = _eval_time_ms(request.values.get("time"))
        except (re.error, ValueError) as e:
            return jsonify({"status": "error", "errorType": "bad_data", "error": str(e)}), 400

        fn = m.group("fn")
        if fn is not None and fn not in OVER_TIME:
            return jsonify({"status": "error", "errorType": "bad_data", "error": f"unknown function {fn}_over_time"}), 400
        if fn is None:
            lo, hi = at - LOOKBACK_MS, at
        else:
            hi = at - int(m.group("offset")) * 1000
            lo = hi - int(m.group("duration")) * 1000

        result = []
        with lock:
            snapshot = {k: list(v) for k, v in series.items()}
        for (name, labels), samples in snapshot.items():
            if name != m.group("name"):
                continue
            label_map = dict(labels)
            if any(not rx.fullmatch(label_map.get(k, "")) for k, rx in matchers):
                continue
            window = sorted(s for s in samples if lo < s[0] <= hi)
            if not window:
                continue
            if fn is None:
                value = window[-1][1]
                metric = {"__name__": name, **label_map}
            else:
                value = OVER_TIME[fn]([v for _, v in window])
                metric = label_map
            result.append({"metric": metric, "value": [at / 1000.0, repr(float(value))]})
        return jsonify({"status": "success", "data": {"resultType": "vector", "result": result}})

    return app


app = create_app()

if __name__ == '__main__':
    app.run(port=8428)
