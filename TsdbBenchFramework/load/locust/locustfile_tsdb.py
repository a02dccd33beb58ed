from locust import User, task, between
from collections import deque
import random, os, time

from TsdbBenchFramework.adapters.base import SUCCESS, AggregationKind, TimeUnit
from TsdbBenchFramework.adapters.tsdb.client import TsdbClient
from TsdbBenchFramework.adapters.tsdb.config import load_properties

BACKEND = os.getenv("TSDB_BACKEND", "seriesly")
PROPERTIES = os.getenv("TSDB_PROPERTIES", "")
METRIC = os.getenv("TSDB_METRIC", "cpu")
HOSTS = [h for h in os.getenv("TSDB_TAG_HOSTS", "a,b,c").split(",") if h]
SCAN_SECONDS = int(os.getenv("TSDB_SCAN_SECONDS", "60"))
REMEMBER = 1000

def get_seed():
    try:
        return int(os.getenv("LOCUST_SEED", ""))
    except Exception:
        return None


class OperationFailed(Exception):
    pass


class TsdbUser(User):
    """Each simulated user owns its own adapter instance, adapters are not shared."""

    wait_time = between(0.0, 0.1)

    def on_start(self):
        seed = get_seed()
        if seed is not None:
            random.seed(seed + hash(self.environment.runner.client_id) % 100000)
        props = load_properties(PROPERTIES) if PROPERTIES else {"test": True}
        self.tsdb = TsdbClient(BACKEND)
        self.tsdb.init(props)
        self.written = deque(maxlen=REMEMBER)

    def on_stop(self):
        self.tsdb.cleanup()

    def _call(self, name, fn, *args):
        start = time.perf_counter()
        status = fn(*args)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        self.environment.events.request.fire(
            request_type=BACKEND,
            name=name,
            response_time=elapsed_ms,
            response_length=0,
            exception=None if status == SUCCESS else OperationFailed(f"{name} returned {status}"),
            context={},
        )
        return status

    @task(6)
    def insert(self):
        ts = time.time_ns()
        tags = {"host": random.choice(HOSTS)}
        value = round(random.uniform(0.0, 100.0), 3)
        if self._call("insert", self.tsdb.insert, METRIC, ts, value, tags) == SUCCESS:
            self.written.append((ts, tags))

    @task(3)
    def read(self):
        if not self.written:
            return
        ts, tags = random.choice(self.written)
        self._call("read", self.tsdb.read, METRIC, ts, {k: [v] for k, v in tags.items()})

    @task(1)
    def scan(self):
        end = time.time_ns()
        start = end - SCAN_SECONDS * TimeUnit.SECONDS.nanos
        kind = random.choice(list(AggregationKind))
        self._call(f"scan[{kind.value}]", self.tsdb.scan, METRIC, start, end, {}, kind, 10, TimeUnit.SECONDS)
