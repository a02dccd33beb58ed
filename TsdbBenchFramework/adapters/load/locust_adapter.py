#launch locust as a subprocess against a tsdb backend and return paths to the generated artifacts
import os
import subprocess
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

class LocustAdapter:
    def __init__(self, executable: str = "locust"):
        self.executable = executable

    def command(
        self,
        *,
        locustfile: str,
        host: str,
        users: int,
        spawn_rate: int,
        run_time: str,
        out_dir: str,
        extra_args: Optional[Iterable[str]] = None,
    ) -> list:
        out = Path(out_dir)
        cmd = [
            self.executable,
            "-f", locustfile,
            "--headless",
            "--host", host,
            "-u", str(users),
            "-r", str(spawn_rate),
            "--run-time", run_time,
            "--csv", str(out / "locust"),
            "--csv-full-history",
            "--html", str(out / "report.html"),
        ]
        if extra_args:
            cmd += list(extra_args)
        return cmd

    def run(
        self,
        *,
        locustfile: str,
        host: str,
        users: int,
        spawn_rate: int,
        run_time: str,
        out_dir: str,
        extra_args: Optional[Iterable[str]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        out = Path(out_dir)
        out.mkdir(parents=True, exist_ok=True)
        cmd = self.command(locustfile=locustfile, host=host, users=users, spawn_rate=spawn_rate,
                           run_time=run_time, out_dir=out_dir, extra_args=extra_args)
        # TSDB_* settings reach the locustfile through the environment
        proc_env = dict(os.environ)
        if env:
            proc_env.update({k: str(v) for k, v in env.items()})
        subprocess.run(cmd, check=True, env=proc_env)
        return {
            "stats_csv": str(out / "locust_stats.csv"),
            "stats_history_csv": str(out / "locust_stats_history.csv"),
            "failures_csv": str(out / "locust_failures.csv"),
            "report_html": str(out / "report.html"),
        }
