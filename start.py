#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Smart TradeDesk startup script.

Checks the things that break a fresh checkout before Flask starts:
  1. A stale API process still holding the port
  2. Unreadable args/*.yaml or a missing backend URL / anon key
  3. A missing or outdated SQLite schema
  4. An unreachable edge-function backend (assistant, OCR, email drafts fail)

Usage:
  python start.py                   # validate + start the API
  python start.py --port 5002       # override port
  python start.py --validate-only   # check without starting Flask
"""

import argparse
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import requests
import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
APP_PATH = BASE_DIR / "tradedesk" / "dashboard" / "app.py"
CONFIG_FILES = [
    BASE_DIR / "args" / "gate_config.yaml",
    BASE_DIR / "args" / "edge_config.yaml",
]

sys.path.insert(0, str(BASE_DIR))

GREEN = "\033[32m"
RED   = "\033[31m"
YELLOW = "\033[33m"
CYAN  = "\033[36m"
RESET = "\033[0m"
BOLD  = "\033[1m"


def _ok(msg):   print(f"{GREEN}  ✓{RESET} {msg}")
def _warn(msg): print(f"{YELLOW}  ⚠{RESET} {msg}")
def _err(msg):  print(f"{RED}  ✗{RESET} {msg}")
def _info(msg): print(f"{CYAN}  →{RESET} {msg}")


# ── Port ───────────────────────────────────────────────────────────────────────

def find_pid_on_port(port: int) -> list:
    """PIDs listening on ``port`` (lsof; empty when unavailable)."""
    try:
        out = subprocess.check_output(
            ["lsof", "-ti", f"tcp:{port}"], text=True, stderr=subprocess.DEVNULL
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return []
    return sorted({int(p) for p in out.split() if p.isdigit()})


def free_port(port: int) -> bool:
    pids = find_pid_on_port(port)
    for pid in pids:
        _warn(f"Port {port} held by PID {pid}, terminating")
        try:
            os.kill(pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError) as e:
            _err(f"Could not stop PID {pid}: {e}")
            return False

    for _ in range(6):
        if not find_pid_on_port(port):
            return True
        time.sleep(0.5)
    _err(f"Port {port} still in use")
    return False


# ── Configuration ──────────────────────────────────────────────────────────────

def check_config() -> int:
    """Validate YAML configs and backend env vars. Returns the problem count."""
    problems = 0
    for path in CONFIG_FILES:
        if not path.exists():
            _warn(f"{path.name} missing, built-in defaults apply")
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                yaml.safe_load(f)
            _ok(f"{path.name} parses")
        except yaml.YAMLError as e:
            _err(f"{path.name} is not valid YAML: {e}")
            problems += 1

    for var in ("TRADEDESK_BACKEND_URL", "TRADEDESK_BACKEND_ANON_KEY"):
        if os.environ.get(var):
            _ok(f"{var} set")
        else:
            _warn(f"{var} not set, edge functions will be unavailable")
    if not os.environ.get("TRADEDESK_API_KEY"):
        _info("TRADEDESK_API_KEY not set, /api/* is unauthenticated")
    return problems


def probe_backend(url: str) -> bool:
    """True when the edge-function host answers below HTTP 500."""
    try:
        resp = requests.get(f"{url.rstrip('/')}/functions/v1/", timeout=5)
    except requests.exceptions.RequestException as e:
        _warn(f"Backend unreachable at {url}: {e.__class__.__name__}")
        return False
    if resp.status_code >= 500:
        _warn(f"Backend at {url} answered HTTP {resp.status_code}")
        return False
    _ok(f"Backend reachable at {url} (HTTP {resp.status_code})")
    return True


# ── Flask ──────────────────────────────────────────────────────────────────────

def wait_for_api(port: int, timeout: float = 15.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            resp = requests.get(f"http://127.0.0.1:{port}/api/health", timeout=2)
            if resp.status_code < 500:
                return True
        except requests.exceptions.RequestException:
            pass
        time.sleep(0.5)
    return False


def start_api(port: int, debug: bool = False) -> subprocess.Popen:
    cmd = [sys.executable, str(APP_PATH), "--port", str(port)]
    if debug:
        cmd.append("--debug")
    return subprocess.Popen(cmd, cwd=str(BASE_DIR), env=os.environ.copy())


# ── Main ───────────────────────────────────────────────────────────────────────

def run(args):
    from tradedesk.db.init_db import init_db

    port = args.port
    print(f"\n{BOLD}TradeDesk Smart Startup{RESET}  (port {port})\n")

    print(f"{BOLD}[1/4] Port check{RESET}")
    if find_pid_on_port(port):
        if args.no_kill:
            _warn(f"Port {port} in use. Re-run without --no-kill to free it.")
        elif free_port(port):
            _ok(f"Port {port} is now free")
    else:
        _ok(f"Port {port} is free")

    print(f"\n{BOLD}[2/4] Configuration{RESET}")
    if check_config():
        _err("Fix the configuration errors above before starting")
        return 1

    print(f"\n{BOLD}[3/4] Database{RESET}")
    result = init_db()
    _ok(f"{result['db_path']} ({result['tables']} tables)")

    print(f"\n{BOLD}[4/4] Edge-function backend{RESET}")
    url = os.environ.get("TRADEDESK_BACKEND_URL", "")
    if url:
        probe_backend(url)
    else:
        _info("Skipped, TRADEDESK_BACKEND_URL not set")

    if args.validate_only:
        print(f"\n{BOLD}Validation complete.{RESET} (--validate-only, not starting Flask)\n")
        return 0

    print(f"\n{BOLD}Starting API{RESET}")
    proc = start_api(port, args.debug)
    _info(f"Flask PID {proc.pid} started, waiting for readiness...")
    if wait_for_api(port):
        _ok(f"TradeDesk API is ready → http://127.0.0.1:{port}/api/health")
    else:
        _warn("API didn't respond within 15s, it may still be starting")

    print(f"  Press {BOLD}Ctrl+C{RESET} to stop.\n")
    try:
        proc.wait()
    except KeyboardInterrupt:
        _info("Shutting down...")
        proc.terminate()
        proc.wait(timeout=5)
        _ok("Stopped")
    return 0


def main():
    env_file = BASE_DIR / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=False)

    parser = argparse.ArgumentParser(description="Smart TradeDesk startup")
    parser.add_argument("--port", type=int, default=int(os.environ.get("FLASK_PORT", 5001)))
    parser.add_argument("--validate-only", action="store_true",
                        help="Run the checks and exit without starting Flask")
    parser.add_argument("--no-kill", action="store_true",
                        help="Don't stop existing processes on the port")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
