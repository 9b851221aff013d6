from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from agent_eval.config import load_config
from agent_eval.errors import ConfigError, RunNotFoundError
from agent_eval.loader import filter_tests, load_tests
from agent_eval.pipeline import Pipeline
from agent_eval.reporter import ConsoleReporter, compute_summary, write_report


def _setup_logging(level: str) -> None:
  logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING),
                      format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _collect(cfg, args, reporter=None):
  tests = []
  for path, file_tests in load_tests(cfg.root_path, cfg.test_files):
    if reporter is not None:
      reporter.on_file_start(str(path))
    tests.extend(file_tests)
  return filter_tests(tests, name_filter=args.filter, tags=args.tag)


def cmd_run(args) -> int:
  cfg = load_config(args.cwd, args.config)
  if args.runner:
    cfg.matrix_runners = args.runner
  reporter = ConsoleReporter(args.print_mode or cfg.print_mode)
  tests = _collect(cfg, args, reporter)
  if not tests:
    print(f"[eval] No tests found matching {cfg.test_files} under {cfg.root_path}")
    return 1
  results = Pipeline(cfg, reporter=reporter).run_tests(tests)
  report_path = Path(args.report) if args.report else cfg.output_path / "last-run.json"
  write_report(results, report_path, config=cfg.to_dict())
  if reporter.print_mode != "quiet":
    print(f"[eval] Report written to {report_path}")
  return 0 if compute_summary(results).ok else 1


def cmd_plan(args) -> int:
  cfg = load_config(args.cwd, args.config)
  pipeline = Pipeline(cfg)
  plans = [pipeline.dry_run(t) for t in _collect(cfg, args)]
  if args.json:
    print(json.dumps([p.to_dict() for p in plans], indent=2, ensure_ascii=False))
    return 0
  for p in plans:
    suite = " > ".join(p.suite_path + [p.test_id])
    print(f"{suite} ({p.mode})")
    if p.instruction:
      print(f"  instruct: {p.instruction}")
    for prompt in p.prompts:
      print(f"  run: {prompt}")
    for t in p.tasks:
      print(f"  task: {t['name']} (weight {t['weight']:g}): {t['criteria']}")
    print(f"  runners: {', '.join(r['name'] for r in p.runners) or '(none)'}")
    if p.judge_assertions:
      print(f"  judge assertions: {p.judge_assertions}")
    if p.error:
      print(f"  error: {p.error}")
  return 0


def cmd_ledger(args) -> int:
  cfg = load_config(args.cwd, args.config)
  ledger = cfg.get_ledger()
  ledger.initialize()
  if args.stats:
    stats = ledger.get_stats(args.test_id)
    if args.json:
      print(json.dumps([s.to_dict() for s in stats], indent=2))
    else:
      for s in stats:
        print(f"{s.agent_runner}: avg {s.avg_score:.2f}, pass rate {s.pass_rate:.0%}, {s.total_runs} run(s)")
    return 0
  entries = ledger.get_runs(args.test_id) if args.test_id else ledger.get_latest_entries()
  if args.json:
    print(json.dumps([e.to_dict() for e in entries], indent=2, ensure_ascii=False))
    return 0
  for e in entries:
    mark = " (overridden)" if e.override else ""
    print(f"#{e.id} {e.timestamp} {e.effective_status} {e.effective_score:.2f}{mark} {e.test_id} [{e.agent_runner}]")
  return 0


def cmd_override(args) -> int:
  cfg = load_config(args.cwd, args.config)
  ledger = cfg.get_ledger()
  try:
    o = ledger.override_run_score(args.run_id, args.score, args.reason)
  except (ValueError, RunNotFoundError) as e:
    print(f"[eval] {e}", file=sys.stderr)
    return 1
  print(f"[eval] Run #{args.run_id} overridden: {o.score:.2f} {o.status}")
  return 0


def cmd_serve(args) -> int:
  import uvicorn

  from agent_eval.server import create_app

  cfg = load_config(args.cwd, args.config)
  app = create_app(cfg.get_ledger())
  uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
  return 0


def build_parser() -> argparse.ArgumentParser:
  ap = argparse.ArgumentParser(prog="agenteval", description="Evaluate AI coding agents against a repository.")
  ap.add_argument("--cwd", type=str, default=".", help="Project directory (where agenteval.config.py lives)")
  ap.add_argument("--config", type=str, default=None, help="Explicit config file path")
  ap.add_argument("--log-level", type=str, default=os.getenv("AGENTEVAL_LOG_LEVEL", "WARNING"))
  sub = ap.add_subparsers(dest="command", required=True)

  def add_selection(p):
    p.add_argument("--filter", type=str, default=None, help="Only tests whose title contains this text")
    p.add_argument("--tag", action="append", default=None, help="Only tests with this tag (repeatable)")

  run = sub.add_parser("run", help="Run eval tests and record results in the ledger")
  add_selection(run)
  run.add_argument("--runner", action="append", default=None, help="Only this runner (repeatable)")
  run.add_argument("--print-mode", choices=["quiet", "standard", "verbose"], default=None)
  run.add_argument("--report", type=str, default=None, help="JSON report path")
  run.set_defaults(func=cmd_run)

  plan = sub.add_parser("plan", help="Show what each test would do without running anything")
  add_selection(plan)
  plan.add_argument("--json", action="store_true")
  plan.set_defaults(func=cmd_plan)

  led = sub.add_parser("ledger", help="Show recorded runs")
  led.add_argument("--test-id", type=str, default=None)
  led.add_argument("--stats", action="store_true", help="Per-runner statistics")
  led.add_argument("--json", action="store_true")
  led.set_defaults(func=cmd_ledger)

  ov = sub.add_parser("override", help="Record a human score override for a run")
  ov.add_argument("run_id", type=int)
  ov.add_argument("--score", type=float, required=True)
  ov.add_argument("--reason", type=str, required=True)
  ov.set_defaults(func=cmd_override)

  srv = sub.add_parser("serve", help="Serve the ledger HTTP API")
  srv.add_argument("--host", type=str, default="127.0.0.1")
  srv.add_argument("--port", type=int, default=4747)
  srv.set_defaults(func=cmd_serve)
  return ap


def main(argv: Optional[List[str]] = None) -> int:
  load_dotenv()
  args = build_parser().parse_args(argv)
  _setup_logging(args.log_level)
  try:
    return args.func(args)
  except ConfigError as e:
    print(str(e), file=sys.stderr)
    return 2


if __name__ == "__main__":
  sys.exit(main())
