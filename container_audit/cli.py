"""CLI entry point for the container compliance audit."""
import argparse
import json
import logging
import os
import sys

from .categories import CATEGORIES, get_category
from .config import ConfigError, resolve_config
from .report_generator import ConsoleRenderer, ReportGenerator, should_color
from .runner import run_category
from .suite import SuiteAggregator
from .vuln_scanner import TrivyScanner

__version__ = "1.0.0"

logger = logging.getLogger("container_audit")


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def write_reports(output_dir: str, reports: list, suite=None, label: str = ""):
    os.makedirs(output_dir, exist_ok=True)
    generator = ReportGenerator(reports, suite, label)
    generator.generate_json(os.path.join(output_dir, "audit-report.json"))
    generator.generate_markdown(os.path.join(output_dir, "audit-report.md"))
    print(f"[*] Reports saved to {output_dir}/", file=sys.stderr)


def run_single(args, cfg) -> int:
    category = get_category(args.command)
    if not args.json:
        print(f"[*] Container Audit v{__version__} - {category.title}")
        print(f"[*] Project: {os.path.abspath(cfg.project_root)}")
        print()
    report = run_category(category, cfg, explicit=args.targets or None)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        renderer = ConsoleRenderer(color=should_color(args.color), verbose=args.verbose)
        renderer.category(report, category.title)
    if args.output:
        write_reports(args.output, [report], label=cfg.project_name)
    return report.exit_code


def run_suite(args, cfg) -> int:
    renderer = ConsoleRenderer(color=should_color(args.color), verbose=args.verbose)
    total = len(args.categories or cfg.suite_categories)
    progress = {"n": 0}

    def on_outcome(outcome):
        progress["n"] += 1
        if args.json:
            return
        print(f"[{progress['n']}/{total}] {outcome.category}: {outcome.status}")
        if outcome.report is not None and args.verbose:
            category = get_category(outcome.category)
            renderer.category(outcome.report, category.title if category else "")

    if not args.json:
        print(f"[*] Container Audit v{__version__} - full suite")
        print()

    aggregator = SuiteAggregator(
        cfg,
        categories=args.categories or None,
        stop_on_failure=True if args.stop_on_failure else None,
        isolated=args.isolated,
        parallel=args.parallel,
        config_path=args.config,
        on_outcome=on_outcome,
    )
    suite = aggregator.run()
    reports = [o.report for o in suite.outcomes if o.report is not None]

    if args.json:
        print(json.dumps(suite.to_dict(), indent=2))
    else:
        print()
        renderer.suite(suite)
    if args.output:
        write_reports(args.output, reports, suite, label=cfg.project_name)
    return suite.exit_code


def run_gate(args, cfg) -> int:
    """Pre-deploy gate: vulnerability scan (soft) then the full suite."""
    ok = True
    renderer = ConsoleRenderer(color=should_color(args.color), verbose=args.verbose)
    say = (lambda line="": None) if args.json else print
    say(f"[*] Container Audit v{__version__} - pre-deploy gate")
    say()

    say("[1/2] Vulnerability scan...")
    vuln_report = None
    if TrivyScanner(severity=cfg.scanner_severity).available():
        vuln_report = run_category(CATEGORIES["vulnerabilities"], cfg)
        if not args.json:
            renderer.category(vuln_report, CATEGORIES["vulnerabilities"].title)
        # No local images to scan is not a reason to block a deploy
        if vuln_report.error is None and not vuln_report.ok:
            ok = False
    else:
        say("      trivy not installed - skipped")

    say("[2/2] Audit suite...")
    suite = SuiteAggregator(cfg, stop_on_failure=True if args.stop_on_failure else None).run()
    ok = ok and suite.passed

    if args.json:
        print(json.dumps({
            "gate": "GO" if ok else "NO-GO",
            "vulnerabilities": vuln_report.to_dict() if vuln_report else None,
            "suite": suite.to_dict(),
        }, indent=2))
    else:
        renderer.suite(suite)
        print()
        print("[*] Gate: " + ("GO" if ok else "NO-GO"))
    return 0 if ok else 1


def run_list(args, cfg) -> int:
    for name, category in CATEGORIES.items():
        healthy, degraded = cfg.threshold_for(name)
        marker = "*" if name in cfg.suite_categories else " "
        print(f"{marker} {name:<16} {category.title} (healthy >= {healthy:g}%, degraded >= {degraded:g}%)")
        for rule in category.rules:
            print(f"    {rule.id:<24} {rule.kind.value:<11} {rule.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to YAML config file (default: ./audit.yaml if present)")
    common.add_argument("-v", "--verbose", action="store_true", help="Show check details and debug logging")
    common.add_argument("--json", action="store_true", help="Emit JSON instead of human-readable output")
    common.add_argument("--color", choices=["auto", "always", "never"], default="auto",
                        help="Colorize output (default: auto)")
    common.add_argument("--output", help="Also write JSON and Markdown reports to this directory")

    parser = argparse.ArgumentParser(
        prog="container-audit",
        description="Container security & compliance audit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Audit running containers
  python -m container_audit security

  # Audit specific containers only
  python -m container_audit capabilities myapp-db-1 myapp-api-1

  # Run every category, stop at the first failure
  python -m container_audit suite --stop-on-failure

  # API checks against another host
  AUDIT_BASE_URL=http://staging:3000 python -m container_audit api
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, category in CATEGORIES.items():
        p = sub.add_parser(name, parents=[common], help=category.title)
        p.add_argument("targets", nargs="*", help="Explicit targets (default: auto-discover)")

    p = sub.add_parser("suite", parents=[common], help="Run all configured categories")
    p.add_argument("--stop-on-failure", action="store_true", help="Stop at the first failing category")
    p.add_argument("--isolated", action="store_true", help="Run each category as a separate process")
    p.add_argument("--parallel", action="store_true", help="Run categories concurrently")
    p.add_argument("--category", dest="categories", action="append", metavar="NAME",
                   help="Category to run (repeatable; default: suite.categories from config)")

    p = sub.add_parser("gate", parents=[common], help="Pre-deploy gate: vulnerability scan + suite")
    p.add_argument("--stop-on-failure", action="store_true", help="Stop the suite at the first failing category")

    sub.add_parser("list", parents=[common], help="List categories and rules")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        cfg = resolve_config(args.config)
    except (OSError, ConfigError) as exc:
        print(f"ERROR: cannot load config: {exc}", file=sys.stderr)
        return 2

    if args.command == "suite":
        return run_suite(args, cfg)
    if args.command == "gate":
        return run_gate(args, cfg)
    if args.command == "list":
        return run_list(args, cfg)
    return run_single(args, cfg)


if __name__ == "__main__":
    sys.exit(main())
