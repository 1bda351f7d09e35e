"""HardRug CLI — run the rug-pull pipeline stages on local sources.

Usage:
    hardrug classify <file>                 Print the capability profile
    hardrug harness <file> [--args HEX]     Print injected source + invariant tests
    hardrug verify <file> --block N         Run the invariant tests on a fork
    hardrug config                          Show current configuration

Examples:
    hardrug classify ./Token.sol --contract Token
    hardrug harness ./Token.sol --args 0x000...0de0b6b3a7640000 -o test.sol
    hardrug verify ./Token.sol --block 17000000 --rpc https://eth.llamarpc.com
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from hardrug.core.config import get_settings
from hardrug.core.errors import HardRugError
from hardrug.core.logging import setup_logging
from hardrug.core.types import Finding


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_SEV_COLOR = {
    "critical": _RED,
    "high": "\033[38;5;208m",  # orange
    "medium": _YELLOW,
    "low": _CYAN,
    "info": _DIM,
}

__version__ = "0.1.0"

_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hardrug",
        description="HardRug — dynamic rug-pull detection for new token contracts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")

    sub = parser.add_subparsers(dest="command")

    # ── classify ─────────────────────────────────────────────────────────────
    classify_p = sub.add_parser("classify", help="Print the capability profile of a source file")
    classify_p.add_argument("path", help="Path to a flattened .sol file")
    classify_p.add_argument("--contract", "-c", help="Entry contract name (default: auto)")

    # ── harness ──────────────────────────────────────────────────────────────
    harness_p = sub.add_parser("harness", help="Print the injected source and invariant tests")
    harness_p.add_argument("path", help="Path to a flattened .sol file")
    harness_p.add_argument("--contract", "-c", help="Entry contract name (default: auto)")
    harness_p.add_argument("--args", default="", help="ABI-encoded constructor arguments (hex)")
    harness_p.add_argument("--output", "-o", help="Write output to file instead of stdout")

    # ── verify ───────────────────────────────────────────────────────────────
    verify_p = sub.add_parser("verify", help="Run the invariant tests against a forked chain")
    verify_p.add_argument("path", help="Path to a flattened .sol file")
    verify_p.add_argument("--block", "-b", type=int, required=True, help="Fork block number")
    verify_p.add_argument("--rpc", help="Fork RPC URL (default: HARDRUG_JSON_RPC_URL)")
    verify_p.add_argument("--contract", "-c", help="Entry contract name (default: auto)")
    verify_p.add_argument("--args", default="", help="ABI-encoded constructor arguments (hex)")
    verify_p.add_argument("--deployer", default=_ZERO_ADDRESS, help="Deployer address for findings")
    verify_p.add_argument("--address", default=_ZERO_ADDRESS, help="Contract address for findings")
    verify_p.add_argument("--json", action="store_true", help="Print findings as JSON")

    # ── config ───────────────────────────────────────────────────────────────
    sub.add_parser("config", help="Show current configuration")

    return parser


def _read_source(path_arg: str) -> str:
    path = Path(path_arg).resolve()
    if not path.is_file():
        raise FileNotFoundError(f"'{path}' is not a file")
    return path.read_text()


def _build_harness(args: argparse.Namespace):
    from hardrug.analyzer.classifier import ContractClassifier
    from hardrug.analyzer.constructor import ConstructorDecoder
    from hardrug.fuzzer.harness import HarnessSynthesizer

    profile = ContractClassifier().classify(_read_source(args.path), args.contract)
    arguments = ConstructorDecoder(profile).decode(args.args)
    return profile, HarnessSynthesizer(profile, arguments).synthesize()


# ── Commands ─────────────────────────────────────────────────────────────────


def _run_classify(args: argparse.Namespace) -> int:
    from hardrug.analyzer.classifier import ContractClassifier

    profile = ContractClassifier().classify(_read_source(args.path), args.contract)
    print(json.dumps(profile.to_dict(), indent=2))
    return 0


def _run_harness(args: argparse.Namespace) -> int:
    profile, harness = _build_harness(args)
    if not harness.suite and not args.quiet:
        print(
            _c(f"  {profile.entry_name} is neither a token nor ownable; no tests generated.", _YELLOW),
            file=sys.stderr,
        )

    output = harness.render()
    if args.output:
        Path(args.output).write_text(output)
        if not args.quiet:
            print(f"  Written to {_c(args.output, _CYAN)}", file=sys.stderr)
    else:
        print(output)
    return 0


def _print_findings(findings: list[Finding]) -> None:
    if not findings:
        print(_c("  ✓ No rug-pull technique confirmed.", _GREEN))
        return

    for i, f in enumerate(findings, 1):
        sev_col = _SEV_COLOR.get(f.severity.value, "")
        badge = _c(f" {f.severity.value.upper()} ", sev_col + _BOLD)
        print(f"  {_DIM}{i:>3}.{_RESET} {badge} {_c(f.alert_id, _BOLD)}")
        print(f"       {_DIM}{f.description}{_RESET}")
        for key in ("rugpull_techniques", "failure_reason"):
            if key in f.metadata:
                print(f"       {_DIM}{key}: {f.metadata[key]}{_RESET}")
        print()


async def _run_verify(args: argparse.Namespace) -> int:
    from hardrug.core.errors import VerificationToolError
    from hardrug.fuzzer.forge_executor import ForgeExecutor
    from hardrug.verifier.interpreter import ResultInterpreter

    profile, harness = _build_harness(args)
    if not harness.suite:
        print(_c(f"  {profile.entry_name} is neither a token nor ownable; nothing to verify.", _YELLOW))
        return 0

    executor = ForgeExecutor()
    if not executor.available:
        raise VerificationToolError(f"forge not found at '{executor.config.forge_path}'")

    if not args.quiet:
        print(f"  Running {_c(str(len(harness.suite.tests)), _CYAN)} invariant tests "
              f"against {profile.entry_name} at block {args.block}…", file=sys.stderr)

    report = await executor.run(harness.render(), args.block, args.rpc)
    findings = ResultInterpreter().findings(report, args.deployer, args.address)

    if args.json:
        print(json.dumps([f.to_dict() for f in findings], indent=2))
    else:
        _print_findings(findings)

    return 1 if any(f.severity.value in ("critical", "high") for f in findings) else 0


def _run_config() -> int:
    """Print current settings (redacted)."""
    s = get_settings()
    print(f"\n{_BOLD}HardRug Configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        # Redact secrets
        if any(kw in field_name for kw in ("password", "secret", "key", "token", "proxy")):
            val = "****" if val else "(not set)"
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"hardrug {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    setup_logging(
        env=settings.app_env,
        log_level="WARNING" if args.quiet else settings.log_level,
        stream=sys.stderr,
    )

    try:
        if args.command == "config":
            return _run_config()
        if args.command == "classify":
            return _run_classify(args)
        if args.command == "harness":
            return _run_harness(args)
        if args.command == "verify":
            return asyncio.run(_run_verify(args))
    except (HardRugError, FileNotFoundError) as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        for detail in getattr(exc, "errors", [])[:5]:
            print(_c(f"  {detail}", _DIM), file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
