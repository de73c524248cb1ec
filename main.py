import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import ConfigError, SystemConfig, load_config
from merkle import AccumulatorError, hash2, to_field, zero_ladder
from mirror import (
    EventMirror,
    JsonRpcEventSource,
    MirrorDivergence,
    MirrorError,
    load_event_log,
    rebuild,
    save_event_log,
)
from utils import (
    PerformanceMonitor,
    create_performance_report,
    default_log_file,
    format_duration,
    save_results,
    setup_logging,
)
from voting_session import VotingSession
from zk import (
    SnarkjsProver,
    SnarkjsVerifier,
    VoterNote,
    ZKError,
    generate_voter_note,
    prepare_inputs,
)

logger = logging.getLogger(__name__)


def _print_json(data: Any):
    print(json.dumps(data, indent=2))


def _write_or_print(data: Dict[str, Any], out: Optional[str]):
    if out:
        path = Path(out)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
        logger.info(f"Wrote {path}")
    else:
        _print_json(data)


# ============================================================================
# COMMANDS
# ============================================================================


def cmd_zeros(args, config: SystemConfig) -> int:
    tree_config = config.tree_config
    levels = args.levels or tree_config.levels
    for level, value in enumerate(zero_ladder(tree_config.zero_value, levels)):
        print(f"{level:2d} {value.to_hex()} {value}")
    return 0


def cmd_note(args, config: SystemConfig) -> int:
    note = generate_voter_note()
    _write_or_print(note.to_dict(), args.out)
    print(f"Commitment: {note.commitment.to_hex()}", file=sys.stderr)
    return 0


def cmd_rebuild(args, config: SystemConfig) -> int:
    events = load_event_log(Path(args.log), config.tree_config)
    tree = rebuild(events, config.tree_config)
    root = tree.current_root()

    if args.expect_root is not None and root != to_field(args.expect_root):
        raise MirrorDivergence(
            f"Rebuilt root {root.to_hex()} does not match expected {to_field(args.expect_root).to_hex()}")

    _print_json({
        'leaves': len(tree),
        'root': str(root),
        'rootHex': root.to_hex(),
    })
    return 0


def cmd_path(args, config: SystemConfig) -> int:
    tree = rebuild(load_event_log(Path(args.log), config.tree_config), config.tree_config)
    if args.commitment is not None:
        path = tree.path_for_commitment(args.commitment)
    else:
        path = tree.path_for(args.index)
    _write_or_print(path.to_dict(), args.out)
    return 0


async def _prove(args, config: SystemConfig) -> Dict[str, Any]:
    note = VoterNote.from_dict(json.loads(Path(args.note).read_text()))
    tree = rebuild(load_event_log(Path(args.log), config.tree_config), config.tree_config)
    path = tree.path_for_commitment(note.commitment)
    inputs = prepare_inputs(note.nullifier, note.secret, path, config.tree_config.levels)

    monitor = PerformanceMonitor()
    prover = SnarkjsProver(config.prover_config, monitor)
    verifier_args = await prover.prove(inputs)

    result = {
        'leafIndex': path.leaf_index,
        'contract': verifier_args.to_contract_args(),
        **verifier_args.to_json(),
    }
    if args.verify:
        result['verified'] = await SnarkjsVerifier(config.prover_config).verify(verifier_args)
    return result


def cmd_prove(args, config: SystemConfig) -> int:
    result = asyncio.run(_prove(args, config))
    _write_or_print(result, args.out)
    return 0 if result.get('verified', True) else 1


def cmd_sync(args, config: SystemConfig) -> int:
    source = JsonRpcEventSource.from_config(config.chain_config)
    mirror = EventMirror(source, config.tree_config)
    root = mirror.sync()

    if args.export:
        save_event_log(mirror.event_log(), Path(args.export), config.tree_config)

    _print_json({'leaves': len(mirror.tree), 'root': str(root), 'rootHex': root.to_hex()})
    return 0


def cmd_benchmark(args, config: SystemConfig) -> int:
    monitor = PerformanceMonitor()
    tree_config = config.tree_config

    for i in range(args.hashes):
        with monitor.start_operation('hash2'):
            hash2(i, i + 1)

    session = VotingSession(tree_config)
    for i in range(args.leaves):
        with monitor.start_operation('register'):
            session.register(generate_voter_note().commitment)

    for i in range(args.leaves):
        with monitor.start_operation('path_for'):
            session.path_for(i)

    events = session.event_log()
    with monitor.start_operation('rebuild', leaves=len(events)):
        tree = rebuild(events, tree_config)
    if tree.current_root() != session.current_root():
        raise MirrorDivergence("Benchmark rebuild diverged from the session root")

    report = create_performance_report(monitor)
    print(report)

    results_dir = Path(args.results_dir or config.results_dir)
    stamp = time.strftime('%Y%m%d_%H%M%S')
    save_results({
        'levels': tree_config.levels,
        'leaves': args.leaves,
        'scheme_fingerprint': tree_config.fingerprint(),
        'performance_metrics': monitor.get_summary(),
    }, results_dir / f"benchmark_{stamp}.json")
    (results_dir / f"benchmark_{stamp}.txt").write_text(report)

    rebuild_time = monitor.durations('rebuild')[-1]
    print(f"\nRebuilt {len(events)} leaves in {format_duration(rebuild_time)}")
    return 0


# ============================================================================
# ENTRY POINT
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Anonymous registration accumulator: Merkle tree, mirror and proof bridge')
    parser.add_argument('--config', type=str, default='config.yaml',
                        help='Config file path')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Write logs to this file as well as stderr')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('zeros', help='Print the zero-value ladder')
    p.add_argument('--levels', type=int, default=None)
    p.set_defaults(func=cmd_zeros)

    p = sub.add_parser('note', help='Generate a voter nullifier/secret note')
    p.add_argument('--out', type=str, default=None)
    p.set_defaults(func=cmd_note)

    p = sub.add_parser('rebuild', help='Rebuild the tree from an event log')
    p.add_argument('log', type=str)
    p.add_argument('--expect-root', type=str, default=None,
                   help='Fail unless the rebuilt root equals this value')
    p.set_defaults(func=cmd_rebuild)

    p = sub.add_parser('path', help='Membership path from an event log')
    p.add_argument('log', type=str)
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument('--commitment', type=str)
    target.add_argument('--index', type=int)
    p.add_argument('--out', type=str, default=None)
    p.set_defaults(func=cmd_path)

    p = sub.add_parser('prove', help='Generate a membership proof with snarkjs')
    p.add_argument('log', type=str)
    p.add_argument('--note', type=str, required=True)
    p.add_argument('--verify', action='store_true', help='Verify locally after proving')
    p.add_argument('--out', type=str, default=None)
    p.set_defaults(func=cmd_prove)

    p = sub.add_parser('sync', help='Mirror the on-chain accumulator over JSON-RPC')
    p.add_argument('--export', type=str, default=None, help='Save the fetched event log')
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser('benchmark', help='Time hashing, insertion, paths and rebuild')
    p.add_argument('--leaves', type=int, default=64)
    p.add_argument('--hashes', type=int, default=200)
    p.add_argument('--results-dir', type=str, default=None)
    p.set_defaults(func=cmd_benchmark)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(Path(args.config))
    except ConfigError as e:
        setup_logging()
        logger.error(str(e))
        return 2

    log_file = Path(args.log_file) if args.log_file else None
    if log_file is None and config.enable_debug_mode:
        log_file = default_log_file(config.log_dir)
    setup_logging('DEBUG' if args.debug else config.log_level, log_file)

    try:
        return args.func(args, config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except (AccumulatorError, MirrorError, ZKError) as e:
        retry = " (retryable)" if getattr(e, 'retryable', False) else ""
        logger.error(f"{type(e).__name__}{retry}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
