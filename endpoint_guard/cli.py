"""
Endpoint Guard command line interface.

    endpoint-guard scan quick
    endpoint-guard scan custom ~/Downloads /tmp --shallow
    endpoint-guard check suspicious.exe
    endpoint-guard quarantine list
    endpoint-guard quarantine restore quar_1718000000000_0123456789abcdef
    endpoint-guard watch
    endpoint-guard --json stats

With --json every command prints one APIResponse envelope on stdout;
logs always go to stderr and the configured log directory.
"""

import argparse
import dataclasses
import logging
import signal
import sys
import threading
from typing import Any, Callable, Dict, List, Optional

from . import __version__
from .api import from_exception, ok_response
from .config import load_config
from .events import EventType, GuardEvent
from .exceptions import GuardError
from .logging_config import setup_logging
from .service import GuardService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='endpoint-guard',
        description='Endpoint Guard - file scanning, quarantine and realtime protection',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--config', help='Configuration file (.json, .yaml, .yml)')
    parser.add_argument('--json', action='store_true', help='Print results as a JSON envelope')
    parser.add_argument('--log-level', help='Override the configured log level')

    sub = parser.add_subparsers(dest='command', metavar='COMMAND')
    sub.required = True

    scan = sub.add_parser('scan', help='Run a scan')
    scan.add_argument('scan_type', choices=['quick', 'full', 'custom'])
    scan.add_argument('paths', nargs='*', help='Paths for a custom scan')
    scan.add_argument('--shallow', action='store_true', help='Do not descend into subdirectories')

    check = sub.add_parser('check', help='Check a single file')
    check.add_argument('path')

    quarantine = sub.add_parser('quarantine', help='Manage the quarantine vault')
    qsub = quarantine.add_subparsers(dest='action', metavar='ACTION')
    qsub.required = True
    qsub.add_parser('list', help='List quarantined files')
    add = qsub.add_parser('add', help='Quarantine a file')
    add.add_argument('path')
    add.add_argument('--threat-name', help='Detection that caused the isolation')
    for name, help_text in (('restore', 'Restore a quarantined file'),
                            ('delete', 'Permanently delete a quarantined file'),
                            ('verify', 'Check a record decrypts and matches its digest')):
        action = qsub.add_parser(name, help=help_text)
        action.add_argument('quarantine_id')
    purge = qsub.add_parser('purge', help='Delete records past the retention period')
    purge.add_argument('--days', type=int, help='Override the configured retention')

    remove = sub.add_parser('remove', help='Terminate processes using a file and destroy it')
    remove.add_argument('path')
    remove.add_argument('--no-kill', action='store_true', help='Do not terminate processes')

    sub.add_parser('watch', help='Run realtime protection until interrupted')

    history = sub.add_parser('history', help='Show recent scan sessions')
    history.add_argument('--limit', type=int, default=20)

    sub.add_parser('stats', help='Show detection statistics')

    signatures = sub.add_parser('signatures', help='Manage signatures')
    ssub = signatures.add_subparsers(dest='action', metavar='ACTION')
    ssub.required = True
    imp = ssub.add_parser('import', help='Import a local JSON or YAML signature pack')
    imp.add_argument('path')
    ssub.add_parser('update', help='Fetch signatures from the configured update URL')

    return parser


# ---------- command handlers ----------
# Each returns (data for the JSON envelope, human readable lines)

def _cmd_scan(guard: GuardService, args) -> tuple:
    if not args.json:
        guard.subscribe(_print_progress, [EventType.PROGRESS, EventType.THREAT_FOUND])
    result = guard.start_scan(args.scan_type, args.paths, recursive=not args.shallow)
    lines = [
        f"Scan {result.session.id}: {result.status.value}",
        f"  Files scanned: {result.files_scanned} of {result.total_files}",
        f"  Skipped: {result.files_skipped}  Errors: {result.errors}",
        f"  Threats found: {result.threats_found}",
    ]
    if result.error:
        lines.append(f"  Error: {result.error}")
    for threat in result.threats:
        lines.append(f"  [{threat.severity.value.upper()}] {threat.name}: {threat.path}")
    return result.to_dict(), lines


def _cmd_check(guard: GuardService, args) -> tuple:
    threat = guard.scan_file(args.path)
    if threat is None:
        return {'path': args.path, 'threat': None}, [f"Clean: {args.path}"]
    return {'path': args.path, 'threat': threat.to_dict()}, [
        f"THREAT {threat.name} ({threat.severity.value}, {threat.detection_method.value}): {threat.path}",
        f"  {threat.description}",
    ]


def _cmd_quarantine(guard: GuardService, args) -> tuple:
    if args.action == 'list':
        records = guard.list_quarantine()
        lines = [f"{len(records)} quarantined file(s)"]
        lines += [f"  {r.id}  {r.quarantined_at}  {r.original_path}" for r in records]
        return [r.to_dict() for r in records], lines
    if args.action == 'add':
        record = guard.quarantine_file(args.path, threat_name=args.threat_name)
        lines = [f"Quarantined {record.original_path} as {record.id}"]
        if not record.original_removed:
            lines.append("  Warning: the original file could not be removed")
        return record.to_dict(), lines
    if args.action == 'restore':
        path = guard.restore_file(args.quarantine_id)
        return {'quarantine_id': args.quarantine_id, 'restored_path': path}, [f"Restored to {path}"]
    if args.action == 'delete':
        removed = guard.delete_quarantine(args.quarantine_id)
        message = "Permanently deleted" if removed else "Nothing to delete for"
        return {'quarantine_id': args.quarantine_id, 'removed': removed}, [f"{message} {args.quarantine_id}"]
    if args.action == 'verify':
        valid = guard.verify_quarantine(args.quarantine_id)
        state = "intact" if valid else "CORRUPTED or wrong key"
        return {'quarantine_id': args.quarantine_id, 'valid': valid}, [f"{args.quarantine_id}: {state}"]
    purged = guard.purge_quarantine(args.days)
    return {'purged': purged}, [f"Purged {len(purged)} record(s)"]


def _cmd_remove(guard: GuardService, args) -> tuple:
    result = guard.remove_threat(args.path, kill_processes=not args.no_kill)
    lines = [f"{'Removed' if result.success else 'Could not remove'} {result.path}"]
    if result.terminated_pids:
        lines.append(f"  Terminated pids: {', '.join(map(str, result.terminated_pids))}")
    lines += [f"  {e}" for e in result.errors]
    return result.to_dict(), lines


def _cmd_watch(guard: GuardService, args) -> tuple:
    stop = threading.Event()
    if not args.json:
        guard.subscribe(_print_realtime, [
            EventType.REALTIME_THREAT,
            EventType.REALTIME_THREAT_QUARANTINED,
            EventType.REALTIME_QUARANTINE_FAILED,
        ])

    def _request_stop(signum, frame):
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    guard.toggle_realtime_protection(True)
    print(f"Watching {len(guard.watcher.watched_paths)} path(s). Press Ctrl+C to stop.",
          file=sys.stderr)
    while not stop.wait(1.0):
        pass
    guard.toggle_realtime_protection(False)
    return {'watched_paths': guard.watcher.watched_paths}, ["Realtime protection stopped"]


def _cmd_history(guard: GuardService, args) -> tuple:
    sessions = guard.get_scan_history(args.limit)
    lines = [
        f"  {s.start_time}  {s.scan_type.value:<6} {s.status.value:<9} "
        f"files={s.files_scanned} threats={s.threats_found}"
        for s in sessions
    ]
    return [s.to_dict() for s in sessions], [f"{len(sessions)} scan(s)"] + lines


def _cmd_stats(guard: GuardService, args) -> tuple:
    stats = guard.get_statistics()
    lines = [
        f"Total scans: {stats['totalScans']}",
        f"Total threats: {stats['totalThreats']}",
        f"Total files scanned: {stats['totalFilesScanned']}",
        f"Signatures: {stats['signatures']['hashes']} hashes, {stats['signatures']['patterns']} patterns",
    ]
    for detection in stats['recentThreats']:
        lines.append(f"  {detection['detected_at']}  {detection['threat_name']}: {detection['file_path']}")
    return stats, lines


def _cmd_signatures(guard: GuardService, args) -> tuple:
    if args.action == 'import':
        counts = guard.import_signatures(args.path)
        return counts, [
            f"Imported {counts['hashes']} hash and {counts['patterns']} pattern signature(s), "
            f"{counts['duplicates']} duplicate(s)"
        ]
    result = guard.update_signatures()
    return result, [result['message']]


COMMANDS: Dict[str, Callable[[GuardService, Any], tuple]] = {
    'scan': _cmd_scan,
    'check': _cmd_check,
    'quarantine': _cmd_quarantine,
    'remove': _cmd_remove,
    'watch': _cmd_watch,
    'history': _cmd_history,
    'stats': _cmd_stats,
    'signatures': _cmd_signatures,
}


def _print_progress(event: GuardEvent):
    payload = event.payload
    if event.event_type == EventType.THREAT_FOUND:
        print(f"  ! {payload['name']}: {payload['path']}", file=sys.stderr)
    else:
        print(f"  {payload['percentage']:3d}% ({payload['files_scanned']}/{payload['total_files']})",
              file=sys.stderr)


def _print_realtime(event: GuardEvent):
    payload = event.payload
    label = {
        EventType.REALTIME_THREAT: "Threat detected",
        EventType.REALTIME_THREAT_QUARANTINED: "Quarantined",
        EventType.REALTIME_QUARANTINE_FAILED: "Quarantine FAILED",
    }[event.event_type]
    print(f"{label}: {payload['name']} in {payload['path']}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.log_level:
            config.logging = dataclasses.replace(config.logging, level=args.log_level)
        setup_logging(config.logging, config.paths.log_dir)
    except GuardError as e:
        return _report_error(e, args.json)

    try:
        with GuardService(config) as guard:
            data, lines = COMMANDS[args.command](guard, args)
    except GuardError as e:
        return _report_error(e, args.json)

    if args.json:
        print(ok_response(data).to_json())
    else:
        for line in lines:
            print(line)

    if args.command == 'check' and data.get('threat'):
        return 2
    return 0


def _report_error(error: GuardError, as_json: bool) -> int:
    if as_json:
        print(from_exception(error).to_json())
    else:
        print(f"Error [{error.error_code.code}]: {error}", file=sys.stderr)
        if error.error_code.hint:
            print(f"  Hint: {error.error_code.hint}", file=sys.stderr)
    return 1


if __name__ == '__main__':
    sys.exit(main())
