"""
Music Mirror CLI - Entry point

Subcommands scan the media root, sync the catalog, resample tracks that
browsers cannot play and print catalog statistics.
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from music_mirror.core import database
from music_mirror.core.config import Config, get_data_dir, load_config
from music_mirror.core.console import get_console, make_progress, print_table
from music_mirror.core.output import log, set_quiet_mode, setup_loguru
from music_mirror.exceptions import InvariantViolation, MusicMirrorError

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVARIANT = 2


def install_signal_handlers(cancel_event: threading.Event) -> dict:
    """SIGINT/SIGTERM stop dispatching new work; in-flight files finish.

    The handler only sets the event. Logging takes locks the interrupted
    thread may already hold, so callers report the cancellation afterwards.

    Returns:
        The previous handlers, for restore_signal_handlers()
    """

    def _handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def setup_environment(config: Config) -> None:
    """Point logging and the catalog store at their configured locations."""
    if config.logging.log_file:
        log_file = Path(config.logging.log_file).expanduser()
    else:
        log_file = get_data_dir() / 'music-mirror.log'
    setup_loguru(
        log_file,
        level=config.logging.level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        console_output=config.logging.console_output,
    )
    database.set_database_path(config.database.path)


def make_resampler(config: Config):
    from music_mirror.domain.resample.executor import FfmpegResampler

    return FfmpegResampler(
        ffmpeg_path=config.resample.ffmpeg_path,
        timeout_seconds=config.resample.timeout_seconds,
    )


def print_report(report) -> None:
    """Render a SyncReport as tables."""
    summary = report.summary()
    rows = [(key, value) for key, value in summary.items() if key != 'skipped_by_reason']
    rows += [
        (f'skipped: {reason}', count)
        for reason, count in sorted(summary['skipped_by_reason'].items())
    ]
    print_table('Sync summary', ['Item', 'Count'], rows)

    if report.skipped:
        print_table(
            'Skipped paths',
            ['Path', 'Reason'],
            sorted(report.skipped.items()),
        )
    if report.resample_failed:
        print_table(
            'Resample failures',
            ['Path', 'Reason'],
            sorted(report.resample_failed.items()),
        )


def run_sync(config: Config, resample: bool = True, dry_run: bool = False) -> int:
    """Scan, reconcile and (optionally) resample.

    Returns:
        Exit code (0 success, 1 structural error, 2 invariant violation)
    """
    from music_mirror.domain.sync.engine import sync_library

    cancel_event = threading.Event()
    previous_handlers = install_signal_handlers(cancel_event)
    resampler = make_resampler(config) if resample and not dry_run else None

    log(f"{'DRY RUN - ' if dry_run else ''}Syncing catalog with {config.music.media_root}")

    try:
        with make_progress() as progress:
            scan_task = progress.add_task('Scanning', total=None)
            resample_task: Optional[int] = None

            def on_scan(done: int, current_path: Optional[str]) -> None:
                progress.update(scan_task, completed=done)

            def on_resample(completed: int, total: int) -> None:
                nonlocal resample_task
                if resample_task is None:
                    resample_task = progress.add_task('Resampling', total=total)
                progress.update(resample_task, completed=completed)

            report = sync_library(
                config,
                resampler=resampler,
                cancel_event=cancel_event,
                scan_progress=on_scan,
                resample_progress=on_resample,
                dry_run=dry_run,
            )
    except InvariantViolation as e:
        logger.exception('Invariant violation during sync')
        log(f'Invariant violation: {e}', level='error')
        return EXIT_INVARIANT
    except MusicMirrorError as e:
        log(f'Sync failed: {e}', level='error')
        return EXIT_ERROR
    finally:
        restore_signal_handlers(previous_handlers)

    print_report(report)
    if report.cancelled:
        log('Run was cancelled; the next sync picks up the remaining work.', level='warning')
    return EXIT_OK


def run_resample(config: Config) -> int:
    """Resample catalog tracks above the threshold, then fold the result back in."""
    from music_mirror.domain.resample.pipeline import resample_all
    from music_mirror.domain.sync.models import ResampleCandidate

    database.init_database(config.contributors.allowed)
    threshold = config.resample.playback_threshold_hz
    candidates = [
        ResampleCandidate(row['file_path'], row['file_type'], row['sample_rate'])
        for row in database.get_tracks_above_sample_rate(threshold)
    ]
    if not candidates:
        log(f'No tracks above {threshold} Hz')
        return EXIT_OK

    cancel_event = threading.Event()
    previous_handlers = install_signal_handlers(cancel_event)

    try:
        with make_progress() as progress:
            task = progress.add_task('Resampling', total=len(candidates))
            run_report = resample_all(
                candidates,
                make_resampler(config),
                config,
                cancel_event=cancel_event,
                progress_callback=lambda done, total: progress.update(task, completed=done),
            )
    finally:
        restore_signal_handlers(previous_handlers)

    if cancel_event.is_set():
        log('Resampling was cancelled; in-flight files finished.', level='warning')

    print_table(
        'Resample results',
        ['Path', 'Outcome', 'Reason'],
        [(o.file_path, o.status.value, o.reason) for o in sorted(run_report.outcomes.values())],
    )

    if run_report.succeeded:
        # Catalog rows still carry the old sample rate until the next sync
        return run_sync(config, resample=False)
    return EXIT_ERROR if run_report.failed else EXIT_OK


def run_stats(config: Config) -> int:
    """Print catalog statistics."""
    database.init_database(config.contributors.allowed)
    stats = database.get_catalog_stats(config.resample.playback_threshold_hz)

    hours, remainder = divmod(stats['total_duration'], 3600)
    rows = [
        ('Artists', stats['artists']),
        ('Albums', stats['albums']),
        ('Tracks', stats['tracks']),
        ('Total duration', f'{hours}h {remainder // 60}m'),
        ('Total size', f"{stats['total_size'] / (1024 ** 3):.2f} GB"),
        (f'Above {config.resample.playback_threshold_hz} Hz', stats['above_threshold']),
    ]
    rows += [(f'Contributor: {tag}', count) for tag, count in stats['by_contributor'].items()]
    rows += [(f'Format: {fmt}', count) for fmt, count in stats['by_format'].items()]
    print_table('Catalog', ['Item', 'Value'], rows)
    return EXIT_OK


def main(argv: Optional[list] = None) -> None:
    """Main entry point for the music-mirror command."""
    parser = argparse.ArgumentParser(
        description='Music Mirror - keep a music catalog in step with its media folder',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--config',
        type=Path,
        help='Path to config.toml (default: ./config.toml or ~/.config/music-mirror)'
    )
    parser.add_argument(
        '--media-root',
        help='Override music.media_root for this run'
    )
    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Only write to the log file, no console messages'
    )

    subparsers = parser.add_subparsers(dest='subcommand', help='Available commands')

    subparsers.add_parser('init', help='Create the config file and catalog schema')
    subparsers.add_parser('scan', help='Scan and show the pending catalog changes (dry run)')

    sync_parser = subparsers.add_parser('sync', help='Scan, update the catalog and resample')
    sync_parser.add_argument(
        '--no-resample',
        action='store_true',
        help='Skip resampling for this run'
    )

    subparsers.add_parser('resample', help='Resample catalog tracks above the threshold')
    subparsers.add_parser('stats', help='Show catalog statistics')

    args = parser.parse_args(argv)
    if not args.subcommand:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    try:
        config = load_config(args.config)
    except MusicMirrorError as e:
        get_console().print(f'Configuration error: {e}', style='red')
        sys.exit(EXIT_ERROR)
    if args.media_root:
        config.music.media_root = str(Path(args.media_root).expanduser())

    setup_environment(config)
    set_quiet_mode(args.quiet)

    try:
        if args.subcommand == 'init':
            database.init_database(config.contributors.allowed)
            log(f'Catalog ready at {database.get_database_path()}')
            sys.exit(EXIT_OK)

        elif args.subcommand == 'scan':
            sys.exit(run_sync(config, resample=False, dry_run=True))

        elif args.subcommand == 'sync':
            sys.exit(run_sync(config, resample=not args.no_resample))

        elif args.subcommand == 'resample':
            sys.exit(run_resample(config))

        elif args.subcommand == 'stats':
            sys.exit(run_stats(config))
    except MusicMirrorError as e:
        log(f'{args.subcommand} failed: {e}', level='error')
        sys.exit(EXIT_ERROR)


if __name__ == '__main__':
    main()
