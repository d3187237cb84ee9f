"""
Command line entry point.

    xbackup run [--dry-run] [--force]
    xbackup rotate [--dry-run]
    xbackup restore --user USER [--version V] [--remote DRIVER] [--outdir DIR]
"""

import argparse
import logging
import sys

from xbackup import __version__, configure_logging
from xbackup.config import config, load_config
from xbackup.errors import BackupError

logger = logging.getLogger('xbackup')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='xbackup',
        description='Per-user backup with compression, encryption, remote upload and rotation.'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument(
        '--config', dest='config_name', choices=sorted(k for k in config if k != 'default'),
        help='Configuration profile (default: XBACKUP_ENV or production)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Back up every user and rotate remotes')
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Log what would happen without creating, uploading or deleting')
    run_parser.add_argument('--force', action='store_true',
                            help='Run even if the last successful backup is less than 24h old')

    rotate_parser = subparsers.add_parser('rotate', help='Only apply the retention policy')
    rotate_parser.add_argument('--dry-run', action='store_true',
                               help='Log what would be deleted without deleting')

    restore_parser = subparsers.add_parser('restore', help='Download and decode a backup')
    restore_parser.add_argument('--user', required=True, help='Owner of the backup')
    restore_parser.add_argument('--version', dest='backup_version',
                                help='Backup timestamp YYYY-MM-DD_HH-MM-SS (default: newest)')
    restore_parser.add_argument('--remote', help='Remote driver to read from (s3, b2, local)')
    restore_parser.add_argument('--outdir', help='Directory for the restored file')

    return parser


def main(argv=None) -> int:
    """Run the CLI and return the process exit status."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_config(args.config_name)
        configure_logging(settings)

        from xbackup.backup.executor import BackupExecutor, restore_backup

        if args.command == 'restore':
            path = restore_backup(
                settings,
                user=args.user,
                version=args.backup_version,
                remote=args.remote,
                outdir=args.outdir,
                logger=logger
            )
            print(f"[OK] Completed. File available at: {path}")
            return 0

        executor = BackupExecutor(settings, logger=logger)

        if args.command == 'rotate':
            results = executor.rotate(dry_run=args.dry_run)
            return 1 if any('error' in r for r in results) else 0

        summary = executor.execute(dry_run=args.dry_run, force=args.force)
        logger.info(
            f"Backup finished with status {summary['status']}: "
            f"{len(summary['uploaded'])} uploaded, {len(summary['skipped'])} skipped, "
            f"{len(summary['failed'])} failed"
        )
        return 1 if summary['status'] == 'failed' else 0

    except (BackupError, ValueError) as e:
        logger.error(f"An error occurred: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
