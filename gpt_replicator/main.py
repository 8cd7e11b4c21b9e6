import argparse
import sys
from pathlib import Path

from gpt_replicator.config import settings
from gpt_replicator.domain import TargetPolicy
from gpt_replicator.logging import LoggerFactory, setup_logging
from gpt_replicator.storage.exceptions import StorageError
from gpt_replicator.storage.replicate import replicate_disk

NEXT_STEP_HINT = "Next step: copy the partition contents onto the new filesystems."


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpt-replicator",
        description=(
            "Clone partition structure from one disk to another and replicate file systems."
        ),
    )
    parser.add_argument("-s", "--source", help="Source disk (default: %(default)s)",
                        default=settings.get_setting("source_device"))
    parser.add_argument("-d", "--destination", help="Destination disk (default: %(default)s)",
                        default=settings.get_setting("destination_device"))
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    parser.add_argument(
        "--policy",
        choices=[policy.value for policy in TargetPolicy],
        help="How to pick the partition that absorbs new space",
    )
    parser.add_argument("--tag", help="Partition name preferred for expansion (default: APP)")
    parser.add_argument("--threshold", type=int, help="Minimum unallocated sectors to expand")
    parser.add_argument("--expand-percent", type=int, help="Share of unallocated space to add")
    parser.add_argument("--reserved-sectors", type=int, help="Sectors kept for the backup GPT")
    parser.add_argument("--no-zap", action="store_true",
                        help="Rewrite only differing entries instead of zapping the destination")
    parser.add_argument("--dry-run", action="store_true", help="Print the plan and exit")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    return parser


def confirm(source: str, destination: str, input_func=input) -> bool:
    print(f"Source disk: {source}")
    print(f"Destination disk: {destination}")
    try:
        answer = input_func(
            "Are you sure you want to clone the partition structure and file systems? "
            f"This will overwrite {destination}. (y/N): "
        )
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def main(argv=None, input_func=input) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    try:
        config = settings.load_replication_config(
            source_device=args.source,
            destination_device=args.destination,
            target_policy=args.policy,
            target_tag=args.tag,
            expansion_threshold_sectors=args.threshold,
            expand_percent=args.expand_percent,
            reserved_backup_sectors=args.reserved_sectors,
            zap_destination=False if args.no_zap else None,
        )
    except ValueError as error:
        parser.error(str(error))

    if not args.dry_run and not args.yes and not confirm(config.source, config.destination, input_func):
        print("Operation cancelled.")
        return 1

    try:
        summary = replicate_disk(config, dry_run=args.dry_run)
    except StorageError as error:
        log.error(f"{type(error).__name__}: {error}")
        print(f"Error: {error}", file=sys.stderr)
        return 1

    print("")
    print("==========================================")
    print("Dry run complete!" if args.dry_run else "Partition creation complete!")
    print("==========================================")
    for line in summary.format_lines():
        print(line)
    if not args.dry_run:
        print("")
        print(NEXT_STEP_HINT)
    return 0


if __name__ == "__main__":
    sys.exit(main())
