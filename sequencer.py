#!/usr/bin/env python3
"""
Lesson Sequencer CLI

Reorder lessons and move them between modules in a JSON course file.

Usage:
    python sequencer.py course.json show --grouped
    python sequencer.py course.json show --search intro --sort duration
    python sequencer.py course.json move L3 L1
    python sequencer.py course.json assign L3 advanced
    python sequencer.py course.json assign L3 none
    python sequencer.py course.json status published L1 L2
"""

import argparse
import asyncio
import inspect
import sys
from pathlib import Path

from lesson_sequencer.api import InMemoryBackend
from lesson_sequencer.config import load_config
from lesson_sequencer.core import LessonBoard, RecordingNotifier, SortKey
from lesson_sequencer.exceptions import SequencerError
from lesson_sequencer.logging_config import setup_logging
from lesson_sequencer.models import UNGROUPED, LessonKind, LessonStatus

NO_MODULE_ALIASES = {'none', UNGROUPED}


def print_lesson(lesson, indent: str = "  "):
    flag = " [free]" if lesson.is_free else ""
    print(f"{indent}{lesson.position:>3}. [{lesson.id}] {lesson.title}{flag}")
    print(f"{indent}     {lesson.kind.value} | {lesson.status.value} | {lesson.duration_display}")


def print_notices(notifier: RecordingNotifier):
    for notice in notifier.notices:
        print(f"[{notice.level.value}] {notice.message}")


# ==================== COMMANDS ====================

def cmd_show(args, board: LessonBoard) -> int:
    """List lessons, flat or grouped by module."""
    board.set_filters(
        search=args.search or "",
        kind=LessonKind(args.kind) if args.kind else None,
        status=LessonStatus(args.status) if args.status else None,
        module=args.module,
        sort=args.sort,
    )

    if not args.grouped:
        lessons = board.view()
        print(f"\n=== Lessons ({len(lessons)}) ===\n")
        for lesson in lessons:
            print_lesson(lesson)
        return 0

    for group in board.grouped():
        title = group.module.title if group.module else "No module"
        status = f" ({group.module.status.value})" if group.module else ""
        print(f"\n=== {title}{status} [{group.key}] ===")
        if not group.lessons:
            print("  (empty)")
        for lesson in group.lessons:
            print_lesson(lesson)
    print()
    return 0


async def cmd_move(args, board: LessonBoard) -> int:
    """Drag one lesson onto another."""
    if not board.begin_drag(args.lesson):
        print(f"Cannot move lesson: {args.lesson}")
        return 1
    board.hover_lesson(args.target)
    result = await board.drop()
    if result is None:
        print("Nothing to move.")
        return 0
    return 0 if result.success else 1


async def cmd_assign(args, board: LessonBoard) -> int:
    """Drag one lesson onto a module."""
    module_id = None if args.module in NO_MODULE_ALIASES else args.module
    if not board.begin_drag(args.lesson):
        print(f"Cannot move lesson: {args.lesson}")
        return 1
    board.hover_module(module_id)
    result = await board.drop()
    if result is None:
        print(f"Lesson {args.lesson} is already in that module.")
        return 0
    return 0 if result.success else 1


async def cmd_status(args, board: LessonBoard) -> int:
    """Set the status of several lessons at once."""
    board.selection.select(args.lessons)
    missing = [lid for lid in args.lessons if board.store.find(lid) is None]
    if missing:
        print(f"Unknown lessons: {', '.join(missing)}")
        return 1
    result = await board.batch.set_status(LessonStatus(args.value))
    for lesson_id, error in result.failed.items():
        print(f"  {lesson_id}: {error}")
    return 0 if result.success else 1


COMMANDS = {
    'show': cmd_show,
    'move': cmd_move,
    'assign': cmd_assign,
    'status': cmd_status,
}


async def run(args, config) -> int:
    backend = InMemoryBackend.from_file(args.course_file)
    notifier = RecordingNotifier()
    board = LessonBoard(backend, backend.course_id, config=config, notifier=notifier)
    await board.open()

    handler = COMMANDS[args.command]
    if inspect.iscoroutinefunction(handler):
        code = await handler(args, board)
    else:
        code = handler(args, board)

    print_notices(notifier)
    if args.command != 'show' and code == 0:
        backend.save(args.course_file)
    return code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lesson Sequencer - reorder lessons and assign them to modules",
    )
    parser.add_argument('course_file', help='JSON course file')
    parser.add_argument(
        '--config', '-c',
        default='config.yaml',
        help='Path to config file (default: config.yaml)'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Show command
    show_parser = subparsers.add_parser('show', help='List lessons')
    show_parser.add_argument('--search', '-s', help='Title contains (case-insensitive)')
    show_parser.add_argument('--kind', '-k', choices=[k.value for k in LessonKind])
    show_parser.add_argument('--status', choices=[s.value for s in LessonStatus])
    show_parser.add_argument('--module', '-m', help=f"Module id, or '{UNGROUPED}'")
    show_parser.add_argument('--sort', choices=[s.value for s in SortKey], default=SortKey.POSITION.value)
    show_parser.add_argument('--grouped', '-g', action='store_true', help='Group by module')

    # Move command
    move_parser = subparsers.add_parser('move', help='Move a lesson to another lesson\'s place')
    move_parser.add_argument('lesson', help='Lesson to move')
    move_parser.add_argument('target', help='Lesson whose place it takes')

    # Assign command
    assign_parser = subparsers.add_parser('assign', help='Move a lesson to the end of a module')
    assign_parser.add_argument('lesson', help='Lesson to move')
    assign_parser.add_argument('module', help="Module id, or 'none' for no module")

    # Status command
    status_parser = subparsers.add_parser('status', help='Set the status of lessons')
    status_parser.add_argument('value', choices=[s.value for s in LessonStatus])
    status_parser.add_argument('lessons', nargs='+', help='Lesson ids')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config if Path(args.config).exists() else None)
    except SequencerError as e:
        print(f"Configuration error: {e}")
        return 1

    setup_logging(config.logging, level="DEBUG" if args.verbose else None)

    if not Path(args.course_file).exists():
        print(f"Course file not found: {args.course_file}")
        return 1

    try:
        return asyncio.run(run(args, config))
    except SequencerError as e:
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
