#!/usr/bin/env python3
"""phaseflow CLI entrypoint."""

import argparse
import logging
import os
import sys
from pathlib import Path

from phaseflow.lib.config import permissions_for_role
from phaseflow.lib.errors import NotFoundError, ValidationError
from phaseflow.lib.locking import LockTimeout
from phaseflow.lib.types import TransitionType, WorkStatus
from phaseflow.service import PhaseService

DEFAULT_DATA_DIR = ".phaseflow"

EVENT_COMMANDS = {
    "start": TransitionType.START_PHASE,
    "complete": TransitionType.COMPLETE_PHASE,
    "next": TransitionType.MOVE_TO_NEXT,
    "prev": TransitionType.MOVE_TO_PREVIOUS,
    "reset": TransitionType.RESET_PHASE,
}


def get_data_dir(args) -> Path:
    """--data-dir, then $PHASEFLOW_DATA, then ./.phaseflow"""
    if args.data_dir:
        return Path(args.data_dir)
    return Path(os.environ.get("PHASEFLOW_DATA", DEFAULT_DATA_DIR))


def get_service(args) -> PhaseService:
    return PhaseService(get_data_dir(args))


def cmd_init(args):
    service = get_service(args)
    already = service.store.is_initialized()
    phases = service.bootstrap()
    if already:
        print(f"Already initialized at {service.data_dir}")
    else:
        print(f"Initialized {service.data_dir}")
    for p in phases:
        print(f"  {p.sequence_order}. {p.name} ({p.id})")
    return 0


def cmd_new(args):
    record = get_service(args).create_epic(args.title)
    print(f"Created {record.id}: {args.title}")
    return 0


def cmd_list(args):
    service = get_service(args)
    records = service.store.list_epics()
    if not records:
        print("No epics. Create one with 'pf new <title>'.")
        return 0

    for r in records:
        epic = r.epic
        print(f"{r.id:<12} {epic.status.value:<12} {epic.completion_percentage:>3}%  "
              f"[{r.current_phase_id}]  {epic.title}")
    return 0


def cmd_status(args):
    service = get_service(args)
    record = service.store.load_epic(args.epic)
    summary = service.phase_summary(args.epic)
    available = service.available_transitions(args.epic, permissions_for_role(args.role))
    epic = record.epic

    print(f"Epic: {record.id}")
    print("=" * 60)
    print()
    print(f"Title:          {epic.title}")
    print(f"Status:         {epic.status.value}")
    print(f"Work complete:  {epic.completion_percentage}%")
    print(f"Phase complete: {summary.overall_completion}%")
    print(f"Current phase:  {summary.current_phase.name}")
    if summary.next_phase:
        print(f"Next phase:     {summary.next_phase.name}")
    print()

    for phase_id, pct in summary.phase_progress.items():
        state = record.phase_states[phase_id]
        marker = "*" if phase_id == record.current_phase_id else " "
        print(f" {marker} {phase_id:<16} {state.status.value:<12} {pct:>3}%")
    print()

    enabled = [name for name, ok in available.to_dict().items() if ok]
    print(f"Available:      {', '.join(enabled) if enabled else '(none)'}")

    for story in record.tree.children(record.id):
        print()
        print(f"  {story.id} [{story.phase_id}] {story.completion_percentage}% {story.title}")
        for task in record.tree.children(story.id):
            print(f"    {task.id} {task.completion_percentage}% {task.title}")
            for sub in record.tree.children(task.id):
                print(f"      {sub.id} {sub.status.value} {sub.completion_percentage}% {sub.title}")
    return 0


def cmd_transition(args):
    service = get_service(args)
    result = service.transition(
        args.epic,
        EVENT_COMMANDS[args.command],
        actor_id=args.actor,
        notes=args.notes,
        permissions=permissions_for_role(args.role),
        target_phase_id=args.phase,
    )
    if not result.success:
        print(f"REJECTED: {result.message}")
        return 1
    print(result.message)
    return 0


def cmd_add_story(args):
    node = get_service(args).add_story(args.epic, args.title, phase_id=args.phase)
    print(f"Added {node.id} to {args.epic} in phase {node.phase_id}")
    return 0


def cmd_add_task(args):
    node = get_service(args).add_task(args.epic, args.story, args.title)
    print(f"Added {node.id} to {args.story}")
    return 0


def cmd_add_subtask(args):
    node = get_service(args).add_subtask(args.epic, args.task, args.title)
    print(f"Added {node.id} to {args.task}")
    return 0


def cmd_progress(args):
    status = WorkStatus(args.status) if args.status else None
    result = get_service(args).update_subtask(args.epic, args.subtask, status, args.percent)
    for update in result.updates:
        status_str = update.status.value if update.status else "(status unchanged)"
        print(f"  {update.node_id:<14} {update.completion_percentage:>3}%  {status_str}")
    return 0


def cmd_sync(args):
    completion = get_service(args).sync_phase_progress(args.epic, args.phase)
    if completion is None:
        print(f"Phase {args.phase} unchanged")
    else:
        print(f"Phase {args.phase} now {completion}%")
    return 0


def cmd_timeline(args):
    for entry in get_service(args).phase_timeline(args.epic):
        marker = "*" if entry.is_current else (" " if entry.is_accessible else "-")
        duration = f"{entry.actual_duration_days}d" if entry.actual_duration_days is not None else ""
        start = entry.state.start_date.date().isoformat() if entry.state.start_date else ""
        end = entry.state.end_date.date().isoformat() if entry.state.end_date else ""
        print(f" {marker} {entry.phase.sequence_order}. {entry.phase.name:<16} "
              f"{entry.state.status.value:<12} {start:>10} {end:>10} {duration}")
    return 0


def cmd_audit(args):
    service = get_service(args)
    for entry in service.audit.load_entries(args.epic):
        phases = " -> ".join(entry["phase_ids"])
        actor = entry.get("actor_id") or "-"
        reason = f"  ({entry['reason']})" if entry.get("reason") else ""
        print(f"{entry['timestamp']}  {entry['work_item_id']}  {entry['action']:<16} {phases}  by {actor}{reason}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog='pf', description='Epic phase tracking CLI')
    parser.add_argument('--data-dir', '-d', help='Data directory (default: $PHASEFLOW_DATA or ./.phaseflow)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log transitions and rollups')

    subparsers = parser.add_subparsers(dest='command', required=True)

    # pf init
    p_init = subparsers.add_parser('init', help='Register phases (phases.yaml or defaults)')
    p_init.set_defaults(func=cmd_init)

    # pf new
    p_new = subparsers.add_parser('new', help='Create epic')
    p_new.add_argument('title', help='Epic title')
    p_new.set_defaults(func=cmd_new)

    # pf list
    p_list = subparsers.add_parser('list', help='List epics')
    p_list.set_defaults(func=cmd_list)

    # pf status
    p_status = subparsers.add_parser('status', help='Show epic phases, progress and tree')
    p_status.add_argument('epic', help='Epic ID')
    p_status.add_argument('--role', help='Role used to compute available actions')
    p_status.set_defaults(func=cmd_status)

    # pf start|complete|next|prev|reset
    for name, event_type in EVENT_COMMANDS.items():
        p = subparsers.add_parser(name, help=f'Phase transition: {event_type.value}')
        p.add_argument('epic', help='Epic ID')
        p.add_argument('--phase', help='Target phase (default: current phase)')
        p.add_argument('--actor', help='Actor ID recorded in the audit log')
        p.add_argument('--notes', '-n', help='Notes / reason')
        p.add_argument('--role', default='team_member', help='Access role (default: team_member)')
        p.set_defaults(func=cmd_transition)

    # pf add-story / add-task / add-subtask
    p_story = subparsers.add_parser('add-story', help='Add story to epic')
    p_story.add_argument('epic', help='Epic ID')
    p_story.add_argument('title', help='Story title')
    p_story.add_argument('--phase', help='Phase the story belongs to (default: current phase)')
    p_story.set_defaults(func=cmd_add_story)

    p_task = subparsers.add_parser('add-task', help='Add task to story')
    p_task.add_argument('epic', help='Epic ID')
    p_task.add_argument('story', help='Story ID')
    p_task.add_argument('title', help='Task title')
    p_task.set_defaults(func=cmd_add_task)

    p_subtask = subparsers.add_parser('add-subtask', help='Add subtask to task')
    p_subtask.add_argument('epic', help='Epic ID')
    p_subtask.add_argument('task', help='Task ID')
    p_subtask.add_argument('title', help='Subtask title')
    p_subtask.set_defaults(func=cmd_add_subtask)

    # pf progress
    p_progress = subparsers.add_parser('progress', help='Update subtask and roll up')
    p_progress.add_argument('epic', help='Epic ID')
    p_progress.add_argument('subtask', help='Subtask ID')
    p_progress.add_argument('percent', nargs='?', type=int, help='Completion percentage 0-100')
    p_progress.add_argument('--status', choices=[s.value for s in WorkStatus], help='Subtask status')
    p_progress.set_defaults(func=cmd_progress)

    # pf sync
    p_sync = subparsers.add_parser('sync', help='Copy story progress into a phase')
    p_sync.add_argument('epic', help='Epic ID')
    p_sync.add_argument('phase', help='Phase ID')
    p_sync.set_defaults(func=cmd_sync)

    # pf timeline
    p_timeline = subparsers.add_parser('timeline', help='Show phase timeline')
    p_timeline.add_argument('epic', help='Epic ID')
    p_timeline.set_defaults(func=cmd_timeline)

    # pf audit
    p_audit = subparsers.add_parser('audit', help='Show audit log')
    p_audit.add_argument('epic', nargs='?', help='Only entries for this epic')
    p_audit.set_defaults(func=cmd_audit)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except NotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except (ValidationError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except LockTimeout as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 3


if __name__ == '__main__':
    sys.exit(main())
