"""Command line interface for the hoopclub basketball club dashboard."""
from __future__ import annotations

import argparse
import os
import shlex
import sys
import time
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional

from . import __version__, models, services
from .config import Config, configure_logging
from .context import ClubContext
from .errors import ClubError
from .live import LiveView

DATE_HELP = "ISO format (YYYY-MM-DD)."
RANGE_CHOICES = ("all", "thisMonth", "lastMonth", "custom")


class CommandError(RuntimeError):
    """Raised when CLI validation fails."""


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise CommandError(f"Invalid date: {value}") from exc


def _money(value: float) -> str:
    return f"{value:,.2f}"


def _format_match(match: models.Match) -> str:
    venue = "home" if match.home_team else "away"
    return (
        f"[{match.id}] {match.date.isoformat()} {match.time or '--:--'} | vs {match.opponent} ({venue}) | "
        f"{match.location or '-'} | {match.status} | {match.score.get('home', 0)}-{match.score.get('away', 0)}"
    )


def _print_payments(payments: List[models.Payment], empty: str) -> None:
    if not payments:
        print(empty)
        return
    for payment in payments:
        print(f"- {services.format_payment(payment)}")


def _configure_user_commands(subparsers: argparse._SubParsersAction, context: ClubContext) -> None:
    user_parser = subparsers.add_parser("users", help="Manage accounts")
    user_sub = user_parser.add_subparsers(dest="users_command", required=True)

    register = user_sub.add_parser("register", help="Create an account")
    register.add_argument("email")
    register.add_argument("password")

    def handle_register(args: argparse.Namespace) -> None:
        uid = context.identity.register(args.email, args.password)
        print(f"Account created. Owner id: {uid}")

    register.set_defaults(func=handle_register)

    login = user_sub.add_parser("login", help="Check credentials and show the owner id")
    login.add_argument("email")
    login.add_argument("password")

    def handle_login(args: argparse.Namespace) -> None:
        session = context.identity.sign_in(args.email, args.password)
        print(f"Signed in as {session.email}. Owner id: {session.uid}")

    login.set_defaults(func=handle_login)


def _configure_club_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    club_parser = subparsers.add_parser("club", help="Club onboarding")
    club_sub = club_parser.add_subparsers(dest="club_command", required=True)

    setup = club_sub.add_parser("setup", help="Register the club with its logo")
    setup.add_argument("name", help="Club name")
    setup.add_argument("logo", help="Path to the logo image")

    def handle_setup(args: argparse.Namespace) -> None:
        logo = Path(args.logo)
        try:
            data = logo.read_bytes()
        except OSError as exc:
            raise CommandError(f"Cannot read logo {logo}: {exc}") from exc
        club = get_service(args).setup_club(args.name, data, logo.name)
        print("Club setup completed!")
        print(f"  {club.club_name} | logo: {club.logo_url}")

    setup.set_defaults(func=handle_setup)

    show = club_sub.add_parser("show", help="Show the club")

    def handle_show(args: argparse.Namespace) -> None:
        club = get_service(args).get_club()
        if club is None:
            print("No club registered yet. Run 'club setup' first.")
            return
        print(f"{club.club_name} | logo: {club.logo_url or '-'}")

    show.set_defaults(func=handle_show)

    dashboard = club_sub.add_parser("dashboard", help="Headline numbers")

    def handle_dashboard(args: argparse.Namespace) -> None:
        stats = get_service(args).dashboard()
        print(f"Students: {stats['total_students']} | Groups: {stats['total_groups']} | Trainers: {stats['total_trainers']}")
        print(f"Income: {_money(stats['total_income'])} | Expenses: {_money(stats['total_expenses'])}")
        print(f"Pending payments: {stats['pending_payments']}")
        for bucket in stats["monthly_stats"]:
            print(f"  {bucket['month']}: +{_money(bucket['income'])} / -{_money(bucket['expenses'])} = {_money(bucket['profit'])}")

    dashboard.set_defaults(func=handle_dashboard)


def _configure_branch_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    branch_parser = subparsers.add_parser("branches", help="Manage branches")
    branch_sub = branch_parser.add_subparsers(dest="branches_command", required=True)

    add_branch = branch_sub.add_parser("add", help="Add a branch")
    add_branch.add_argument("name")
    add_branch.add_argument("--address", default="")

    def handle_add(args: argparse.Namespace) -> None:
        branch = get_service(args).add_branch(args.name, args.address)
        print("Branch added:")
        print(f"  [{branch.id}] {branch.name} | {branch.address or '-'}")

    add_branch.set_defaults(func=handle_add)

    list_branch = branch_sub.add_parser("list", help="List branches")

    def handle_list(args: argparse.Namespace) -> None:
        branches = get_service(args).list_branches()
        if not branches:
            print("No branches registered.")
            return
        for branch in branches:
            print(f"- [{branch.id}] {branch.name} | {branch.address or '-'}")

    list_branch.set_defaults(func=handle_list)

    update_branch = branch_sub.add_parser("update", help="Update a branch")
    update_branch.add_argument("branch_id")
    update_branch.add_argument("--name")
    update_branch.add_argument("--address")

    def handle_update(args: argparse.Namespace) -> None:
        branch = get_service(args).update_branch(args.branch_id, name=args.name, address=args.address)
        print(f"Branch updated: [{branch.id}] {branch.name}")

    update_branch.set_defaults(func=handle_update)

    remove_branch = branch_sub.add_parser("remove", help="Delete a branch and its groups")
    remove_branch.add_argument("branch_id")

    def handle_remove(args: argparse.Namespace) -> None:
        get_service(args).remove_branch(args.branch_id)
        print("Branch deleted.")

    remove_branch.set_defaults(func=handle_remove)


def _configure_group_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    group_parser = subparsers.add_parser("groups", help="Manage training groups")
    group_sub = group_parser.add_subparsers(dest="groups_command", required=True)

    add_group = group_sub.add_parser("add", help="Add a group to a branch")
    add_group.add_argument("branch_id")
    add_group.add_argument("name")
    add_group.add_argument("capacity", type=int)
    add_group.add_argument("--description", default="")
    add_group.add_argument("--age-group", dest="age_group", default="")
    add_group.add_argument("--schedule", default="")

    def handle_add(args: argparse.Namespace) -> None:
        group = get_service(args).add_group(
            args.branch_id,
            args.name,
            args.capacity,
            description=args.description,
            age_group=args.age_group,
            schedule=args.schedule,
        )
        print("Group added:")
        print(f"  [{group.id}] {group.name} | capacity {group.capacity}")

    add_group.set_defaults(func=handle_add)

    list_group = group_sub.add_parser("list", help="List the groups of a branch")
    list_group.add_argument("branch_id")

    def handle_list(args: argparse.Namespace) -> None:
        rows = get_service(args).group_overview(args.branch_id)
        if not rows:
            print("No groups in this branch.")
            return
        for group, stats in rows:
            print(
                f"- [{group.id}] {group.name} | {group.age_group or '-'} | "
                f"{stats['student_count']}/{group.capacity} students | {stats['trainer_count']} trainers"
            )

    list_group.set_defaults(func=handle_list)

    update_group = group_sub.add_parser("update", help="Update a group")
    update_group.add_argument("branch_id")
    update_group.add_argument("group_id")
    update_group.add_argument("--name")
    update_group.add_argument("--capacity", type=int)
    update_group.add_argument("--description")
    update_group.add_argument("--age-group", dest="age_group")
    update_group.add_argument("--schedule")

    def handle_update(args: argparse.Namespace) -> None:
        group = get_service(args).update_group(
            args.branch_id,
            args.group_id,
            name=args.name,
            capacity=args.capacity,
            description=args.description,
            age_group=args.age_group,
            schedule=args.schedule,
        )
        print(f"Group updated: [{group.id}] {group.name}")

    update_group.set_defaults(func=handle_update)

    remove_group = group_sub.add_parser("remove", help="Delete a group")
    remove_group.add_argument("branch_id")
    remove_group.add_argument("group_id")

    def handle_remove(args: argparse.Namespace) -> None:
        get_service(args).remove_group(args.branch_id, args.group_id)
        print("Group deleted.")

    remove_group.set_defaults(func=handle_remove)


def _add_student_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dob", dest="date_of_birth", help=DATE_HELP)
    parser.add_argument("--parent-name", dest="parent_name")
    parser.add_argument("--parent-phone", dest="parent_phone")
    parser.add_argument("--email")


def _configure_student_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    student_parser = subparsers.add_parser("students", help="Manage students")
    student_sub = student_parser.add_subparsers(dest="students_command", required=True)

    add_student = student_sub.add_parser("add", help="Add a student to a group")
    add_student.add_argument("group_id")
    add_student.add_argument("first_name")
    add_student.add_argument("last_name")
    _add_student_options(add_student)

    def handle_add(args: argparse.Namespace) -> None:
        student = get_service(args).add_student(
            args.group_id,
            args.first_name,
            args.last_name,
            date_of_birth=parse_date(args.date_of_birth),
            parent_name=args.parent_name or "",
            parent_phone=args.parent_phone or "",
            email=args.email or "",
        )
        print("Student added:")
        print(f"  {services.format_person(student)}")

    add_student.set_defaults(func=handle_add)

    list_student = student_sub.add_parser("list", help="List the students of a group")
    list_student.add_argument("group_id")

    def handle_list(args: argparse.Namespace) -> None:
        students = get_service(args).list_students(args.group_id)
        if not students:
            print("No students in this group.")
            return
        for student in students:
            print(f"- {services.format_person(student)} | parent: {student.parent_name or '-'} {student.parent_phone}")

    list_student.set_defaults(func=handle_list)

    update_student = student_sub.add_parser("update", help="Update a student")
    update_student.add_argument("group_id")
    update_student.add_argument("student_id")
    update_student.add_argument("--first-name", dest="first_name")
    update_student.add_argument("--last-name", dest="last_name")
    _add_student_options(update_student)

    def handle_update(args: argparse.Namespace) -> None:
        kwargs: Dict[str, object] = {
            "first_name": args.first_name,
            "last_name": args.last_name,
            "parent_name": args.parent_name,
            "parent_phone": args.parent_phone,
            "email": args.email,
        }
        if args.date_of_birth is not None:
            kwargs["date_of_birth"] = parse_date(args.date_of_birth)
        student = get_service(args).update_student(args.group_id, args.student_id, **kwargs)
        print(f"Student updated: {services.format_person(student)}")

    update_student.set_defaults(func=handle_update)

    remove_student = student_sub.add_parser("remove", help="Delete a student")
    remove_student.add_argument("group_id")
    remove_student.add_argument("student_id")

    def handle_remove(args: argparse.Namespace) -> None:
        get_service(args).remove_student(args.group_id, args.student_id)
        print("Student deleted.")

    remove_student.set_defaults(func=handle_remove)


def _configure_trainer_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    trainer_parser = subparsers.add_parser("trainers", help="Manage trainers")
    trainer_sub = trainer_parser.add_subparsers(dest="trainers_command", required=True)

    add_trainer = trainer_sub.add_parser("add", help="Add a trainer")
    add_trainer.add_argument("first_name")
    add_trainer.add_argument("last_name")
    add_trainer.add_argument("--email", default="")
    add_trainer.add_argument("--phone", default="")
    add_trainer.add_argument("--specialization", default="")
    add_trainer.add_argument("--group", dest="groups", action="append", default=[], help="Assigned group id (repeatable)")

    def handle_add(args: argparse.Namespace) -> None:
        trainer = get_service(args).add_trainer(
            args.first_name,
            args.last_name,
            email=args.email,
            phone=args.phone,
            specialization=args.specialization,
            groups=args.groups,
        )
        print("Trainer added:")
        print(f"  {services.format_person(trainer)} | groups: {', '.join(sorted(trainer.groups)) or '-'}")

    add_trainer.set_defaults(func=handle_add)

    list_trainer = trainer_sub.add_parser("list", help="List trainers")
    list_trainer.add_argument("--group", help="Only trainers assigned to this group")

    def handle_list(args: argparse.Namespace) -> None:
        service = get_service(args)
        trainers = service.trainers_for_group(args.group) if args.group else service.list_trainers()
        if not trainers:
            print("No trainers registered.")
            return
        for trainer in trainers:
            print(f"- {services.format_person(trainer)} | {trainer.specialization or '-'} | groups: {len(trainer.groups)}")

    list_trainer.set_defaults(func=handle_list)

    update_trainer = trainer_sub.add_parser("update", help="Update a trainer")
    update_trainer.add_argument("trainer_id")
    update_trainer.add_argument("--first-name", dest="first_name")
    update_trainer.add_argument("--last-name", dest="last_name")
    update_trainer.add_argument("--email")
    update_trainer.add_argument("--phone")
    update_trainer.add_argument("--specialization")
    update_trainer.add_argument("--group", dest="groups", action="append", help="Replace assigned groups")
    update_trainer.add_argument("--clear-groups", action="store_true", help="Unassign every group")

    def handle_update(args: argparse.Namespace) -> None:
        groups = [] if args.clear_groups else args.groups
        trainer = get_service(args).update_trainer(
            args.trainer_id,
            first_name=args.first_name,
            last_name=args.last_name,
            email=args.email,
            phone=args.phone,
            specialization=args.specialization,
            groups=groups,
        )
        print(f"Trainer updated: {services.format_person(trainer)}")

    update_trainer.set_defaults(func=handle_update)

    remove_trainer = trainer_sub.add_parser("remove", help="Delete a trainer")
    remove_trainer.add_argument("trainer_id")

    def handle_remove(args: argparse.Namespace) -> None:
        get_service(args).remove_trainer(args.trainer_id)
        print("Trainer deleted.")

    remove_trainer.set_defaults(func=handle_remove)


def _configure_attendance_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    attendance_parser = subparsers.add_parser("attendance", help="Take and review attendance")
    attendance_sub = attendance_parser.add_subparsers(dest="attendance_command", required=True)

    take = attendance_sub.add_parser("take", help="Save a session; unlisted students are absent")
    take.add_argument("group_id")
    take.add_argument("date", help=DATE_HELP)
    take.add_argument("time_slot", help="HH:MM")
    take.add_argument("--present", nargs="*", default=[], help="Ids of the students present")

    def handle_take(args: argparse.Namespace) -> None:
        marks = {student_id: True for student_id in args.present}
        entries = get_service(args).record_attendance(args.group_id, parse_date(args.date), args.time_slot, marks)
        present = sum(1 for entry in entries if entry.present)
        print(f"Attendance saved: {present} present, {len(entries) - present} absent.")

    take.set_defaults(func=handle_take)

    show = attendance_sub.add_parser("show", help="Show one session")
    show.add_argument("group_id")
    show.add_argument("date", help=DATE_HELP)
    show.add_argument("time_slot", help="HH:MM")

    def handle_show(args: argparse.Namespace) -> None:
        service = get_service(args)
        entries = service.get_attendance(args.group_id, parse_date(args.date), args.time_slot)
        if not entries:
            print("No attendance recorded for this session.")
            return
        for entry in entries:
            print(f"- {entry.student_name or entry.student_id}: {'present' if entry.present else 'absent'}")
        summary = service.attendance_summary(args.group_id, parse_date(args.date), args.time_slot)
        print(f"Present: {summary['present_count']} | Absent: {summary['absent_count']}")

    show.set_defaults(func=handle_show)

    records = attendance_sub.add_parser("records", help="Sessions of a group between two dates")
    records.add_argument("group_id")
    records.add_argument("start", help=DATE_HELP)
    records.add_argument("end", help=DATE_HELP)
    records.add_argument("--sort", choices=("date", "time_slot"), default="date")
    records.add_argument("--direction", choices=("asc", "desc"), default="desc")

    def handle_records(args: argparse.Namespace) -> None:
        sessions = get_service(args).attendance_records(
            args.group_id,
            parse_date(args.start),
            parse_date(args.end),
            sort_key=args.sort,
            direction=args.direction,
        )
        if not sessions:
            print("No sessions in this period.")
            return
        for session in sessions:
            summary = session.to_dict()["summary"]
            print(f"- {session.date} {session.time_slot} | present {summary['present_count']} | absent {summary['absent_count']}")

    records.set_defaults(func=handle_records)


def _add_progress_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", help=DATE_HELP)
    parser.add_argument("--height", type=float)
    parser.add_argument("--weight", type=float)
    parser.add_argument("--vertical-jump", dest="vertical_jump", type=float)
    parser.add_argument("--speed-test", dest="speed_test", type=float)
    parser.add_argument("--academic-score", dest="academic_score", type=int)
    parser.add_argument("--notes")


def _progress_values(args: argparse.Namespace) -> Dict[str, object]:
    values = {
        name: getattr(args, name)
        for name in ("height", "weight", "vertical_jump", "speed_test", "academic_score", "notes")
    }
    values["date"] = parse_date(args.date)
    return values


def _configure_progress_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    progress_parser = subparsers.add_parser("progress", help="Student progress records")
    progress_sub = progress_parser.add_subparsers(dest="progress_command", required=True)

    add_progress = progress_sub.add_parser("add", help="Add a progress record")
    add_progress.add_argument("student_id")
    _add_progress_options(add_progress)

    def handle_add(args: argparse.Namespace) -> None:
        record = get_service(args).add_progress(args.student_id, **_progress_values(args))
        print(f"Progress record added: [{record.id}] {record.date.isoformat()}")

    add_progress.set_defaults(func=handle_add)

    list_progress = progress_sub.add_parser("list", help="List progress records")
    list_progress.add_argument("student_id")

    def handle_list(args: argparse.Namespace) -> None:
        records = get_service(args).list_progress(args.student_id)
        if not records:
            print("No progress records.")
            return
        for record in records:
            print(
                f"- [{record.id}] {record.date.isoformat()} | height {record.height} | weight {record.weight} | "
                f"jump {record.vertical_jump} | speed {record.speed_test} | academic {record.academic_score}"
            )

    list_progress.set_defaults(func=handle_list)

    trend_progress = progress_sub.add_parser("trend", help="Latest value of each metric against its best")
    trend_progress.add_argument("student_id")

    def handle_trend(args: argparse.Namespace) -> None:
        rows = get_service(args).progress_trend(args.student_id)
        if not rows:
            print("At least two progress records are needed for a trend.")
            return
        for row in rows:
            print(f"- {row['metric']}: {row['latest']:g} (best {row['max']:g}, {row['ratio'] * 100:.0f}%)")

    trend_progress.set_defaults(func=handle_trend)

    update_progress = progress_sub.add_parser("update", help="Update a progress record")
    update_progress.add_argument("student_id")
    update_progress.add_argument("record_id")
    _add_progress_options(update_progress)

    def handle_update(args: argparse.Namespace) -> None:
        record = get_service(args).update_progress(args.student_id, args.record_id, **_progress_values(args))
        print(f"Progress record updated: [{record.id}]")

    update_progress.set_defaults(func=handle_update)


def _configure_match_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    match_parser = subparsers.add_parser("matches", help="Match schedule")
    match_sub = match_parser.add_subparsers(dest="matches_command", required=True)

    add_match = match_sub.add_parser("add", help="Schedule a match")
    add_match.add_argument("date", help=DATE_HELP)
    add_match.add_argument("opponent")
    add_match.add_argument("--time", default="")
    add_match.add_argument("--location", default="")
    add_match.add_argument("--away", action="store_true", help="We play as the away team")
    add_match.add_argument("--notes", default="")

    def handle_add(args: argparse.Namespace) -> None:
        match = get_service(args).add_match(
            parse_date(args.date),
            args.opponent,
            time=args.time,
            location=args.location,
            home_team=not args.away,
            notes=args.notes,
        )
        print("Match scheduled:")
        print(f"  {_format_match(match)}")

    add_match.set_defaults(func=handle_add)

    list_match = match_sub.add_parser("list", help="List matches")
    list_match.add_argument("--status", choices=("all",) + models.MATCH_STATUSES)
    list_match.add_argument("--search")

    def handle_list(args: argparse.Namespace) -> None:
        matches = get_service(args).list_matches(status=args.status, search=args.search)
        if not matches:
            print("No matches found.")
            return
        for match in matches:
            print(f"- {_format_match(match)}")

    list_match.set_defaults(func=handle_list)

    summary = match_sub.add_parser("summary", help="Season record and next match")

    def handle_summary(args: argparse.Namespace) -> None:
        report = get_service(args).match_summary()
        record = report["record"]
        print(f"W {record['wins']} / L {record['losses']} / D {record['draws']}")
        for status, count in report["counts"].items():
            print(f"  {status}: {count}")
        print(f"Next match: {report['next_match'] or '-'}")

    summary.set_defaults(func=handle_summary)

    update_match = match_sub.add_parser("update", help="Update a match")
    update_match.add_argument("match_id")
    update_match.add_argument("--date", help=DATE_HELP)
    update_match.add_argument("--opponent")
    update_match.add_argument("--time")
    update_match.add_argument("--location")
    update_match.add_argument("--status", choices=models.MATCH_STATUSES)
    update_match.add_argument("--notes")

    def handle_update(args: argparse.Namespace) -> None:
        match = get_service(args).update_match(
            args.match_id,
            match_date=parse_date(args.date),
            opponent=args.opponent,
            time=args.time,
            location=args.location,
            status=args.status,
            notes=args.notes,
        )
        print(f"Match updated: {_format_match(match)}")

    update_match.set_defaults(func=handle_update)

    score = match_sub.add_parser("score", help="Record the final score")
    score.add_argument("match_id")
    score.add_argument("home", type=int)
    score.add_argument("away", type=int)

    def handle_score(args: argparse.Namespace) -> None:
        match = get_service(args).record_score(args.match_id, args.home, args.away)
        print(f"Score recorded: {_format_match(match)}")

    score.set_defaults(func=handle_score)

    stats = match_sub.add_parser("stats", help="Record a player's box score")
    stats.add_argument("match_id")
    stats.add_argument("student_id")
    for name in models.PLAYER_STAT_FIELDS:
        stats.add_argument(f"--{name}", type=float)

    def handle_stats(args: argparse.Namespace) -> None:
        values = {name: getattr(args, name) for name in models.PLAYER_STAT_FIELDS}
        match = get_service(args).set_player_stats(args.match_id, args.student_id, **values)
        line = match.players[args.student_id]
        print("Player stats saved: " + ", ".join(f"{name} {value:g}" for name, value in sorted(line.items())))

    stats.set_defaults(func=handle_stats)

    remove_match = match_sub.add_parser("remove", help="Delete a match")
    remove_match.add_argument("match_id")

    def handle_remove(args: argparse.Namespace) -> None:
        get_service(args).remove_match(args.match_id)
        print("Match deleted.")

    remove_match.set_defaults(func=handle_remove)


def _add_range_options(parser: argparse.ArgumentParser, default: str) -> None:
    parser.add_argument("--range", dest="date_range", choices=RANGE_CHOICES, default=default)
    parser.add_argument("--start", dest="start_date", help=DATE_HELP)
    parser.add_argument("--end", dest="end_date", help=DATE_HELP)


def _range_values(args: argparse.Namespace) -> Dict[str, object]:
    return {
        "date_range": args.date_range,
        "start_date": parse_date(args.start_date),
        "end_date": parse_date(args.end_date),
    }


def _add_history_options(parser: argparse.ArgumentParser) -> None:
    _add_range_options(parser, "all")
    parser.add_argument("--type", dest="payment_type", choices=("all",) + models.PAYMENT_TYPES)
    parser.add_argument("--category", choices=("all",) + models.PAYMENT_CATEGORIES)
    parser.add_argument("--status", choices=("all",) + models.PAYMENT_STATUSES)
    parser.add_argument("--search")


def _history_values(args: argparse.Namespace) -> Dict[str, object]:
    values = _range_values(args)
    values.update(payment_type=args.payment_type, category=args.category, status=args.status, search=args.search)
    return values


def _configure_payment_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    payment_parser = subparsers.add_parser("payments", help="Payments")
    payment_sub = payment_parser.add_subparsers(dest="payments_command", required=True)

    add_payment = payment_sub.add_parser("add", help="Record a payment")
    add_payment.add_argument("amount", type=float)
    add_payment.add_argument("type", choices=models.PAYMENT_TYPES)
    add_payment.add_argument("category", choices=models.PAYMENT_CATEGORIES)
    add_payment.add_argument("--status", choices=models.PAYMENT_STATUSES, default="pending")
    add_payment.add_argument("--description", default="")
    add_payment.add_argument("--student", dest="student_id")
    add_payment.add_argument("--trainer", dest="trainer_id")
    add_payment.add_argument("--due", dest="due_date", help=DATE_HELP)

    def handle_add(args: argparse.Namespace) -> None:
        payment = get_service(args).add_payment(
            args.amount,
            args.type,
            args.category,
            status=args.status,
            description=args.description,
            student_id=args.student_id,
            trainer_id=args.trainer_id,
            due_date=parse_date(args.due_date),
        )
        print("Payment recorded:")
        print(f"  {services.format_payment(payment)}")

    add_payment.set_defaults(func=handle_add)

    overview = payment_sub.add_parser("overview", help="Totals, overdue and recent payments")

    def handle_overview(args: argparse.Namespace) -> None:
        report = get_service(args).payment_overview()
        stats = report["stats"]
        print(f"Income: {_money(stats['total_income'])} | Expenses: {_money(stats['total_expenses'])}")
        print(f"Pending payments: {stats['pending_payments']}")
        _print_payments(report["overdue"], "No overdue payments.")

    overview.set_defaults(func=handle_overview)

    history = payment_sub.add_parser("history", help="Filtered payment history")
    _add_history_options(history)

    def handle_history(args: argparse.Namespace) -> None:
        _print_payments(get_service(args).payment_history(**_history_values(args)), "No payments found.")

    history.set_defaults(func=handle_history)

    pending = payment_sub.add_parser("pending", help="Overdue and upcoming pending payments")

    def handle_pending(args: argparse.Namespace) -> None:
        overdue, upcoming = get_service(args).pending_payments()
        print("Overdue:")
        _print_payments(overdue, "  none")
        print("Upcoming:")
        _print_payments(upcoming, "  none")

    pending.set_defaults(func=handle_pending)

    export = payment_sub.add_parser("export", help="Export the filtered history as CSV")
    _add_history_options(export)
    export.add_argument("--output", help="Write to this file instead of stdout")

    def handle_export(args: argparse.Namespace) -> None:
        csv_text = get_service(args).export_payments_csv(**_history_values(args))
        if args.output:
            Path(args.output).write_text(csv_text, encoding="utf-8")
            print(f"Export written to {args.output}")
        else:
            print(csv_text)

    export.set_defaults(func=handle_export)

    paid = payment_sub.add_parser("paid", help="Mark a payment as completed")
    paid.add_argument("payment_id")

    def handle_paid(args: argparse.Namespace) -> None:
        payment = get_service(args).mark_paid(args.payment_id)
        print(f"Payment completed: {services.format_payment(payment)}")

    paid.set_defaults(func=handle_paid)

    update_payment = payment_sub.add_parser("update", help="Update a payment")
    update_payment.add_argument("payment_id")
    update_payment.add_argument("--amount", type=float)
    update_payment.add_argument("--type", dest="payment_type", choices=models.PAYMENT_TYPES)
    update_payment.add_argument("--category", choices=models.PAYMENT_CATEGORIES)
    update_payment.add_argument("--status", choices=models.PAYMENT_STATUSES)
    update_payment.add_argument("--description")
    update_payment.add_argument("--due", dest="due_date", help=DATE_HELP)

    def handle_update(args: argparse.Namespace) -> None:
        kwargs: Dict[str, object] = {
            "amount": args.amount,
            "payment_type": args.payment_type,
            "category": args.category,
            "status": args.status,
            "description": args.description,
        }
        if args.due_date is not None:
            kwargs["due_date"] = parse_date(args.due_date)
        payment = get_service(args).update_payment(args.payment_id, **kwargs)
        print(f"Payment updated: {services.format_payment(payment)}")

    update_payment.set_defaults(func=handle_update)

    remove_payment = payment_sub.add_parser("remove", help="Delete a payment")
    remove_payment.add_argument("payment_id")

    def handle_remove(args: argparse.Namespace) -> None:
        get_service(args).remove_payment(args.payment_id)
        print("Payment deleted.")

    remove_payment.set_defaults(func=handle_remove)


def _configure_finance_commands(subparsers: argparse._SubParsersAction, get_service) -> None:
    finance_parser = subparsers.add_parser("finance", help="Finance overview and reports")
    finance_sub = finance_parser.add_subparsers(dest="finance_command", required=True)

    overview = finance_sub.add_parser("overview", help="Month-over-month metrics")

    def handle_overview(args: argparse.Namespace) -> None:
        report = get_service(args).finance_overview()
        for metric in report["metrics"]:
            change = "no prior data" if metric["change"] is None else f"{metric['change']:+.1f}%"
            print(f"{metric['name']}: {_money(metric['value'])} | {change} {metric['period']} ({metric['trend']})")
        for bucket in report["chart"]:
            print(f"  {bucket['month']}: +{_money(bucket['income'])} / -{_money(bucket['expenses'])}")

    overview.set_defaults(func=handle_overview)

    expenses = finance_sub.add_parser("expenses", help="Expenses by category")
    _add_range_options(expenses, "thisMonth")
    expenses.add_argument("--category", choices=("all",) + models.PAYMENT_CATEGORIES)
    expenses.add_argument("--search")

    def handle_expenses(args: argparse.Namespace) -> None:
        report = get_service(args).expense_overview(category=args.category, search=args.search, **_range_values(args))
        for slice_ in report["categories"]:
            print(f"  {slice_['name']}: {_money(slice_['value'])} ({slice_['count']})")
        _print_payments(report["expenses"], "No expenses in this period.")
        print(f"Total: {_money(report['total'])}")

    expenses.set_defaults(func=handle_expenses)

    report = finance_sub.add_parser("report", help="Financial report")
    _add_range_options(report, "thisMonth")
    report.add_argument("--json", dest="json_output", help="Write the JSON report to this file")

    def handle_report(args: argparse.Namespace) -> None:
        service = get_service(args)
        if args.json_output:
            Path(args.json_output).write_text(service.financial_report_json(**_range_values(args)), encoding="utf-8")
            print(f"Report written to {args.json_output}")
            return
        result = service.financial_report(**_range_values(args))
        totals = result["totals"]
        print(f"Financial report ({result['date_range']})")
        print(f"Income: {_money(totals['income'])} | Expenses: {_money(totals['expenses'])} | Net: {_money(totals['net'])}")
        for category, amounts in sorted(result["category_breakdown"].items()):
            print(f"  {category}: +{_money(amounts['income'])} / -{_money(amounts['expenses'])}")
        for row in result["monthly_trend"]:
            print(f"  {row['month']}: net {_money(row['net'])}")

    report.set_defaults(func=handle_report)


def _configure_watch_command(subparsers: argparse._SubParsersAction, context: ClubContext, get_service) -> None:
    watch = subparsers.add_parser("watch", help="Follow payments or matches as they change")
    watch.add_argument("target", choices=("payments", "matches"))
    watch.add_argument("--interval", type=float, default=1.0, help="Seconds between checks of the data file")
    watch.add_argument("--count", type=int, help="Stop after this many checks")

    def render(view: LiveView) -> None:
        if view.error is not None:
            print(f"Error: {view.error}")
            return
        if not view.result:
            print("(empty)")
            return
        for item in view.result:
            if isinstance(item, models.MonthlyBucket):
                print(f"  {item.month}: +{_money(item.income)} / -{_money(item.expenses)} = {_money(item.profit)}")
            else:
                print(f"  {_format_match(item)}")

    def handle_watch(args: argparse.Namespace) -> None:
        service = get_service(args)
        if args.target == "payments":
            view = service.watch_payments(on_update=render)
        else:
            view = service.watch_matches(on_update=render)
        context.watch(view)
        checks = 0
        try:
            while args.count is None or checks < args.count:
                time.sleep(args.interval)
                context.store.reload()
                checks += 1
        except KeyboardInterrupt:
            print("\nStopped watching.")
        finally:
            context.release(view)

    watch.set_defaults(func=handle_watch)


def build_parser(context: ClubContext) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Basketball club management dashboard")
    parser.add_argument("--version", action="version", version=f"hoopclub {__version__}")
    parser.add_argument(
        "--owner",
        default=os.environ.get("HOOPCLUB_OWNER"),
        help="Owner id of the club to work on (defaults to $HOOPCLUB_OWNER)",
    )
    subparsers = parser.add_subparsers(dest="command")

    def get_service(args: argparse.Namespace) -> services.ClubService:
        if not args.owner:
            raise CommandError("Select a club with --owner (see 'users login').")
        return context.service_for(args.owner)

    _configure_user_commands(subparsers, context)
    _configure_club_commands(subparsers, get_service)
    _configure_branch_commands(subparsers, get_service)
    _configure_group_commands(subparsers, get_service)
    _configure_student_commands(subparsers, get_service)
    _configure_trainer_commands(subparsers, get_service)
    _configure_attendance_commands(subparsers, get_service)
    _configure_progress_commands(subparsers, get_service)
    _configure_match_commands(subparsers, get_service)
    _configure_payment_commands(subparsers, get_service)
    _configure_finance_commands(subparsers, get_service)
    _configure_watch_command(subparsers, context, get_service)

    return parser


def dispatch_command(parser: argparse.ArgumentParser, args: argparse.Namespace) -> bool:
    """Run the selected handler; returns ``False`` when it reported an error."""
    if getattr(args, "command", None) is None:
        parser.print_help()
        return True
    handler: Callable[[argparse.Namespace], None] = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return True
    try:
        handler(args)
    except (ClubError, CommandError, ValueError) as exc:
        print(f"Error: {exc}")
        return False
    return True


def run_interactive_shell(parser: argparse.ArgumentParser) -> None:
    print("hoopclub interactive mode.")
    print("Type commands as you would on the command line (e.g. 'branches list').")
    print("Use 'help' for the general help and 'exit' or 'quit' to leave.\n")
    while True:
        try:
            raw = input("hoopclub> ").strip()
        except EOFError:
            print()
            break
        except KeyboardInterrupt:
            print("\nInterrupted. Leaving interactive mode.")
            break
        if not raw:
            continue
        lowered = raw.lower()
        if lowered in {"exit", "quit"}:
            print("Bye!")
            break
        if lowered in {"help", "?"}:
            parser.print_help()
            continue
        try:
            args = parser.parse_args(shlex.split(raw))
        except SystemExit:
            # argparse already printed the error or help
            continue
        dispatch_command(parser, args)


def main(argv: Optional[List[str]] = None, *, context: Optional[ClubContext] = None) -> int:
    configure_logging(Config.LOG_LEVEL)
    owns_context = context is None
    if context is None:
        context = ClubContext.from_config(Config)
    parser = build_parser(context)

    actual_args = sys.argv[1:] if argv is None else argv
    try:
        if not actual_args:
            run_interactive_shell(parser)
            return 0
        args = parser.parse_args(actual_args)
        return 0 if dispatch_command(parser, args) else 1
    finally:
        if owns_context:
            context.close()


if __name__ == "__main__":
    sys.exit(main())
