"""JSON web API for the hoopclub dashboard."""
from __future__ import annotations

import argparse
import atexit
import time
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from flask import Flask, Response, g, jsonify, request, send_from_directory, session
from werkzeug.utils import secure_filename

from .aggregation import attendance_summary
from .config import Config, configure_logging
from .context import ClubContext, Settings
from .errors import (
    AuthenticationError,
    ExternalCollaboratorError,
    NotFoundError,
    ValidationError,
)
from .services import ClubService
from .translations import message, success


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


def _pick(body: Dict[str, Any], names: Iterable[str], renames: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    renames = renames or {}
    return {renames.get(name, name): body[name] for name in names if name in body}


def create_app(
    config_object: Any = Config,
    *,
    context: Optional[ClubContext] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app.config["LOG_LEVEL"])
    ctx = context or ClubContext.from_config(config_object, clock=clock)
    app.extensions["hoopclub"] = ctx

    # Request plumbing -------------------------------------------------
    @app.before_request
    def start_request_timer():
        g.request_start_time = time.perf_counter()

    @app.after_request
    def log_request_time(response):
        start_time = getattr(g, "request_start_time", None)
        if start_time is not None:
            duration_ms = (time.perf_counter() - start_time) * 1000
            app.logger.info(
                "Request %s %s took %.2fms, status %d",
                request.method,
                request.path,
                duration_ms,
                response.status_code,
            )
        return response

    def _error(kind: str, exc: Exception, status: int):
        payload: Dict[str, Any] = {"error": str(exc), "kind": kind}
        for attribute in ("field", "key"):
            value = getattr(exc, attribute, None)
            if value is not None:
                payload[attribute] = value
        return jsonify(payload), status

    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError):
        app.logger.warning("Validation failed on %s: %s", request.path, exc)
        return _error("validation", exc, 400)

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError):
        return _error("not_found", exc, 404)

    @app.errorhandler(AuthenticationError)
    def handle_authentication(exc: AuthenticationError):
        return _error("authentication", exc, 401)

    @app.errorhandler(ExternalCollaboratorError)
    def handle_external(exc: ExternalCollaboratorError):
        app.logger.error("External collaborator failed on %s: %s", request.path, exc)
        return _error("external", exc, 502)

    @app.errorhandler(ValueError)
    def handle_value_error(exc: ValueError):
        return _error("invalid", exc, 400)

    @app.errorhandler(404)
    def handle_missing_route(exc):
        return jsonify({"error": "Not found", "kind": "not_found"}), 404

    def login_required(view):
        @wraps(view)
        def decorated_function(*args, **kwargs):
            uid = session.get("uid")
            if not uid:
                return jsonify({"error": "Please sign in first", "kind": "authentication"}), 401
            g.service = ctx.service_for(uid)
            return view(*args, **kwargs)

        return decorated_function

    def get_service() -> ClubService:
        return g.service

    def current_settings() -> Settings:
        stored = session.get("settings") or {}
        return Settings(
            theme=stored.get("theme", ctx.settings.theme),
            language=stored.get("language", ctx.settings.language),
        )

    def _body() -> Dict[str, Any]:
        body = request.get_json(silent=True)
        if body is None:
            return {}
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def _done(entity: str, action: str, data: Any = None, status: int = 200):
        text = success(current_settings().language, entity, action)
        return jsonify({"message": text, "data": _serialize(data)}), status

    def _range_filters() -> Dict[str, Any]:
        return {
            "date_range": request.args.get("range", "all"),
            "start_date": request.args.get("start_date"),
            "end_date": request.args.get("end_date"),
        }

    # Session ----------------------------------------------------------
    @app.post("/api/auth/register")
    def register():
        body = _body()
        uid = ctx.identity.register(body.get("email", ""), body.get("password", ""))
        return jsonify({"uid": uid}), 201

    @app.post("/api/auth/login")
    def login():
        body = _body()
        signed_in = ctx.identity.authenticate(body.get("email", ""), body.get("password", ""))
        session["uid"] = signed_in.uid
        service = ctx.service_for(signed_in.uid)
        return jsonify(
            {
                "message": message(current_settings().language, "login"),
                "session": signed_in.to_dict(),
                "has_club": service.has_club(),
            }
        )

    @app.post("/api/auth/logout")
    def logout():
        session.pop("uid", None)
        return jsonify({"message": message(current_settings().language, "logout")})

    @app.get("/api/auth/session")
    @login_required
    def current_session():
        restored = ctx.identity.lookup(session["uid"])
        return jsonify({"session": restored.to_dict(), "has_club": get_service().has_club()})

    @app.get("/api/settings")
    def get_settings():
        return jsonify(current_settings().to_dict())

    @app.put("/api/settings")
    def save_settings():
        body = _body()
        settings = current_settings()
        candidate = Settings(
            theme=body.get("theme", settings.theme),
            language=body.get("language", settings.language),
        )
        candidate.validate()
        session["settings"] = candidate.to_dict()
        return jsonify({"message": message(candidate.language, "settings"), "data": candidate.to_dict()})

    # Club -------------------------------------------------------------
    @app.get("/api/club")
    @login_required
    def get_club():
        return jsonify({"club": _serialize(get_service().get_club())})

    @app.post("/api/club")
    @login_required
    def setup_club():
        file = request.files.get("logo")
        if file is None or not file.filename:
            raise ValidationError("Please upload a club logo", field="logo")
        filename = secure_filename(file.filename)
        extension = Path(filename).suffix.lower()
        if extension not in app.config["ALLOWED_IMAGE_EXTENSIONS"]:
            raise ValidationError(f"Unsupported image format: {extension or filename}", field="logo")
        club = get_service().setup_club(request.form.get("club_name", ""), file.read(), filename)
        return jsonify({"message": message(current_settings().language, "setup"), "data": club.to_dict()}), 201

    def serve_upload(filename: str):
        return send_from_directory(Path(app.config["UPLOAD_FOLDER"]).resolve(), filename)

    app.add_url_rule(f"{app.config['UPLOAD_URL'].rstrip('/')}/<path:filename>", "uploads", serve_upload)

    @app.get("/api/dashboard")
    @login_required
    def dashboard():
        return jsonify(get_service().dashboard())

    # Branches and groups ---------------------------------------------
    @app.get("/api/branches")
    @login_required
    def list_branches():
        return jsonify(_serialize(get_service().list_branches()))

    @app.post("/api/branches")
    @login_required
    def add_branch():
        body = _body()
        branch = get_service().add_branch(body.get("name", ""), body.get("address", ""))
        return _done("branch", "add", branch, 201)

    @app.put("/api/branches/<branch_id>")
    @login_required
    def update_branch(branch_id: str):
        branch = get_service().update_branch(branch_id, **_pick(_body(), ("name", "address")))
        return _done("branch", "update", branch)

    @app.delete("/api/branches/<branch_id>")
    @login_required
    def delete_branch(branch_id: str):
        get_service().remove_branch(branch_id)
        return _done("branch", "delete")

    @app.get("/api/branches/<branch_id>/groups")
    @login_required
    def list_groups(branch_id: str):
        rows = []
        for group, stats in get_service().group_overview(branch_id):
            row = group.to_dict()
            row.update(stats)
            rows.append(row)
        return jsonify(rows)

    @app.post("/api/branches/<branch_id>/groups")
    @login_required
    def add_group(branch_id: str):
        body = _body()
        group = get_service().add_group(
            branch_id,
            body.get("name", ""),
            body.get("capacity"),
            **_pick(body, ("description", "age_group", "schedule")),
        )
        return _done("group", "add", group, 201)

    @app.put("/api/branches/<branch_id>/groups/<group_id>")
    @login_required
    def update_group(branch_id: str, group_id: str):
        fields = _pick(_body(), ("name", "capacity", "description", "age_group", "schedule"))
        group = get_service().update_group(branch_id, group_id, **fields)
        return _done("group", "update", group)

    @app.delete("/api/branches/<branch_id>/groups/<group_id>")
    @login_required
    def delete_group(branch_id: str, group_id: str):
        get_service().remove_group(branch_id, group_id)
        return _done("group", "delete")

    # Students and trainers -------------------------------------------
    STUDENT_FIELDS = ("first_name", "last_name", "date_of_birth", "parent_name", "parent_phone", "email")

    @app.get("/api/groups/<group_id>/students")
    @login_required
    def list_students(group_id: str):
        return jsonify(_serialize(get_service().list_students(group_id)))

    @app.post("/api/groups/<group_id>/students")
    @login_required
    def add_student(group_id: str):
        fields = {"first_name": "", "last_name": "", **_pick(_body(), STUDENT_FIELDS)}
        student = get_service().add_student(group_id, **fields)
        return _done("student", "add", student, 201)

    @app.put("/api/groups/<group_id>/students/<student_id>")
    @login_required
    def update_student(group_id: str, student_id: str):
        student = get_service().update_student(group_id, student_id, **_pick(_body(), STUDENT_FIELDS))
        return _done("student", "update", student)

    @app.delete("/api/groups/<group_id>/students/<student_id>")
    @login_required
    def delete_student(group_id: str, student_id: str):
        get_service().remove_student(group_id, student_id)
        return _done("student", "delete")

    TRAINER_FIELDS = ("first_name", "last_name", "email", "phone", "specialization", "groups")

    @app.get("/api/trainers")
    @login_required
    def list_trainers():
        group_id = request.args.get("group")
        service = get_service()
        trainers = service.trainers_for_group(group_id) if group_id else service.list_trainers()
        return jsonify(_serialize(trainers))

    @app.post("/api/trainers")
    @login_required
    def add_trainer():
        fields = {"first_name": "", "last_name": "", **_pick(_body(), TRAINER_FIELDS)}
        trainer = get_service().add_trainer(**fields)
        return _done("trainer", "add", trainer, 201)

    @app.put("/api/trainers/<trainer_id>")
    @login_required
    def update_trainer(trainer_id: str):
        trainer = get_service().update_trainer(trainer_id, **_pick(_body(), TRAINER_FIELDS))
        return _done("trainer", "update", trainer)

    @app.delete("/api/trainers/<trainer_id>")
    @login_required
    def delete_trainer(trainer_id: str):
        get_service().remove_trainer(trainer_id)
        return _done("trainer", "delete")

    # Attendance and progress -----------------------------------------
    @app.put("/api/groups/<group_id>/attendance/<day>/<time_slot>")
    @login_required
    def save_attendance(group_id: str, day: str, time_slot: str):
        marks = _body().get("marks") or {}
        if not isinstance(marks, dict):
            raise ValidationError("marks must map student ids to booleans", field="marks")
        entries = get_service().record_attendance(group_id, day, time_slot, marks)
        return _done("attendance", "save", entries)

    @app.get("/api/groups/<group_id>/attendance/<day>/<time_slot>")
    @login_required
    def get_attendance(group_id: str, day: str, time_slot: str):
        entries = get_service().get_attendance(group_id, day, time_slot)
        return jsonify({"records": _serialize(entries), "summary": attendance_summary(entries)})

    @app.get("/api/groups/<group_id>/attendance")
    @login_required
    def attendance_records(group_id: str):
        sessions = get_service().attendance_records(
            group_id,
            request.args.get("start"),
            request.args.get("end"),
            sort_key=request.args.get("sort", "date"),
            direction=request.args.get("direction", "desc"),
        )
        return jsonify(_serialize(sessions))

    PROGRESS_FIELDS = ("date", "height", "weight", "vertical_jump", "speed_test", "academic_score", "notes")

    @app.get("/api/students/<student_id>/progress")
    @login_required
    def list_progress(student_id: str):
        return jsonify(_serialize(get_service().list_progress(student_id)))

    @app.get("/api/students/<student_id>/progress/trend")
    @login_required
    def progress_trend(student_id: str):
        return jsonify(get_service().progress_trend(student_id))

    @app.post("/api/students/<student_id>/progress")
    @login_required
    def add_progress(student_id: str):
        record = get_service().add_progress(student_id, **_pick(_body(), PROGRESS_FIELDS))
        return _done("progress", "add", record, 201)

    @app.put("/api/students/<student_id>/progress/<record_id>")
    @login_required
    def update_progress(student_id: str, record_id: str):
        record = get_service().update_progress(student_id, record_id, **_pick(_body(), PROGRESS_FIELDS))
        return _done("progress", "update", record)

    # Matches ----------------------------------------------------------
    MATCH_FIELDS = ("date", "opponent", "time", "location", "home_team", "status", "notes")
    MATCH_RENAMES = {"date": "match_date"}

    @app.get("/api/matches")
    @login_required
    def list_matches():
        service = get_service()
        matches = service.list_matches(status=request.args.get("status"), search=request.args.get("search"))
        return jsonify({"matches": _serialize(matches), "summary": service.match_summary()})

    @app.post("/api/matches")
    @login_required
    def add_match():
        fields = {"match_date": None, "opponent": "", **_pick(_body(), MATCH_FIELDS, MATCH_RENAMES)}
        match = get_service().add_match(**fields)
        return _done("match", "add", match, 201)

    @app.put("/api/matches/<match_id>")
    @login_required
    def update_match(match_id: str):
        match = get_service().update_match(match_id, **_pick(_body(), MATCH_FIELDS, MATCH_RENAMES))
        return _done("match", "update", match)

    @app.put("/api/matches/<match_id>/score")
    @login_required
    def record_score(match_id: str):
        body = _body()
        match = get_service().record_score(
            match_id, body.get("home"), body.get("away"), status=body.get("status", "completed")
        )
        return _done("match", "update", match)

    @app.put("/api/matches/<match_id>/players/<student_id>")
    @login_required
    def set_player_stats(match_id: str, student_id: str):
        match = get_service().set_player_stats(
            match_id, student_id, **_pick(_body(), ("minutes", "points", "assists", "rebounds"))
        )
        return _done("match", "update", match)

    @app.delete("/api/matches/<match_id>")
    @login_required
    def delete_match(match_id: str):
        get_service().remove_match(match_id)
        return _done("match", "delete")

    # Payments ---------------------------------------------------------
    PAYMENT_FIELDS = ("amount", "type", "category", "status", "description", "student_id", "trainer_id", "due_date")
    PAYMENT_RENAMES = {"type": "payment_type"}

    def _history_filters() -> Dict[str, Any]:
        filters = _range_filters()
        filters.update(
            payment_type=request.args.get("type"),
            category=request.args.get("category"),
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
        return filters

    @app.get("/api/payments")
    @login_required
    def payment_overview():
        return jsonify(_serialize(get_service().payment_overview()))

    @app.get("/api/payments/history")
    @login_required
    def payment_history():
        return jsonify(_serialize(get_service().payment_history(**_history_filters())))

    @app.get("/api/payments/pending")
    @login_required
    def pending_payments():
        overdue, upcoming = get_service().pending_payments()
        return jsonify({"overdue": _serialize(overdue), "upcoming": _serialize(upcoming)})

    @app.get("/api/payments/export")
    @login_required
    def export_payments():
        service = get_service()
        csv_text = service.export_payments_csv(**_history_filters())
        filename = f"payments-{service.today().isoformat()}.csv"
        return Response(
            csv_text,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    @app.post("/api/payments")
    @login_required
    def add_payment():
        body = _body()
        fields = _pick(body, PAYMENT_FIELDS, PAYMENT_RENAMES)
        payment = get_service().add_payment(
            fields.pop("amount", None), fields.pop("payment_type", ""), fields.pop("category", ""), **fields
        )
        return _done("payment", "add", payment, 201)

    @app.put("/api/payments/<payment_id>")
    @login_required
    def update_payment(payment_id: str):
        payment = get_service().update_payment(payment_id, **_pick(_body(), PAYMENT_FIELDS, PAYMENT_RENAMES))
        return _done("payment", "update", payment)

    @app.post("/api/payments/<payment_id>/paid")
    @login_required
    def mark_paid(payment_id: str):
        return _done("payment", "update", get_service().mark_paid(payment_id))

    @app.delete("/api/payments/<payment_id>")
    @login_required
    def delete_payment(payment_id: str):
        get_service().remove_payment(payment_id)
        return _done("payment", "delete")

    # Finance ----------------------------------------------------------
    @app.get("/api/finance/overview")
    @login_required
    def finance_overview():
        return jsonify(get_service().finance_overview())

    @app.get("/api/finance/expenses")
    @login_required
    def expense_overview():
        filters = _range_filters()
        filters["date_range"] = request.args.get("range", "thisMonth")
        overview = get_service().expense_overview(
            category=request.args.get("category"), search=request.args.get("search"), **filters
        )
        return jsonify(_serialize(overview))

    @app.get("/api/finance/report")
    @login_required
    def financial_report():
        filters = _range_filters()
        filters["date_range"] = request.args.get("range", "thisMonth")
        return jsonify(get_service().financial_report(**filters))

    @app.get("/api/finance/report/download")
    @login_required
    def download_report():
        filters = _range_filters()
        filters["date_range"] = request.args.get("range", "thisMonth")
        service = get_service()
        document = service.financial_report_json(**filters)
        filename = f"financial-report-{service.today().isoformat()}.json"
        return Response(
            document,
            mimetype="application/json",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    return app


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(description="Start the hoopclub web API")
    parser.add_argument("--host", default=Config.HOST, help="Host to bind")
    parser.add_argument("--port", type=int, default=Config.PORT, help="Server port")
    parser.add_argument("--debug", action="store_true", default=Config.DEBUG, help="Enable debug mode")
    args = parser.parse_args(argv)
    app = create_app()
    atexit.register(app.extensions["hoopclub"].close)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
