from __future__ import annotations

import io
import logging
from datetime import date
from functools import wraps
from typing import Any, Optional

from flask import Flask, jsonify, request, send_file, session

from ..common.datetime_utils import now_local, parse_iso_date, parse_iso_datetime
from ..common.validators import require_non_empty, require_present
from ..container import Container
from ..core.exceptions import (
    ConflictError,
    DomainError,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from ..history.model import snapshot
from ..identity.qr import render_qr_png

logger = logging.getLogger(__name__)


def _status_for(exc: DomainError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, StorageUnavailable):
        return 503
    return 500


def _error(code: str, message: str, status: int):
    return jsonify({"success": False, "error": code, "message": message}), status


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _datetime(data: dict, field: str) -> Optional[Any]:
    raw = data.get(field)
    if raw is None or raw == "":
        return None
    try:
        return parse_iso_datetime(str(raw))
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp") from exc


def _day(raw: Optional[str]) -> date:
    if not raw:
        return now_local().date()
    try:
        return parse_iso_date(raw)
    except ValueError as exc:
        raise ValidationError("day must be YYYY-MM-DD") from exc


def _key_args(data: dict) -> tuple[str, str]:
    return (
        require_non_empty(data.get("student_id"), "student_id"),
        require_non_empty(data.get("event_id"), "event_id"),
    )


def register(app: Flask, container: Container) -> None:
    ledger = container.ledger_service

    def actor_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if "user_id" not in session:
                return _error("unauthenticated", "Please sign in to continue", 401)
            return view(*args, **kwargs)

        return wrapper

    def json_api(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except DomainError as e:
                status = _status_for(e)
                if status >= 500:
                    logger.error("%s failed: %s", request.path, e)
                return _error(e.code, str(e), status)
            except Exception:
                logger.exception("Unexpected error on %s", request.path)
                return _error("internal-error", "Internal server error", 500)

        return wrapper

    def actor() -> str:
        return str(session["user_id"])

    @app.route("/api/scan", methods=["POST"], endpoint="api_scan")
    @actor_required
    @json_api
    def api_scan():
        data = _body()
        token = require_non_empty(data.get("token"), "token")
        scan_time = _datetime(data, "scan_time") or now_local()
        outcome = ledger.scan(token, scan_time, activity_id=data.get("activity_id") or None, actor=actor())
        return jsonify(
            {
                "success": outcome.accepted,
                "outcome": outcome.kind.value,
                "reason": outcome.reason,
                "message": outcome.message,
                "session": snapshot(outcome.session),
            }
        ), 200

    @app.route("/api/manual-entries", methods=["POST"], endpoint="api_manual_entry_create")
    @actor_required
    @json_api
    def api_manual_entry_create():
        data = _body()
        student_id, event_id = _key_args(data)
        entry = ledger.submit_manual_entry(
            student_id,
            event_id,
            data.get("activity_id"),
            _datetime(data, "start_time"),
            _datetime(data, "end_time"),
            data.get("reason"),
            actor(),
        )
        return jsonify({"success": True, "entry": snapshot(entry)}), 201

    @app.route("/api/manual-entries/<entry_id>", methods=["PUT"], endpoint="api_manual_entry_edit")
    @actor_required
    @json_api
    def api_manual_entry_edit(entry_id: str):
        data = _body()
        student_id, event_id = _key_args(data)
        entry = ledger.submit_manual_entry(
            student_id,
            event_id,
            data.get("activity_id"),
            _datetime(data, "start_time"),
            _datetime(data, "end_time"),
            data.get("reason"),
            actor(),
            existing=entry_id,
        )
        return jsonify({"success": True, "entry": snapshot(entry)}), 200

    @app.route("/api/overrides", methods=["PUT"], endpoint="api_override_set")
    @actor_required
    @json_api
    def api_override_set():
        data = _body()
        student_id, event_id = _key_args(data)
        hours = require_present(data.get("hours"), "hours")
        override = ledger.set_override(student_id, event_id, hours, actor(), data.get("reason"))
        return jsonify({"success": True, "override": snapshot(override)}), 200

    @app.route("/api/overrides", methods=["DELETE"], endpoint="api_override_clear")
    @actor_required
    @json_api
    def api_override_clear():
        data = _body()
        student_id, event_id = _key_args(data)
        override = ledger.clear_override(student_id, event_id, actor(), data.get("reason"))
        return jsonify({"success": True, "override": snapshot(override)}), 200

    @app.route("/api/hours", methods=["GET"], endpoint="api_hours")
    @actor_required
    @json_api
    def api_hours():
        student_id, event_id = _key_args(request.args)
        summary = ledger.get_summary(student_id, event_id)
        return jsonify({"success": True, "summary": snapshot(summary)}), 200

    @app.route("/api/history", methods=["GET"], endpoint="api_history")
    @actor_required
    @json_api
    def api_history():
        student_id, event_id = _key_args(request.args)
        limit = request.args.get("limit")
        try:
            limit_value = int(limit) if limit else None
        except ValueError as exc:
            raise ValidationError("limit must be an integer") from exc
        page = ledger.get_history(student_id, event_id, request.args.get("cursor") or None, limit_value)
        return jsonify(
            {
                "success": True,
                "records": [snapshot(r) for r in page.records],
                "next_cursor": page.next_cursor,
            }
        ), 200

    @app.route("/api/sessions/close", methods=["POST"], endpoint="api_session_close")
    @actor_required
    @json_api
    def api_session_close():
        data = _body()
        student_id, event_id = _key_args(data)
        check_out_time = require_present(_datetime(data, "check_out_time"), "check_out_time")
        closed = ledger.close_session(
            student_id, event_id, check_out_time, actor=actor(), reason=data.get("reason")
        )
        return jsonify({"success": True, "session": snapshot(closed)}), 200

    @app.route("/api/events/<event_id>/force-close", methods=["POST"], endpoint="api_force_close")
    @actor_required
    @json_api
    def api_force_close(event_id: str):
        data = _body()
        raw_times = data.get("checkout_times") or {}
        if not isinstance(raw_times, dict):
            raise ValidationError("checkout_times must be an object keyed by activity id")
        checkout_times = {activity_id: _datetime(raw_times, activity_id) for activity_id in raw_times}
        closed = ledger.force_close_all(
            event_id,
            actor=actor(),
            reason=data.get("reason"),
            checkout_times={k: v for k, v in checkout_times.items() if v is not None},
        )
        return jsonify(
            {
                "success": True,
                "closed": len(closed),
                "sessions": [snapshot(s) for s in closed],
            }
        ), 200

    @app.route("/api/events/<event_id>/checked-in", methods=["GET"], endpoint="api_checked_in")
    @actor_required
    @json_api
    def api_checked_in(event_id: str):
        sessions = ledger.list_checked_in(event_id)
        return jsonify({"success": True, "count": len(sessions), "sessions": [snapshot(s) for s in sessions]}), 200

    @app.route("/api/events/<event_id>/daily-summary", methods=["GET"], endpoint="api_daily_summary")
    @actor_required
    @json_api
    def api_daily_summary(event_id: str):
        summary = ledger.daily_summary(event_id, _day(request.args.get("day")))
        return jsonify({"success": True, "summary": snapshot(summary)}), 200

    @app.route(
        "/api/events/<event_id>/activities/<activity_id>/default-window",
        methods=["GET"],
        endpoint="api_default_window",
    )
    @actor_required
    @json_api
    def api_default_window(event_id: str, activity_id: str):
        start, end = ledger.default_window(event_id, activity_id, _day(request.args.get("day")))
        return jsonify({"success": True, "start_time": start.isoformat(), "end_time": end.isoformat()}), 200

    @app.route(
        "/api/events/<event_id>/activities/<activity_id>/in-use",
        methods=["GET"],
        endpoint="api_activity_in_use",
    )
    @actor_required
    @json_api
    def api_activity_in_use(event_id: str, activity_id: str):
        return jsonify({"success": True, "in_use": ledger.activity_in_use(event_id, activity_id)}), 200

    @app.route("/api/entries/<kind>/<entry_id>/void", methods=["POST"], endpoint="api_entry_void")
    @actor_required
    @json_api
    def api_entry_void(kind: str, entry_id: str):
        entry = ledger.void_entry(kind, entry_id, actor(), _body().get("reason"))
        return jsonify({"success": True, "entry": snapshot(entry)}), 200

    @app.route("/api/entries/<kind>/<entry_id>/restore", methods=["POST"], endpoint="api_entry_restore")
    @actor_required
    @json_api
    def api_entry_restore(kind: str, entry_id: str):
        entry = ledger.restore_entry(kind, entry_id, actor(), _body().get("reason") or None)
        return jsonify({"success": True, "entry": snapshot(entry)}), 200

    @app.route("/api/qr/<student_id>/<event_id>.png", methods=["GET"], endpoint="api_qr")
    @actor_required
    @json_api
    def api_qr(student_id: str, event_id: str):
        png = render_qr_png(student_id, event_id)
        return send_file(
            io.BytesIO(png),
            mimetype="image/png",
            as_attachment=False,
            download_name=f"qr_{student_id}_{event_id}.png",
        )
