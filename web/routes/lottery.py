"""JSON API for running lotteries and reading their results."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from core.constants import GradeOrder
from core.exceptions import AuthorizationError, ValidationError
from database.admin_queries import LotteryReportDatabase
from services import get_cache, run_coroutine_sync
from services.config_service import LotteryConfigService
from services.lottery_service import LotteryJobManager, LotteryPolicy


lottery_bp = Blueprint("lottery", __name__, url_prefix="/api/lottery")


def _manager() -> LotteryJobManager:
    return current_app.config["LOTTERY_MANAGER"]


def _config_service() -> LotteryConfigService:
    return current_app.config["LOTTERY_CONFIG_SERVICE"]


def _reports() -> LotteryReportDatabase:
    return LotteryReportDatabase(current_app.config["DATABASE_PATH"])


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _int_field(body: Dict[str, Any], name: str, required: bool = True) -> Optional[int]:
    value = body.get(name)
    if value is None:
        if required:
            raise ValidationError(f"'{name}' is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{name}' must be an integer")
    return value


def _grade_order(body: Dict[str, Any]) -> Optional[GradeOrder]:
    value = body.get("gradeOrder")
    if value is None:
        return None
    try:
        return GradeOrder(str(value).upper())
    except ValueError as exc:
        options = ", ".join(order.value for order in GradeOrder)
        raise ValidationError(f"'gradeOrder' must be one of {options}") from exc


def _check_school(event_id: int, reports: LotteryReportDatabase) -> None:
    """Read access: any admin of the event's school."""
    event = reports.get_event(event_id)
    if event["school_id"] != current_user.school_id:
        raise AuthorizationError("Event belongs to another school")


def _check_job_school(job_id: int, reports: LotteryReportDatabase) -> None:
    _check_school(reports.get_job(job_id)["event_id"], reports)


def _client_ip() -> Optional[str]:
    return request.headers.get("X-Forwarded-For", request.remote_addr)


@lottery_bp.route("/events/<int:event_id>/start", methods=["POST"])
@login_required
def start_lottery(event_id: int):
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    policy = LotteryPolicy(grade_order=_grade_order(body), seed=_int_field(body, "seed", required=False))
    job_id = run_coroutine_sync(
        _manager().start(current_user.admin_id, event_id, policy, ip_address=_client_ip())
    )
    return jsonify({"jobId": job_id}), 202


@lottery_bp.route("/status/<int:job_id>")
@login_required
def lottery_status(job_id: int):
    status = run_coroutine_sync(_manager().status(job_id))
    _check_school(status.event_id, _reports())
    return jsonify(status.to_dict())


@lottery_bp.route("/events/<int:event_id>/running")
@login_required
def running_job(event_id: int):
    _check_school(event_id, _reports())
    status = run_coroutine_sync(_manager().running_job(event_id))
    return jsonify({"job": status.to_dict() if status else None})


@lottery_bp.route("/events/<int:event_id>/jobs")
@login_required
def job_history(event_id: int):
    reports = _reports()
    _check_school(event_id, reports)
    limit = request.args.get("limit", 20, type=int)
    jobs = [dict(row) for row in reports.list_jobs(event_id, limit=limit)]
    return jsonify({"jobs": jobs})


@lottery_bp.route("/events/<int:event_id>/latest")
@login_required
def latest_job(event_id: int):
    reports = _reports()
    _check_school(event_id, reports)
    job = reports.latest_completed_job(event_id)
    return jsonify({"job": dict(job) if job else None})


@lottery_bp.route("/manual-assignments", methods=["POST"])
@login_required
def add_manual_assignment():
    body = _json_body()
    run_coroutine_sync(_config_service().add_manual_assignment(
        current_user.admin_id,
        _int_field(body, "studentId"),
        _int_field(body, "positionId"),
        ip_address=_client_ip(),
    ))
    return jsonify({"success": True}), 201


@lottery_bp.route("/manual-assignments/<int:student_id>", methods=["DELETE"])
@login_required
def remove_manual_assignment(student_id: int):
    run_coroutine_sync(_config_service().remove_manual_assignment(
        current_user.admin_id, student_id, ip_address=_client_ip()
    ))
    return jsonify({"success": True})


@lottery_bp.route("/prefill", methods=["POST"])
@login_required
def set_prefill_quota():
    body = _json_body()
    run_coroutine_sync(_config_service().set_prefill_quota(
        current_user.admin_id,
        position_id=_int_field(body, "positionId"),
        company_id=_int_field(body, "companyId"),
        slots=_int_field(body, "slots"),
        percentage=_int_field(body, "percentage"),
        ip_address=_client_ip(),
    ))
    return jsonify({"success": True}), 201


@lottery_bp.route("/prefill/<int:company_id>", methods=["DELETE"])
@login_required
def remove_prefill_quota(company_id: int):
    removed = run_coroutine_sync(_config_service().remove_prefill_quota(
        current_user.admin_id, company_id, ip_address=_client_ip()
    ))
    return jsonify({"success": True, "removed": removed})


@lottery_bp.route("/jobs/<int:job_id>/positions")
@login_required
def assignments_by_position(job_id: int):
    reports = _reports()
    _check_job_school(job_id, reports)
    positions = get_cache().get_or_set("positions", job_id, lambda: reports.assignments_by_position(job_id))
    return jsonify({"jobId": job_id, "positions": positions})


@lottery_bp.route("/jobs/<int:job_id>/unassigned")
@login_required
def unassigned_students(job_id: int):
    reports = _reports()
    _check_job_school(job_id, reports)
    students = get_cache().get_or_set("unassigned", job_id, lambda: reports.unassigned_students(job_id))
    return jsonify({"jobId": job_id, "students": students})


@lottery_bp.route("/jobs/<int:job_id>/statistics")
@login_required
def rank_statistics(job_id: int):
    reports = _reports()
    _check_job_school(job_id, reports)
    stats = get_cache().get_or_set("statistics", job_id, lambda: reports.rank_distribution(job_id))
    return jsonify(stats)


@lottery_bp.route("/jobs/<int:job_id>/companies")
@login_required
def company_statistics(job_id: int):
    reports = _reports()
    _check_job_school(job_id, reports)
    tallies = get_cache().get_or_set("companies", job_id, lambda: reports.company_rank_tallies(job_id))
    return jsonify({"jobId": job_id, "companies": tallies})


@lottery_bp.route("/results/<int:result_id>", methods=["DELETE"])
@login_required
def release_assignment(result_id: int):
    run_coroutine_sync(_manager().release(result_id, current_user.admin_id, ip_address=_client_ip()))
    return jsonify({"success": True})


@lottery_bp.route("/jobs/<int:job_id>/claims", methods=["POST"])
@login_required
def claim_position(job_id: int):
    body = _json_body()
    result_id = run_coroutine_sync(_manager().claim(
        current_user.admin_id,
        job_id,
        _int_field(body, "studentId"),
        _int_field(body, "positionId"),
        ip_address=_client_ip(),
    ))
    return jsonify({"resultId": result_id}), 201
