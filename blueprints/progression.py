"""Quiz submission, activity, achievement, progress and leaderboard routes."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from helpers import current_user_id, get_coordinator, json_error
from models import InvalidQuery, InvalidSubmission, QuizNotFound, Trigger, UnknownUser
from progression import LEADERBOARD_DEFAULT_LIMIT, achievement_summary

bp = Blueprint("progression", __name__)


@bp.route("/api/quizzes/<quiz_id>/attempts", methods=["POST"])
@login_required
def api_submit_quiz(quiz_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return json_error("JSON body required", 400)
    try:
        outcome = get_coordinator().on_quiz_submitted(
            current_user_id(), quiz_id, data.get("answers"), data.get("timeTaken"),
        )
    except QuizNotFound:
        return json_error("Quiz not found", 404)
    except UnknownUser:
        return json_error("User not found", 404)
    except InvalidSubmission as e:
        return json_error(str(e), 400)
    return jsonify(outcome.to_dict()), 201


@bp.route("/api/activity", methods=["POST"])
@login_required
def api_record_activity():
    try:
        outcome = get_coordinator().on_user_activity(current_user_id())
    except UnknownUser:
        return json_error("User not found", 404)
    return jsonify(outcome.to_dict())


@bp.route("/api/achievements")
@login_required
def api_achievements():
    try:
        overview = get_coordinator().achievement_overview(current_user_id())
    except UnknownUser:
        return json_error("User not found", 404)
    return jsonify(overview)


@bp.route("/api/achievements/check", methods=["POST"])
@login_required
def api_check_achievements():
    data = request.get_json(silent=True) or {}
    triggers = None
    if data.get("triggers"):
        try:
            triggers = [Trigger(t) for t in data["triggers"]]
        except (TypeError, ValueError):
            return json_error("Unknown trigger", 400)
    try:
        awarded = get_coordinator().refresh_achievements(current_user_id(), triggers)
    except UnknownUser:
        return json_error("User not found", 404)
    return jsonify({
        "newly_unlocked_achievements": [achievement_summary(a) for a in awarded],
    })


@bp.route("/api/progress")
@login_required
def api_progress():
    try:
        summary = get_coordinator().progress_summary(current_user_id())
    except UnknownUser:
        return json_error("User not found", 404)
    return jsonify(summary)


@bp.route("/api/leaderboard")
@login_required
def api_leaderboard():
    limit = request.args.get("limit", type=int) or LEADERBOARD_DEFAULT_LIMIT
    try:
        entries = get_coordinator().leaderboard(limit)
    except InvalidQuery as e:
        return json_error(str(e), 400)
    return jsonify({"leaderboard": entries, "results": len(entries)})
