"""Admin financial reports."""

from __future__ import annotations

from datetime import datetime, time

from flask import Blueprint, g, jsonify, request

from storefront.utils.pagination import normalize_paging
from storefront.utils.validators import parse_date

from .common import _components, admin_required


reports_bp = Blueprint("storefront_reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/financial")
@admin_required
def financial_report():
    args = request.args
    report = _components()["report_service"].get_financial_report(
        actor_id=g.identity.user_id,
        period=args.get("period", "month"),
        start=parse_date(args.get("start_date"), "start_date"),
        end=parse_date(args.get("end_date"), "end_date"),
        group_by=args.get("group_by", "day"),
    )
    return jsonify(report)


@reports_bp.get("/activity")
@admin_required
def activity_log():
    args = request.args
    _, limit = normalize_paging(1, args.get("limit", 50), max_page_size=200)
    entries = _components()["audit"].list_entries(
        entity=args.get("entity"),
        entity_id=args.get("entity_id"),
        limit=limit,
    )
    return jsonify({"activities": entries})


@reports_bp.get("/activity/stats")
@admin_required
def activity_stats():
    args = request.args
    date_from = parse_date(args.get("date_from"), "date_from")
    date_to = parse_date(args.get("date_to"), "date_to")
    stats = _components()["audit"].stats(
        date_from=datetime.combine(date_from, time.min) if date_from else None,
        date_to=datetime.combine(date_to, time.max) if date_to else None,
    )
    return jsonify(stats)
