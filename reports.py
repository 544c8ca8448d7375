"""
Child progress reports (JSON and PDF).
"""
import math
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List

from bson.objectid import ObjectId
from pymongo.database import Database
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from assignments import effective_status, is_overdue
from database import ACTIVITIES, ASSIGNMENTS


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def activity_names(db: Database, activity_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    oids = [ObjectId(a) for a in set(activity_ids) if ObjectId.is_valid(a)]
    if not oids:
        return {}
    return {str(a["_id"]): a for a in db[ACTIVITIES].find({"_id": {"$in": oids}})}


def build_child_report(db: Database, child: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    child_id = str(child["_id"])
    assignments = list(db[ASSIGNMENTS].find({"child_id": child_id, "is_active": True}).sort("created_at", -1))
    activities = activity_names(db, [a["activity_id"] for a in assignments])

    counts = {"pending": 0, "in-progress": 0, "completed": 0, "not-completed": 0}
    rows = []
    for a in assignments:
        status = effective_status(a, now)
        counts[status] += 1
        activity = activities.get(a["activity_id"]) or {}
        rows.append({
            "assignment_id": str(a["_id"]),
            "activity_name": activity.get("name", "Unknown Activity"),
            "completion_status": status,
            "score": a.get("score"),
            "due_date": a.get("due_date"),
            "started_date": a.get("started_date"),
            "completed_date": a.get("completed_date"),
            "is_overdue": is_overdue(a, now),
        })

    total = len(assignments)
    completion_percentage = _round_half_up(counts["completed"] / total * 100) if total else 0
    average_score = _round_half_up(sum(a.get("score") or 0 for a in assignments) / total) if total else 0

    return {
        "child_id": child_id,
        "child_name": child.get("name"),
        "child_email": child.get("email"),
        "total_activities": total,
        "completed": counts["completed"],
        "pending": counts["pending"],
        "in_progress": counts["in-progress"],
        "not_completed": counts["not-completed"],
        "completion_percentage": completion_percentage,
        "average_score": average_score,
        "activities": rows,
    }


def render_report_pdf(report: Dict[str, Any], generated_at: datetime) -> bytes:
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    c.setFont("Helvetica-Bold", 16)
    c.drawString(20 * mm, height - 20 * mm, "Activity Progress Report")

    c.setFont("Helvetica", 10)
    c.drawString(20 * mm, height - 27 * mm, f"Child: {report['child_name']} ({report['child_email']})")
    c.drawString(20 * mm, height - 32 * mm, f"Generated: {generated_at:%Y-%m-%d %H:%M} UTC")
    c.drawString(20 * mm, height - 37 * mm,
                 f"Activities: {report['total_activities']} | Completed: {report['completed']} | "
                 f"In progress: {report['in_progress']} | Pending: {report['pending']} | "
                 f"Not completed: {report['not_completed']}")
    c.drawString(20 * mm, height - 42 * mm,
                 f"Completion: {report['completion_percentage']}% | Average score: {report['average_score']}")

    y = height - 55 * mm
    c.setFont("Helvetica-Bold", 12)
    c.drawString(20 * mm, y, "Activities")
    y -= 6 * mm
    c.setFont("Helvetica", 10)

    for row in report["activities"]:
        if y < 20 * mm:
            c.showPage()
            y = height - 20 * mm
            c.setFont("Helvetica", 10)
        score = row["score"] if row["score"] is not None else "-"
        due = f"{row['due_date']:%Y-%m-%d}" if row["due_date"] else "-"
        c.drawString(20 * mm, y, f"- {row['activity_name']} | {row['completion_status']} | Score: {score} | Due: {due}")
        y -= 6 * mm

    c.showPage()
    c.save()
    pdf = buffer.getvalue()
    buffer.close()
    return pdf
