"""Display helpers for the result and history pages."""

import base64
import json
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from .schemas import StoredAnalysis

DISPLAY_LIMIT = 50


def relative_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """Human distance from ``moment`` to now, e.g. ``"about 3 hours ago"``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = (now - moment).total_seconds()
    past = seconds >= 0
    seconds = abs(seconds)
    minutes = round(seconds / 60)

    if seconds < 30:
        text = "less than a minute"
    elif minutes < 2:
        text = "1 minute"
    elif minutes < 45:
        text = f"{minutes} minutes"
    elif minutes < 90:
        text = "about 1 hour"
    elif minutes < 1440:
        text = f"about {round(minutes / 60)} hours"
    elif minutes < 2520:
        text = "1 day"
    elif minutes < 43200:
        text = f"{round(minutes / 1440)} days"
    elif minutes < 64800:
        text = "about 1 month"
    elif minutes < 86400:
        text = "about 2 months"
    elif minutes < 525600:
        text = f"{round(minutes / 43200)} months"
    else:
        years = int(minutes // 525600)
        text = f"about {years} year" + ("s" if years > 1 else "")

    return f"{text} ago" if past else f"in {text}"


def score_color(score: int) -> str:
    if score >= 80:
        return "score-excellent"
    if score >= 60:
        return "score-good"
    if score >= 40:
        return "score-average"
    if score >= 20:
        return "score-weak"
    return "score-poor"


def score_label(score: int) -> str:
    if score >= 80:
        return "Excellent virality potential"
    if score >= 60:
        return "Good virality potential"
    if score >= 40:
        return "Average virality potential"
    return "Low virality potential"


def truncate(text: str, limit: int = DISPLAY_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def display_subject(subject: str) -> str:
    """Host and path for URLs; everything else is cut to a short preview."""
    parsed = urlparse(subject.strip())
    if parsed.scheme in ("http", "https", "gs") and parsed.netloc:
        return parsed.netloc + (parsed.path if parsed.path not in ("", "/") else "")
    return truncate(subject)


def export_filename(record: StoredAnalysis, extension: str = "json") -> str:
    return f"analysis-{record.id[:8]}.{extension}"


def export_json(record: StoredAnalysis) -> str:
    return json.dumps(record.to_wire(), indent=2)


def export_text(record: StoredAnalysis) -> str:
    lines = [
        "Content Analysis Result",
        "=======================",
        f"Analyzed: {record.created_at.isoformat(timespec='seconds')}",
        f"Content: {record.subject}",
        f"Virality Score: {record.virality_score}/100 ({score_label(record.virality_score)})",
        f"Emotional Tone: {record.emotional_tone}",
        "",
        "Suggested Improvements:",
    ]
    lines.extend(f"- {s}" for s in record.suggestions)
    if record.vision_analysis:
        lines += ["", "Visual Analysis:", record.vision_analysis]
    if record.transcript:
        lines += ["", "Transcript:", record.transcript]
    return "\n".join(lines) + "\n"


def data_uri(content: str, mime_type: str) -> str:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    return f"data:{mime_type};charset=utf-8;base64,{encoded}"


def register_filters(env) -> None:
    env.filters["relative_time"] = relative_time
    env.filters["score_color"] = score_color
    env.filters["score_label"] = score_label
    env.filters["display_subject"] = display_subject
