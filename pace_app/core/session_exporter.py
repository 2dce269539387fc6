"""Read-only snapshots of a live session for the export endpoint."""

from __future__ import annotations

import csv
from datetime import datetime, timezone
import io
import json
from typing import Any

from pace_app.core.models import ParticipantStatus
from pace_app.core.services.session_registry import SessionRecord

_CSV_HEADER = ("position", "question_id", "text", "type", "participants_completed", "participants_total")


def build_session_snapshot(record: SessionRecord) -> dict[str, Any]:
    """Session state without credentials or connection bookkeeping."""
    total = record.questions.get_question_count()
    return {
        "code": record.code,
        "createdAt": datetime.fromtimestamp(record.created_at, tz=timezone.utc).isoformat(),
        "theme": record.theme,
        "deadline": record.deadline,
        "isAudienceUrlVisible": record.audience_link_visible,
        "presenterMode": record.presenter_mode.to_payload(),
        "audienceView": list(record.audience_view),
        "totalQuestions": total,
        "questions": record.questions.to_payload(),
        "participants": [
            {
                "name": participant.display_name,
                "status": participant.status.value,
                "progress": min(participant.progress, total),
            }
            for participant in record.participants.get_participants()
        ],
    }


def export_session_json(record: SessionRecord) -> str:
    return json.dumps(build_session_snapshot(record), indent=2, ensure_ascii=False)


def export_session_csv(record: SessionRecord) -> str:
    # Admitted participants only; disconnected ones keep their progress.
    participants = [
        participant
        for participant in record.participants.get_participants()
        if participant.status is not ParticipantStatus.PENDING
    ]
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(_CSV_HEADER)
    for position, question in enumerate(record.questions.get_questions()):
        completed = sum(1 for participant in participants if participant.progress > position)
        writer.writerow(
            (position, question.id, question.text, question.question_type.value, completed, len(participants))
        )
    return buffer.getvalue()
