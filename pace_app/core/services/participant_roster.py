"""Service for participant admission, reconnection and progress bookkeeping."""

from __future__ import annotations

from pace_app.core.errors import NotFound, PolicyViolation
from pace_app.core.models import Participant, ParticipantStatus


class ParticipantRoster:
    """Participants of one session keyed by their current connection id.

    State machine::

        pending -> approved          (approve)
        pending -> deleted           (reject)
        approved <-> disconnected    (socket loss / reconnection)
        approved|disconnected -> deleted (remove)
    """

    def __init__(self) -> None:
        self._participants: dict[str, Participant] = {}

    def get_participants(self) -> list[Participant]:
        return sorted(self._participants.values(), key=lambda p: p.joined_at)

    def get_participant_count(self) -> int:
        return len(self._participants)

    def find(self, connection_id: str) -> Participant | None:
        return self._participants.get(connection_id)

    def get(self, connection_id: str) -> Participant:
        participant = self._participants.get(connection_id)
        if participant is None:
            raise NotFound("Participant not found.")
        return participant

    def find_by_name(self, display_name: str) -> Participant | None:
        key = display_name.strip().casefold()
        return next((p for p in self._participants.values() if p.name_key == key), None)

    def add_pending(self, connection_id: str, display_name: str, credential: str) -> Participant:
        if self.find_by_name(display_name) is not None:
            raise PolicyViolation("Name already in use.")
        participant = Participant(
            connection_id=connection_id,
            display_name=display_name.strip(),
            credential=credential,
        )
        self._participants[connection_id] = participant
        return participant

    def reconnect(self, participant: Participant, connection_id: str) -> str:
        """Move ``participant`` to ``connection_id`` and restore its live status.

        Returns the connection id it was previously keyed under. The old key is
        removed in the same step the new one is inserted, so the identity never
        appears twice.
        """
        previous = participant.connection_id
        if self._participants.get(previous) is not participant:
            raise NotFound("Participant not found.")
        del self._participants[previous]
        participant.connection_id = connection_id
        participant.status = participant.live_status
        self._participants[connection_id] = participant
        return previous

    def approve(self, connection_id: str) -> Participant:
        participant = self.get(connection_id)
        if participant.status is not ParticipantStatus.PENDING:
            raise PolicyViolation("Only pending participants can be approved.")
        participant.status = ParticipantStatus.APPROVED
        participant.live_status = ParticipantStatus.APPROVED
        return participant

    def reject(self, connection_id: str) -> Participant:
        participant = self.get(connection_id)
        if participant.status is not ParticipantStatus.PENDING:
            raise PolicyViolation("Only pending participants can be rejected.")
        del self._participants[connection_id]
        return participant

    def remove(self, connection_id: str) -> Participant:
        participant = self.get(connection_id)
        if participant.status is ParticipantStatus.PENDING:
            raise PolicyViolation("Pending participants are rejected, not removed.")
        del self._participants[connection_id]
        return participant

    def mark_disconnected(self, connection_id: str) -> Participant | None:
        participant = self._participants.get(connection_id)
        if participant is None or participant.status is ParticipantStatus.DISCONNECTED:
            return None
        participant.live_status = participant.status
        participant.status = ParticipantStatus.DISCONNECTED
        return participant

    def reset_progress(self, connection_id: str | None = None) -> list[Participant]:
        """Reset one participant (or everyone when ``connection_id`` is None)."""
        targets = [self.get(connection_id)] if connection_id is not None else list(self._participants.values())
        for participant in targets:
            participant.progress = 0
            participant.failed_attempts.clear()
        return targets

    def clear(self) -> None:
        self._participants.clear()

    def to_payload(self, total_questions: int) -> dict[str, dict[str, object]]:
        return {p.connection_id: p.to_payload(total_questions) for p in self.get_participants()}
