"""Eligibility rules evaluated against the caller-supplied participant profile."""

from felicity_engine.common.exceptions import NotEligibleError, ValidationError
from felicity_engine.events.models import (
    ELIGIBILITY_FINAL_YEAR,
    ELIGIBILITY_FIRST_YEAR,
    ELIGIBILITY_INSTITUTION,
    ELIGIBILITY_TEAM,
    EventModel,
)
from felicity_engine.registrations.schemas import ParticipantProfile


def check_eligibility(event: EventModel, profile: ParticipantProfile) -> None:
    """Raise unless ``profile`` satisfies the event's rule."""
    rule = event.eligibility

    if rule == ELIGIBILITY_INSTITUTION and not profile.institution_member:
        raise NotEligibleError("This event is open to institution members only")
    if rule == ELIGIBILITY_FIRST_YEAR and profile.year_of_study != 1:
        raise NotEligibleError("This event is open to first-year students only")
    if rule == ELIGIBILITY_FINAL_YEAR and not profile.final_year:
        raise NotEligibleError("This event is open to final-year students only")


def check_team(
    event: EventModel,
    team_name: str | None = None,
    team_members: list[str] | None = None,
) -> tuple[str | None, list[str]]:
    """Normalise (team_name, team_members); both are empty for non-team events."""
    if event.eligibility != ELIGIBILITY_TEAM:
        return None, []

    name = (team_name or "").strip()
    if not name:
        raise ValidationError(
            "Team name is required for team events",
            details=[{"field": "team_name", "message": "This field is required"}],
        )
    members = [m.strip() for m in team_members or [] if m and m.strip()]
    if len(set(members)) != len(members):
        raise ValidationError(
            "Team members must be unique",
            details=[{"field": "team_members", "message": "Duplicate member"}],
        )
    # The registering participant counts towards the team size.
    if event.max_team_size is not None and 1 + len(members) > event.max_team_size:
        raise ValidationError(
            f"Team size exceeds the maximum of {event.max_team_size}",
            details=[{"field": "team_members", "message": f"At most {event.max_team_size - 1} members"}],
        )
    return name, members
