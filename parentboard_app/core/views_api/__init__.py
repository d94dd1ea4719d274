"""JSON API views, grouped by area and re-exported for ``core.urls``."""

from core.views_api.announcements import announcement_read, announcements_collection
from core.views_api.candidates import candidates_redeem
from core.views_api.events import event_agenda, event_ics, event_item, event_rsvp, events_collection
from core.views_api.onboarding import bootstrap, onboarding
from core.views_api.polls import poll_candidates, poll_item, poll_vote, polls_collection

__all__ = [
    "announcement_read",
    "announcements_collection",
    "bootstrap",
    "candidates_redeem",
    "event_agenda",
    "event_ics",
    "event_item",
    "event_rsvp",
    "events_collection",
    "onboarding",
    "poll_candidates",
    "poll_item",
    "poll_vote",
    "polls_collection",
]
