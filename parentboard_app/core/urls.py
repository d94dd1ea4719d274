from django.urls import path

from core import views_api, views_auth, views_health, views_pages

urlpatterns = [
    path("", views_pages.home, name="home"),
    path("claim/", views_pages.claim, name="claim"),
    path("login/", views_auth.EmailLoginView.as_view(), name="login"),
    path("login/magic/", views_auth.magic_link_request, name="login-magic"),
    path("auth/callback", views_auth.auth_callback, name="auth-callback"),
    path("logout/", views_auth.logout_view, name="logout"),
    path("healthz", views_health.healthz, name="healthz"),
    path("readyz", views_health.readyz, name="readyz"),
    path("api/bootstrap", views_api.bootstrap, name="api-bootstrap"),
    path("api/onboarding", views_api.onboarding, name="api-onboarding"),
    path("api/announcements", views_api.announcements_collection, name="api-announcements"),
    path(
        "api/announcements/<int:announcement_id>/read",
        views_api.announcement_read,
        name="api-announcement-read",
    ),
    path("api/events", views_api.events_collection, name="api-events"),
    path("api/events/<int:event_id>", views_api.event_item, name="api-event"),
    path("api/events/<int:event_id>/rsvp", views_api.event_rsvp, name="api-event-rsvp"),
    path("api/events/<int:event_id>/ics", views_api.event_ics, name="api-event-ics"),
    path("api/events/<int:event_id>/agenda", views_api.event_agenda, name="api-event-agenda"),
    path("api/polls", views_api.polls_collection, name="api-polls"),
    path("api/polls/<int:poll_id>", views_api.poll_item, name="api-poll"),
    path("api/polls/<int:poll_id>/vote", views_api.poll_vote, name="api-poll-vote"),
    path("api/polls/<int:poll_id>/candidates", views_api.poll_candidates, name="api-poll-candidates"),
    path("api/candidates/redeem", views_api.candidates_redeem, name="api-candidates-redeem"),
]
