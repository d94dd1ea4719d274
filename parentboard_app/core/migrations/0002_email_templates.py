from django.db import migrations

MAGIC_LINK_HTML = (
    "<p>Hallo,</p>\n"
    "<p>mit diesem Link meldest du dich bei der Elternvertretung an:</p>\n"
    '<p><a href="{{ login_url }}">Jetzt anmelden</a></p>\n'
    "<p>Der Link ist {{ valid_minutes }} Minuten gültig und kann nur von dir verwendet werden.</p>\n"
    "<p>Wenn du keinen Link angefordert hast, kannst du diese E-Mail ignorieren.</p>\n"
)

MAGIC_LINK_TEXT = (
    "Hallo,\n\n"
    "mit diesem Link meldest du dich bei der Elternvertretung an:\n\n"
    "{{ login_url }}\n\n"
    "Der Link ist {{ valid_minutes }} Minuten gültig und kann nur von dir verwendet werden.\n\n"
    "Wenn du keinen Link angefordert hast, kannst du diese E-Mail ignorieren.\n"
)

EVENT_REMINDER_HTML = (
    "<p>Hallo,</p>\n"
    "<p>Erinnerung: <strong>{{ event_title }}</strong> beginnt am {{ event_start }}.</p>\n"
    "{% if event_location %}<p>Ort: {{ event_location }}</p>\n{% endif %}"
    '<p><a href="{{ event_url }}">Termin in den Kalender übernehmen</a></p>\n'
)

EVENT_REMINDER_TEXT = (
    "Hallo,\n\n"
    "Erinnerung: {{ event_title }} beginnt am {{ event_start }}.\n"
    "{% if event_location %}Ort: {{ event_location }}\n{% endif %}\n"
    "Termin in den Kalender übernehmen: {{ event_url }}\n"
)


def add_email_templates(apps, schema_editor) -> None:
    EmailTemplate = apps.get_model("post_office", "EmailTemplate")

    EmailTemplate.objects.update_or_create(
        name="magic-login-link",
        defaults={
            "description": "One-time sign-in link",
            "subject": "Dein Anmeldelink",
            "html_content": MAGIC_LINK_HTML,
            "content": MAGIC_LINK_TEXT,
        },
    )
    EmailTemplate.objects.update_or_create(
        name="event-reminder",
        defaults={
            "description": "Reminder before an event starts",
            "subject": "Erinnerung: {{ event_title }}",
            "html_content": EVENT_REMINDER_HTML,
            "content": EVENT_REMINDER_TEXT,
        },
    )


def noop_reverse(apps, schema_editor) -> None:
    # Keep templates on rollback to avoid losing admin edits.
    return


class Migration(migrations.Migration):
    dependencies = [
        ("core", "0001_initial"),
        ("post_office", "0013_email_recipient_delivery_status_alter_log_status"),
    ]

    operations = [
        migrations.RunPython(
            add_email_templates,
            reverse_code=noop_reverse,
        ),
    ]
