from django.contrib import admin

from core.models import (
    Announcement,
    AuditLogEntry,
    ClassCode,
    Classroom,
    Enrollment,
    Event,
    Mandate,
    Poll,
    PollCandidate,
    Profile,
    School,
)


@admin.register(School)
class SchoolAdmin(admin.ModelAdmin):
    list_display = ("name", "subdomain", "school_year_end_at")
    search_fields = ("name", "subdomain")


@admin.register(Classroom)
class ClassroomAdmin(admin.ModelAdmin):
    list_display = ("name", "year", "school")
    list_filter = ("school",)
    search_fields = ("name",)


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "name", "school", "locale")
    list_filter = ("school",)
    search_fields = ("name", "user__email")


@admin.register(ClassCode)
class ClassCodeAdmin(admin.ModelAdmin):
    list_display = ("code", "classroom", "expires_at", "uses_remaining")
    list_filter = ("school",)
    search_fields = ("code",)


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ("user", "classroom", "child_initials", "created_at")
    list_filter = ("school",)


@admin.register(Mandate)
class MandateAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "scope_type", "scope_id", "status", "start_at", "end_at")
    list_filter = ("status", "role", "scope_type", "school")
    search_fields = ("user__email",)


@admin.register(Announcement)
class AnnouncementAdmin(admin.ModelAdmin):
    list_display = ("title", "scope_type", "scope_id", "pinned", "created_at")
    list_filter = ("school", "pinned")


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("title", "start_at", "scope_type", "scope_id")
    list_filter = ("school",)


class PollCandidateInline(admin.TabularInline):
    model = PollCandidate
    extra = 0
    fields = ("display_name", "office", "status", "user", "claim_code", "expires_at")
    readonly_fields = ("claim_code",)


@admin.register(Poll)
class PollAdmin(admin.ModelAdmin):
    list_display = ("title", "kind", "status", "scope_type", "scope_id", "deadline", "seats")
    list_filter = ("kind", "status", "school")
    inlines = [PollCandidateInline]


@admin.register(AuditLogEntry)
class AuditLogEntryAdmin(admin.ModelAdmin):
    list_display = ("timestamp", "event_type", "entity", "entity_id", "actor")
    list_filter = ("event_type", "school")

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
