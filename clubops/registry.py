"""The ordered list of schema migrations for the club database.

Ids are zero-padded and applied in sort order.  Never renumber or edit an
applied migration; add a new one instead (an edit shows up as checksum
drift in ``clubops status``).
"""

from __future__ import annotations

from .changes import (
    AddColumn,
    AddConstraint,
    CreateIndex,
    CreatePolicy,
    CreateTable,
    EnableRowLevelSecurity,
)
from .migrations import Migration
from .triggers import notification_webhook_changes, submission_notification_changes

LEGAL_AREAS = ("Zivilrecht", "Strafrecht", "Öffentliches Recht")

_OWN_ROW = "auth.uid() = user_id"
_IS_ADMIN = "EXISTS (SELECT 1 FROM public.users WHERE id = auth.uid() AND role = 'admin')"
_INSTRUCTOR_OF_CASE = (
    "EXISTS (SELECT 1 FROM public.case_study_requests csr"
    " JOIN public.users u ON u.id = auth.uid()"
    " WHERE csr.id = student_feedback.case_study_id"
    " AND u.role IN ('instructor', 'springer')"
    " AND u.instructor_legal_area = csr.legal_area)"
)
_LEGAL_AREA_LIST = ", ".join(f"'{a}'" for a in LEGAL_AREAS)


MIGRATIONS: list[Migration] = [
    Migration(
        id="0001_stripe_customer_id",
        description="Link users to Stripe customers",
        changes=(
            AddColumn(table="users", column="stripe_customer_id", sql_type="TEXT UNIQUE"),
        ),
    ),
    Migration(
        id="0002_case_study_materials",
        description="Scoring sheet, solution PDF and scoring schema URLs on case studies",
        changes=(
            AddColumn(table="case_study_requests", column="scoring_sheet_url", sql_type="TEXT"),
            AddColumn(table="case_study_requests", column="solution_pdf_url", sql_type="TEXT"),
            AddColumn(table="case_study_requests", column="scoring_schema_url", sql_type="TEXT"),
            AddColumn(
                table="case_study_requests",
                column="additional_materials",
                sql_type="JSONB",
                default="'[]'::jsonb",
            ),
            CreateIndex(
                name="idx_case_study_requests_scoring_sheet",
                table="case_study_requests",
                columns=("scoring_sheet_url",),
            ),
        ),
    ),
    Migration(
        id="0003_video_lessons_ordering",
        description="Manual sort order and YouTube id for video lessons",
        changes=(
            AddColumn(table="video_lessons", column="sort_order", sql_type="INTEGER", default="0"),
            AddColumn(table="video_lessons", column="youtube_id", sql_type="VARCHAR(255)"),
            CreateIndex(name="idx_video_lessons_sort_order", table="video_lessons", columns=("sort_order",)),
        ),
    ),
    Migration(
        id="0004_case_assignment",
        description="Track which instructor a case is assigned to and why",
        changes=(
            AddColumn(
                table="case_study_requests",
                column="assigned_instructor_id",
                sql_type="UUID REFERENCES public.users(id)",
            ),
            AddColumn(table="case_study_requests", column="assignment_date", sql_type="TIMESTAMPTZ"),
            AddColumn(table="case_study_requests", column="assignment_reason", sql_type="TEXT"),
            AddColumn(
                table="case_study_requests",
                column="previous_instructor_id",
                sql_type="UUID REFERENCES public.users(id)",
            ),
            CreateIndex(
                name="idx_case_study_requests_assigned_instructor",
                table="case_study_requests",
                columns=("assigned_instructor_id",),
            ),
        ),
    ),
    Migration(
        id="0005_instructor_vacation",
        description="Vacation window for instructors",
        changes=(
            AddColumn(table="users", column="vacation_start_date", sql_type="DATE"),
            AddColumn(table="users", column="vacation_end_date", sql_type="DATE"),
            AddColumn(table="users", column="vacation_reason", sql_type="TEXT"),
        ),
    ),
    Migration(
        id="0006_user_profile",
        description="Profile image and notification preference",
        changes=(
            AddColumn(table="users", column="profile_image_url", sql_type="TEXT"),
            AddColumn(table="users", column="email_notifications_enabled", sql_type="BOOLEAN", default="true"),
        ),
    ),
    Migration(
        id="0007_springer_role",
        description="Allow the springer role with a legal area",
        changes=(
            AddConstraint(
                table="users",
                name="users_role_check",
                definition="CHECK (role IN ('student', 'instructor', 'admin', 'springer'))",
            ),
            AddConstraint(
                table="users",
                name="users_instructor_legal_area_check",
                definition=(
                    f"CHECK ((role IN ('instructor', 'springer') AND instructor_legal_area IN ({_LEGAL_AREA_LIST}))"
                    " OR (role IN ('student', 'admin') AND instructor_legal_area IS NULL))"
                ),
            ),
        ),
    ),
    Migration(
        id="0008_case_state_fields",
        description="Federal state and correction-viewed timestamp on case studies",
        changes=(
            AddColumn(table="case_study_requests", column="federal_state", sql_type="TEXT"),
            AddColumn(table="case_study_requests", column="correction_viewed_at", sql_type="TIMESTAMPTZ"),
        ),
    ),
    Migration(
        id="0009_student_feedback",
        description="Student self-review per case study, with reminder flags",
        changes=(
            CreateTable(
                table="student_feedback",
                columns=(
                    "id UUID DEFAULT gen_random_uuid() PRIMARY KEY",
                    "case_study_id UUID NOT NULL REFERENCES public.case_study_requests(id) ON DELETE CASCADE",
                    "user_id UUID NOT NULL REFERENCES public.users(id) ON DELETE CASCADE",
                    "mistakes_learned TEXT NOT NULL",
                    "improvements_planned TEXT NOT NULL",
                    "review_date DATE NOT NULL",
                    "created_at TIMESTAMPTZ DEFAULT now()",
                    "updated_at TIMESTAMPTZ DEFAULT now()",
                    "UNIQUE (case_study_id, user_id)",
                ),
            ),
            AddColumn(table="student_feedback", column="email_reminder", sql_type="BOOLEAN", default="false"),
            AddColumn(table="student_feedback", column="reminder_sent", sql_type="BOOLEAN", default="false"),
            CreateIndex(name="idx_student_feedback_case_study_id", table="student_feedback", columns=("case_study_id",)),
            CreateIndex(name="idx_student_feedback_user_id", table="student_feedback", columns=("user_id",)),
            CreateIndex(
                name="idx_student_feedback_reminders",
                table="student_feedback",
                columns=("review_date", "email_reminder", "reminder_sent"),
                where="email_reminder = true AND reminder_sent = false",
            ),
            EnableRowLevelSecurity(table="student_feedback"),
            CreatePolicy(
                table="student_feedback", name="Users can view their own feedback", command="SELECT", using=_OWN_ROW
            ),
            CreatePolicy(
                table="student_feedback", name="Users can insert their own feedback", command="INSERT", check=_OWN_ROW
            ),
            CreatePolicy(
                table="student_feedback", name="Users can update their own feedback", command="UPDATE", using=_OWN_ROW
            ),
            CreatePolicy(
                table="student_feedback", name="Users can delete their own feedback", command="DELETE", using=_OWN_ROW
            ),
            CreatePolicy(
                table="student_feedback",
                name="Instructors can view feedback for their legal area",
                command="SELECT",
                using=_INSTRUCTOR_OF_CASE,
            ),
            CreatePolicy(table="student_feedback", name="Admins can view all feedback", using=_IS_ADMIN),
        ),
    ),
    Migration(
        id="0010_case_study_ratings",
        description="Star ratings (1-5) for case studies",
        changes=(
            CreateTable(
                table="case_study_ratings",
                columns=(
                    "id UUID DEFAULT gen_random_uuid() PRIMARY KEY",
                    "case_study_id UUID NOT NULL REFERENCES public.case_study_requests(id) ON DELETE CASCADE",
                    "user_id UUID NOT NULL REFERENCES public.users(id) ON DELETE CASCADE",
                    "rating INTEGER NOT NULL CHECK (rating >= 1 AND rating <= 5)",
                    "feedback TEXT",
                    "created_at TIMESTAMPTZ DEFAULT now()",
                    "updated_at TIMESTAMPTZ DEFAULT now()",
                    "UNIQUE (case_study_id, user_id)",
                ),
            ),
            CreateIndex(
                name="idx_case_study_ratings_case_study_id", table="case_study_ratings", columns=("case_study_id",)
            ),
            CreateIndex(name="idx_case_study_ratings_user_id", table="case_study_ratings", columns=("user_id",)),
            EnableRowLevelSecurity(table="case_study_ratings"),
            CreatePolicy(
                table="case_study_ratings",
                name="Students can view their own ratings",
                command="SELECT",
                using=_OWN_ROW,
            ),
            CreatePolicy(
                table="case_study_ratings",
                name="Students can insert their own ratings",
                command="INSERT",
                check=_OWN_ROW,
            ),
            CreatePolicy(
                table="case_study_ratings",
                name="Students can update their own ratings",
                command="UPDATE",
                using=_OWN_ROW,
            ),
            CreatePolicy(
                table="case_study_ratings", name="Admins can view all ratings", command="SELECT", using=_IS_ADMIN
            ),
        ),
    ),
    Migration(
        id="0011_chat_attachments",
        description="File attachments on chat messages",
        changes=(
            AddColumn(table="messages", column="attachment_url", sql_type="TEXT"),
            AddColumn(table="messages", column="attachment_name", sql_type="TEXT"),
            AddColumn(table="messages", column="attachment_size", sql_type="BIGINT"),
            AddColumn(table="messages", column="attachment_type", sql_type="TEXT"),
            AddConstraint(
                table="messages",
                name="messages_message_type_check",
                definition="CHECK (message_type IN ('text', 'system', 'file', 'image'))",
            ),
            CreateIndex(name="idx_messages_attachment_type", table="messages", columns=("attachment_type",)),
        ),
    ),
    Migration(
        id="0012_multiple_legal_areas",
        description="Instructors may cover several legal areas",
        changes=(AddColumn(table="users", column="legal_areas", sql_type="TEXT[]"),),
    ),
    Migration(
        id="0013_submission_notification_trigger",
        description="Notify the responsible instructor (or springer) when a case is submitted",
        changes=tuple(submission_notification_changes()),
    ),
    Migration(
        id="0014_notification_webhooks",
        description="Forward new notifications to the notify-dozent / notify-student Edge Functions",
        changes=tuple(notification_webhook_changes()),
    ),
]


def get_migration(migration_id: str) -> Migration | None:
    for migration in MIGRATIONS:
        if migration.id == migration_id:
            return migration
    return None


REQUIRED_TABLES = (
    "users",
    "case_study_requests",
    "submissions",
    "notifications",
    "conversations",
    "messages",
    "orders",
    "packages",
    "video_lessons",
)
