"""Notification triggers installed into the database.

Trigger functions never embed the project URL or the service key; they
read ``app.settings.supabase_url`` / ``app.settings.service_role_key``
(``ALTER DATABASE postgres SET app.settings.... = '...'``).  A failing
trigger logs a WARNING and lets the row through; there are no retries.
"""

from __future__ import annotations

from .changes import Change, CreateExtension, CreateFunction, CreateTrigger

SUBMISSION_FUNCTION = "notify_instructor_on_submission"
DOZENT_WEBHOOK_FUNCTION = "notify_dozent_webhook"
STUDENT_WEBHOOK_FUNCTION = "notify_student_webhook"

_SUBMISSION_BODY = """
DECLARE
  instructor_id uuid;
  student_record RECORD;
BEGIN
  IF NEW.status = 'submitted' AND (OLD.status IS NULL OR OLD.status <> 'submitted') THEN
    SELECT first_name, last_name INTO student_record
    FROM public.users
    WHERE id = NEW.user_id;

    SELECT id INTO instructor_id
    FROM public.users
    WHERE role = 'instructor'
      AND instructor_legal_area = NEW.legal_area
      AND email_notifications_enabled = true
    LIMIT 1;

    IF instructor_id IS NULL THEN
      SELECT id INTO instructor_id
      FROM public.users
      WHERE role = 'springer'
        AND instructor_legal_area = NEW.legal_area
        AND email_notifications_enabled = true
      LIMIT 1;
    END IF;

    IF instructor_id IS NOT NULL AND student_record.first_name IS NOT NULL THEN
      INSERT INTO public.notifications (user_id, title, message, type, related_case_study_id)
      VALUES (
        instructor_id,
        'Neue Bearbeitung eingereicht',
        student_record.first_name || ' ' || student_record.last_name
          || ' hat eine Bearbeitung für ' || NEW.legal_area || ' - ' || NEW.sub_area || ' eingereicht.',
        'info',
        NEW.id
      );
    END IF;
  END IF;
  RETURN NEW;
EXCEPTION
  WHEN OTHERS THEN
    RAISE WARNING '{name} failed for case %: %', NEW.id, SQLERRM;
    RETURN NEW;
END;
""".format(name=SUBMISSION_FUNCTION)


def webhook_body(function_name: str, edge_function: str) -> str:
    """PL/pgSQL body that forwards the inserted row to an Edge Function via pg_net."""
    return f"""
BEGIN
  PERFORM net.http_post(
    url := current_setting('app.settings.supabase_url', true) || '/functions/v1/{edge_function}',
    headers := jsonb_build_object(
      'Content-Type', 'application/json',
      'Authorization', 'Bearer ' || current_setting('app.settings.service_role_key', true)
    ),
    body := jsonb_build_object('type', TG_OP, 'record', row_to_json(NEW))
  );
  RETURN NEW;
EXCEPTION
  WHEN OTHERS THEN
    RAISE WARNING '{function_name} failed for notification %: %', NEW.id, SQLERRM;
    RETURN NEW;
END;
"""


def submission_notification_changes() -> list[Change]:
    """Notify the instructor (or a springer) of the legal area on submission."""
    return [
        CreateFunction(name=SUBMISSION_FUNCTION, body=_SUBMISSION_BODY, security_definer=True),
        CreateTrigger(
            name="submission_notification_trigger",
            table="case_study_requests",
            function=SUBMISSION_FUNCTION,
            timing="AFTER",
            events=("UPDATE",),
        ),
    ]


def notification_webhook_changes() -> list[Change]:
    """Forward every new notification to the notify-dozent / notify-student functions."""
    return [
        CreateExtension(name="pg_net"),
        CreateFunction(
            name=DOZENT_WEBHOOK_FUNCTION,
            body=webhook_body(DOZENT_WEBHOOK_FUNCTION, "notify-dozent"),
            security_definer=True,
        ),
        CreateFunction(
            name=STUDENT_WEBHOOK_FUNCTION,
            body=webhook_body(STUDENT_WEBHOOK_FUNCTION, "notify-student"),
            security_definer=True,
        ),
        CreateTrigger(
            name="notify_dozent_on_notification_insert",
            table="notifications",
            function=DOZENT_WEBHOOK_FUNCTION,
            events=("INSERT",),
        ),
        CreateTrigger(
            name="notify_student_on_notification_insert",
            table="notifications",
            function=STUDENT_WEBHOOK_FUNCTION,
            events=("INSERT",),
        ),
    ]
