#!/usr/bin/env python3
"""Club daily maintenance run — designed to run from cron or GitHub Actions.

Steps:
  1. ``vacation-checker`` Edge Function: hands cases of instructors on
     vacation over to a springer.
  2. ``send-reminder-emails`` Edge Function: mails students whose review
     date is today.

Each step is independent; a failing step is logged and the next one still
runs.  Exit code 1 if any step failed.

Required env vars:
    SUPABASE_URL                 — project URL
    SUPABASE_SERVICE_ROLE_KEY    — service-role key (Edge Function auth)
"""

import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from clubops.config import Settings
from clubops.errors import ClubOpsError
from clubops.functions import invoke_function

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
)
log = logging.getLogger("daily_task")

STEPS = (
    ("vacation-checker", {"source": "daily_task"}),
    ("send-reminder-emails", {"source": "daily_task"}),
)


def _summarise(name: str, result: object) -> None:
    """Log the counters an Edge Function reports, if any."""
    if not isinstance(result, dict):
        log.info("%s finished: %s", name, result)
        return
    if "totalProcessed" in result:
        log.info(
            "%s processed %d (ok=%d, errors=%d)",
            name,
            result.get("totalProcessed", 0),
            result.get("successCount", 0),
            result.get("errorCount", 0),
        )
        if result.get("errorCount"):
            log.warning("%s reported %d error(s)", name, result["errorCount"])
        return
    log.info("%s finished: %s", name, result.get("message", "ok"))


def main() -> int:
    try:
        settings = Settings.from_env()
        settings.require("supabase_url", "supabase_service_role_key")
    except ClubOpsError as e:
        log.error("%s", e)
        return 1

    failed = 0
    for name, payload in STEPS:
        try:
            result = invoke_function(settings, name, payload)
        except ClubOpsError as e:
            log.error("%s failed (%s): %s", name, e.category, e)
            failed += 1
            continue
        _summarise(name, result)

    if failed:
        log.error("Daily run finished with %d failed step(s).", failed)
        return 1
    log.info("Daily run complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
