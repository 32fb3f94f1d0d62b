HAPPENINGS_URL = "/api/v1/happenings"
EVENT_SIGNUPS_URL = "/api/v1/events/{event_id}/signups"
CANCEL_SIGNUP_URL = "/api/v1/signups/{signup_id}/cancel"
OCCURRENCE_COUNT_URL = "/api/v1/events/{event_id}/occurrences/{date_key}/count"
OCCURRENCE_SIGNUPS_URL = "/api/v1/events/{event_id}/occurrences/{date_key}/signups"
OCCURRENCE_OVERRIDE_URL = "/api/v1/events/{event_id}/overrides/{date_key}"
