from datetime import datetime, timedelta, timezone

import pytest

from classbook.graphql.context import Context, Operator
from classbook.graphql.schema import schema
from classbook.services.calendar_sync import register_integration
from classbook.services.gateways import ExternalBusyPeriod, StaticCalendarSyncGateway

REQUEST_BOOKING = """
mutation Book($sessionId: Int!, $email: String!) {
  requestBooking(input: {sessionId: $sessionId, attendeeName: "Ana Lopez", attendeeEmail: $email}) {
    success
    message
    booking { id status waitlistPosition }
  }
}
"""

CHECK_IN = """
mutation CheckIn($bookingId: Int!) {
  checkIn(bookingId: $bookingId) {
    success
    message
    checkIn { bookingId checkedInBy }
  }
}
"""

CLASS_SESSION = """
query Session($id: Int!) {
  classSession(id: $id) { id confirmedCount availableSpots waitlistSize isFull }
}
"""


@pytest.fixture
def context(db):
    def _context(user=None, calendar_gateway=None):
        return Context(db=db, request=None, response=None, user=user, calendar_gateway=calendar_gateway)

    return _context


async def _book(context, session_id, email):
    result = await schema.execute(
        REQUEST_BOOKING, variable_values={"sessionId": session_id, "email": email}, context_value=context()
    )
    assert result.errors is None
    return result.data["requestBooking"]


async def test_booking_then_waitlist_through_the_api(org, make_session, context):
    session = await make_session(org.id, capacity=1)

    first = await _book(context, session.id, "ana@example.com")
    second = await _book(context, session.id, "luis@example.com")

    assert first["success"] is True
    assert first["message"] == "Booking confirmed"
    assert first["booking"]["status"] == "confirmed"
    assert second["booking"]["status"] == "waitlisted"
    assert second["booking"]["waitlistPosition"] == 1
    assert "number 1 on the waitlist" in second["message"]

    result = await schema.execute(CLASS_SESSION, variable_values={"id": session.id}, context_value=context())
    assert result.data["classSession"] == {
        "id": session.id, "confirmedCount": 1, "availableSpots": 0, "waitlistSize": 1, "isFull": True
    }


async def test_rejected_request_is_reported_in_the_envelope(org, make_session, context):
    session = await make_session(org.id)

    data = await _book(context, session.id, "not-an-email")

    assert data["success"] is False
    assert data["booking"] is None
    assert "Invalid attendee email" in data["message"]


async def test_check_in_requires_an_operator(org, make_session, context):
    session = await make_session(org.id)
    booking_id = (await _book(context, session.id, "ana@example.com"))["booking"]["id"]

    anonymous = await schema.execute(CHECK_IN, variable_values={"bookingId": booking_id}, context_value=context())
    assert anonymous.errors[0].message == "Authentication required."

    staff = await schema.execute(
        CHECK_IN,
        variable_values={"bookingId": booking_id},
        context_value=context(Operator(user_id=1, username="frontdesk"))
    )
    assert staff.errors is None
    assert staff.data["checkIn"]["success"] is True
    assert staff.data["checkIn"]["checkIn"] == {"bookingId": booking_id, "checkedInBy": "frontdesk"}

    again = await schema.execute(
        CHECK_IN,
        variable_values={"bookingId": booking_id},
        context_value=context(Operator(user_id=1, username="frontdesk"))
    )
    assert again.data["checkIn"]["success"] is False
    assert "already checked in" in again.data["checkIn"]["message"]


async def test_process_no_shows_reports_skipped_organizations(org, context):
    result = await schema.execute(
        """
        mutation Sweep($orgId: Int!) {
          processNoShows(organizationId: $orgId) {
            success
            message
            summary { skippedReason processedCount }
          }
        }
        """,
        variable_values={"orgId": org.id},
        context_value=context(Operator(user_id=7))
    )

    assert result.errors is None
    payload = result.data["processNoShows"]
    assert payload["success"] is True
    assert payload["summary"] == {"skippedReason": "disabled", "processedCount": 0}
    assert payload["message"] == "No-show processing skipped: disabled"


SYNC_CALENDARS = """
mutation Sync($orgId: Int!) {
  syncCalendars(organizationId: $orgId) {
    success
    message
    results { integrationId created updated removed }
  }
}
"""


async def test_sync_calendars_pulls_busy_periods(db, org, context):
    integration = await register_integration(db, org.id, "google")
    start_at = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)
    gateway = StaticCalendarSyncGateway({
        integration.id: [ExternalBusyPeriod("offsite", start_at, start_at + timedelta(hours=3))]
    })

    result = await schema.execute(
        SYNC_CALENDARS,
        variable_values={"orgId": org.id},
        context_value=context(Operator(user_id=7), calendar_gateway=gateway)
    )

    assert result.errors is None
    payload = result.data["syncCalendars"]
    assert payload["success"] is True
    assert payload["results"] == [{"integrationId": integration.id, "created": 1, "updated": 0, "removed": 0}]


async def test_sync_calendars_without_a_provider(org, context):
    result = await schema.execute(
        SYNC_CALENDARS, variable_values={"orgId": org.id}, context_value=context(Operator(user_id=7))
    )

    assert result.data["syncCalendars"] == {
        "success": False, "message": "No calendar provider is configured", "results": []
    }
