# classbook models - one module per area
from classbook.models.organizationModel import Organization, OrganizationSettings
from classbook.models.classModel import (
    ClassSession, Booking, WaitlistEntry, CheckIn, NoShowPenaltyRecord
)
from classbook.models.membershipsModel import MemberPass, Payment
from classbook.models.calendarModel import CalendarIntegration, CalendarBusyPeriod
from classbook.models.notificationModel import NotificationOutbox

__all__ = [
    "Organization", "OrganizationSettings",
    "ClassSession", "Booking", "WaitlistEntry", "CheckIn", "NoShowPenaltyRecord",
    "MemberPass", "Payment",
    "CalendarIntegration", "CalendarBusyPeriod",
    "NotificationOutbox",
]
