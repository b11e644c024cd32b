from tarot_panel.auth.models import RefreshToken, User
from tarot_panel.core.models.worker import Worker
from tarot_panel.core.models.attendance import AttendanceRow, CallMapping
from tarot_panel.core.models.presence import PlannedShift, PresenceCurrent, PresenceEvent, PresenceSession
from tarot_panel.core.models.incident import ShiftIncident
from tarot_panel.core.models.monthly import (
    BonusRule,
    CronLog,
    MonthlyBonusResult,
    MonthlyEarning,
    MonthlyRanking,
    PeriodClosure,
)
from tarot_panel.core.models.team import Team, TeamMember, TeamMonthlyResult
from tarot_panel.core.models.invoice import Invoice, InvoiceLine

__all__ = [
    "AttendanceRow",
    "BonusRule",
    "CallMapping",
    "CronLog",
    "Invoice",
    "InvoiceLine",
    "MonthlyBonusResult",
    "MonthlyEarning",
    "MonthlyRanking",
    "PeriodClosure",
    "PlannedShift",
    "PresenceCurrent",
    "PresenceEvent",
    "PresenceSession",
    "RefreshToken",
    "ShiftIncident",
    "Team",
    "TeamMember",
    "TeamMonthlyResult",
    "User",
    "Worker",
]
