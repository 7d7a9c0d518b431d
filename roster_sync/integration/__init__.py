"""Joins the parsed sources into one profile per player."""

from roster_sync.integration.integrate import (
    IntegratedData,
    IntegratedProfile,
    IntegrationStatistics,
    MailingListReport,
    build_mailing_list_report,
    integrate_player_data,
)

__all__ = [
    "IntegratedData",
    "IntegratedProfile",
    "IntegrationStatistics",
    "MailingListReport",
    "build_mailing_list_report",
    "integrate_player_data",
]
