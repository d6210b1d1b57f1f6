"""
Coming-soon waitlist signups from the contact form and the JSON subscribe endpoint.
"""
from __future__ import annotations

import logging
import sqlite3

from paddock.persistence.repositories import EngagementRepository
from paddock.validation import sanitize_email

logger = logging.getLogger(__name__)


class WaitlistService:

    def __init__(self) -> None:
        self._repo = EngagementRepository()

    def subscribe(self, conn: sqlite3.Connection, email: str, honeypot: str | None = None) -> bool:
        """
        Store a signup. A filled honeypot is accepted without storing anything so
        bots get no signal; an address already on the list is also a success.
        Returns True only when a new row was written.
        """
        clean = sanitize_email(email)
        if honeypot and honeypot.strip():
            logger.info("Waitlist honeypot triggered")
            return False
        added = self._repo.add_waitlist(conn, clean)
        if added:
            logger.info("Waitlist signup stored")
        return added
