"""Entrant, sender and bonus checks against the ScoreMaster database."""

from __future__ import annotations

import email.utils
from collections.abc import Iterable

import structlog

from .models import EntrantCheck
from .store import ScoreMasterStore

logger = structlog.get_logger()


def address_matches(sender: str, registered: Iterable[str], monitored: str = "") -> bool:
    """Is *sender* one of *registered*?

    An exact (case-insensitive) match wins; failing that the local parts
    are compared, which tolerates the same account sending through an
    alias domain. Mail from the *monitored* address itself always matches.
    """
    if not sender:
        return False
    sender_key = sender.casefold()
    if monitored and sender_key == monitored.casefold():
        return True
    local = sender_key.partition("@")[0]
    for address in registered:
        key = address.casefold()
        if key == sender_key:
            return True
        if key.partition("@")[0] == local:
            logger.info("sender_matched_on_local_part", sender=sender, registered=address)
            return True
    return False


class EntrantBonusValidator:
    """Answers "is this a real entrant", "may this sender claim for them" and
    "is this a real bonus" independently.

    With ``match_email`` off any sender is authorised for a known entrant,
    except in test mode where the sender must at least be registered for
    *some* entrant.
    """

    def __init__(
        self,
        store: ScoreMasterStore,
        *,
        monitored_address: str,
        match_email: bool,
        test_mode: bool,
    ) -> None:
        self._store = store
        self._monitored = monitored_address
        self._match_email = match_email
        self._test_mode = test_mode

    async def check_entrant(self, entrant_id: int, from_header: str) -> EntrantCheck:
        if entrant_id <= 0:
            return EntrantCheck(known=False, authorized=False)

        contact = await self._store.fetch_entrant(entrant_id)
        if contact is None:
            logger.debug("entrant_unknown", entrant_id=entrant_id)
            return EntrantCheck(known=False, authorized=False)

        sender = email.utils.parseaddr(from_header)[1]
        if not self._match_email and not self._test_mode:
            authorized = True
        else:
            if self._test_mode and not self._match_email:
                registered = await self._store.list_entrant_addresses()
            else:
                registered = list(contact.addresses)
            authorized = address_matches(sender, registered, self._monitored)
            if not authorized:
                logger.info(
                    "sender_not_registered",
                    sender=sender,
                    entrant_id=entrant_id,
                    rider=contact.rider_name,
                )

        return EntrantCheck(known=True, authorized=authorized and contact.rider_name != "")

    async def check_bonus(self, bonus_id: str) -> str:
        """Bonus description, ``""`` for an unrecognised bonus."""
        if not bonus_id:
            return ""
        return await self._store.fetch_bonus_description(bonus_id)
