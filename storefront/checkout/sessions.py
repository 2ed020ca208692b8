"""
Registre en mémoire des sessions de checkout (par processus).
- Une session appartient à l'utilisateur qui l'a ouverte (clé dérivée du jeton).
- Ouvrir une session remplace les sessions précédentes de l'utilisateur,
  sauf celles dont le paiement est en cours (PAYMENT_PENDING / VERIFYING).
- Une session inactive depuis plus de ttl_seconds est oubliée (balayage à chaque accès),
  son attente de paiement éventuelle est annulée.
- Pas de persistance: une session ne vit que le temps d'une tentative.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from storefront.config import CHECKOUT_SESSION_TTL_SECONDS
from .models import CheckoutState
from .service import CheckoutSession

logger = logging.getLogger(__name__)

BUSY_STATES = {CheckoutState.SUBMITTING, CheckoutState.PAYMENT_PENDING, CheckoutState.VERIFYING}
# Appel serveur en vol: jamais expirée, l'appel se termine dans le timeout HTTP
IN_FLIGHT_STATES = {CheckoutState.SUBMITTING, CheckoutState.VERIFYING}


class SessionNotFound(KeyError):
    pass


class SessionForbidden(PermissionError):
    pass


class CheckoutSessionStore:

    def __init__(self, ttl_seconds: float = CHECKOUT_SESSION_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, Tuple[str, CheckoutSession, Any]] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, owner: str, session: CheckoutSession, ports: Any = None) -> CheckoutSession:
        self.evict_expired()
        self._prune_owner(owner)
        self._sessions[session.id] = (owner, session, ports)
        self._last_seen[session.id] = self._clock()
        logger.info("checkout.session_open session=%s owner=%s mode=%s", session.id, owner, session.mode.value)
        return session

    def entry(self, session_id: str, owner: str) -> Tuple[str, CheckoutSession, Any]:
        self.evict_expired()
        found = self._sessions.get(session_id)
        if found is None:
            raise SessionNotFound(session_id)
        if found[0] != owner:
            raise SessionForbidden(session_id)
        self._last_seen[session_id] = self._clock()
        return found

    def get(self, session_id: str, owner: str) -> CheckoutSession:
        return self.entry(session_id, owner)[1]

    def discard(self, session_id: str, owner: str) -> Optional[CheckoutSession]:
        _, session, _ = self.entry(session_id, owner)
        if session.state in BUSY_STATES:
            return None
        self._drop(session_id)
        logger.info("checkout.session_discard session=%s owner=%s", session_id, owner)
        return session

    def evict_expired(self) -> int:
        """Oublie les sessions inactives depuis plus de ttl_seconds; retourne le nombre de sessions évincées."""
        deadline = self._clock() - self.ttl_seconds
        expired = [
            sid for sid, (_, s, _) in self._sessions.items()
            if self._last_seen.get(sid, 0.0) <= deadline and s.state not in IN_FLIGHT_STATES
        ]
        for sid in expired:
            session = self._drop(sid)
            logger.info("checkout.session_expired session=%s state=%s", sid, session.state.value)
        return len(expired)

    def _drop(self, session_id: str) -> CheckoutSession:
        _, session, _ = self._sessions.pop(session_id)
        self._last_seen.pop(session_id, None)
        session.close()
        return session

    def _prune_owner(self, owner: str) -> None:
        stale = [
            sid for sid, (o, s, _) in self._sessions.items()
            if o == owner and s.state not in BUSY_STATES
        ]
        for sid in stale:
            self._drop(sid)
