"""
Collaborator contracts.

The scheduler core does no I/O. Whatever loads cards, persists sessions or
records responses implements one of these protocols; ``JsonSessionStore`` in
``uams.study.session_store`` is the bundled SessionStore.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from uams.core.models import (
    EnhancedResponseLog,
    UnifiedCard,
    UnifiedSessionState,
    UserProfile,
)


@runtime_checkable
class CardStore(Protocol):
    def get_cards(self, deck_id: str) -> Sequence[UnifiedCard]: ...

    def save_card(self, card: UnifiedCard) -> None: ...


@runtime_checkable
class SessionStore(Protocol):
    def save(self, state: UnifiedSessionState): ...

    def load(self, session_id: str) -> UnifiedSessionState: ...

    def delete(self, session_id: str) -> bool: ...


@runtime_checkable
class ResponseLogStore(Protocol):
    def append(self, user_id: str, response: EnhancedResponseLog) -> None: ...

    def history(self, user_id: str, limit: Optional[int] = None) -> Sequence[EnhancedResponseLog]: ...


@runtime_checkable
class ProfileProvider(Protocol):
    def get_profile(self, user_id: str) -> Optional[UserProfile]: ...
