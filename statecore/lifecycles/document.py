from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from statecore.machine import (
    DispatchResult,
    StateMachine,
    Transition,
    TransitionRecord,
    TransitionTable,
)


class DocumentState(str, Enum):
    DRAFT = "draft"
    MODERATION = "moderation"
    PUBLISHED = "published"


class DocumentAction(str, Enum):
    PUBLISH = "publish"


@dataclass(frozen=True)
class User:
    role: str

    @property
    def is_admin(self) -> bool:
        return str(self.role).strip().lower() == "admin"


def actor_is_admin(user: Any) -> bool:
    return bool(getattr(user, "is_admin", False))


DOCUMENT_TRANSITIONS: TransitionTable = TransitionTable(
    DocumentState,
    [
        Transition(
            DocumentState.DRAFT,
            DocumentAction.PUBLISH,
            DocumentState.MODERATION,
            description="submit draft for review",
        ),
        Transition(
            DocumentState.MODERATION,
            DocumentAction.PUBLISH,
            DocumentState.PUBLISHED,
            guard=actor_is_admin,
            description="only administrators can publish from moderation",
        ),
        # PUBLISHED is terminal.
    ],
)

_RENDERING = {
    DocumentState.DRAFT: "editable",
    DocumentState.MODERATION: "pending review",
    DocumentState.PUBLISHED: "read-only",
}


class Document:
    """
    Publishing workflow: draft -> moderation -> published.

    The document never stores state objects; it asks its machine.
    """

    def __init__(
        self,
        content: str,
        *,
        observers: Iterable[Callable[[TransitionRecord], Any]] = (),
        history_limit: Optional[int] = None,
    ) -> None:
        self.content = content
        self._machine = StateMachine(
            DocumentState.DRAFT,
            DOCUMENT_TRANSITIONS,
            observers=observers,
            history_limit=history_limit,
            name="document",
        )

    @property
    def state(self) -> DocumentState:
        return self._machine.current_state

    @property
    def machine(self) -> StateMachine:
        return self._machine

    def publish(self, user: User) -> DispatchResult:
        return self._machine.dispatch(DocumentAction.PUBLISH, user)

    def render(self) -> str:
        return f"{self.content} [{self.state.value}: {_RENDERING[self.state]}]"
