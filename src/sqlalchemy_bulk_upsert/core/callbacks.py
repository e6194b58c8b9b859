"""
Lifecycle hooks fired around a batch.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy_bulk_upsert.core.rows import Row, RowState
from sqlalchemy_bulk_upsert.exceptions import HookAbortError

logger = logging.getLogger(__name__)

Hook = Callable[[List[Row]], Any]


class HookPhase(str, Enum):
    BEFORE_SAVE = "before_save"
    BEFORE_CREATE = "before_create"
    BEFORE_UPDATE = "before_update"
    BEFORE_RESTORE = "before_restore"
    AFTER_CREATE = "after_create"
    AFTER_UPDATE = "after_update"
    AFTER_RESTORE = "after_restore"
    AFTER_SAVE = "after_save"


class HookRegistry:
    """
    Hooks registered per phase, kept in registration order.

    A hook receives the list of rows relevant to its phase and may:
    - return None or True to continue
    - return False to veto the whole batch
    - return a list of rows to keep; the others are excluded
    - mutate rows in place or call ``row.exclude()``
    """

    def __init__(self):
        self._hooks: Dict[HookPhase, List[Hook]] = defaultdict(list)

    def register(self, phase: HookPhase, hook: Hook) -> Hook:
        if not callable(hook):
            raise TypeError(f"Hook for {HookPhase(phase).value} must be callable")
        self._hooks[HookPhase(phase)].append(hook)
        return hook

    def on(self, phase: HookPhase) -> Callable[[Hook], Hook]:
        """Decorator form of ``register``."""

        def decorator(hook: Hook) -> Hook:
            return self.register(phase, hook)

        return decorator

    def hooks_for(self, phase: HookPhase) -> List[Hook]:
        return list(self._hooks.get(HookPhase(phase), []))

    def has(self, phase: HookPhase) -> bool:
        return bool(self._hooks.get(HookPhase(phase)))

    def __len__(self) -> int:
        return sum(len(hooks) for hooks in self._hooks.values())


class CallbackSequencer:
    """Invokes hooks with the sub-batch each phase is about."""

    def __init__(self, registry: Optional[HookRegistry] = None):
        self.registry = registry if registry is not None else HookRegistry()

    def run(self, phase: HookPhase, rows: Sequence[Row]) -> List[Row]:
        """
        Run every hook of ``phase``; return the rows still included.

        Raises:
            HookAbortError: if a hook returns False or raises
        """
        active = [row for row in rows if not row.excluded]
        if not active:
            return active

        for hook in self.registry.hooks_for(phase):
            name = getattr(hook, "__qualname__", repr(hook))
            try:
                result = hook(list(active))
            except HookAbortError:
                raise
            except Exception as e:
                logger.error(f"Hook {name} failed during {phase.value}: {e}")
                raise HookAbortError(
                    f"Hook {name} failed during {phase.value}: {e}", rows=active, phase=phase
                ) from e

            if result is False:
                logger.info(f"Hook {name} vetoed the batch during {phase.value}")
                raise HookAbortError(
                    f"Hook {name} vetoed the batch during {phase.value}", rows=active, phase=phase
                )
            if isinstance(result, (list, tuple)):
                kept = {id(row) for row in result}
                for row in active:
                    if id(row) not in kept:
                        row.exclude()
            elif result is not None and result is not True:
                raise HookAbortError(
                    f"Hook {name} returned an unsupported value of type {type(result).__name__}",
                    rows=active,
                    phase=phase,
                )
            active = [row for row in active if not row.excluded]
            if not active:
                break

        return active

    def before(
        self,
        rows: Sequence[Row],
        after_saving: Optional[Callable[[Sequence[Row]], Any]] = None,
    ) -> None:
        """
        Fire the pre-write hooks.

        ``after_saving`` runs between before_save and the create/update
        hooks so rows changed by before_save land in the right sub-batch.
        """
        self.run(HookPhase.BEFORE_SAVE, rows)
        if after_saving is not None:
            after_saving(rows)
        self.run(HookPhase.BEFORE_CREATE, [row for row in rows if row.state is RowState.NEW])
        self.run(HookPhase.BEFORE_UPDATE, [row for row in rows if row.state is RowState.CHANGED])
        self.run(
            HookPhase.BEFORE_RESTORE,
            [row for row in rows if row.restored and row.state is RowState.CHANGED],
        )

    def after(
        self,
        created: Sequence[Row],
        updated: Sequence[Row],
        unchanged: Sequence[Row],
    ) -> None:
        """Fire the post-write hooks for the rows actually written."""
        self.run(HookPhase.AFTER_CREATE, created)
        self.run(HookPhase.AFTER_UPDATE, updated)
        self.run(HookPhase.AFTER_RESTORE, [row for row in updated if row.restored])
        saved = sorted(list(created) + list(updated) + list(unchanged), key=lambda r: r.position)
        self.run(HookPhase.AFTER_SAVE, saved)
