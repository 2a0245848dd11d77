"""
Post-Commit Hooks

Secondary effects that follow a successful write (value history entries,
net worth snapshots). They are best effort: each hook runs on its own,
a failing hook is logged and the remaining hooks still run, and nothing
a hook does can undo or fail the primary write.
"""

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Hook = Callable[..., Awaitable[Any]]


class PostCommitHooks:
    """Ordered list of async callables run after a primary write commits."""

    def __init__(self) -> None:
        self._hooks: list[tuple[str, Hook]] = []

    def register(self, name: str, hook: Hook) -> None:
        self._hooks.append((name, hook))

    def __len__(self) -> int:
        return len(self._hooks)

    async def run(self, **context: Any) -> list[str]:
        """
        Run every hook with the same keyword context.

        Returns:
            Names of the hooks that failed
        """
        failed = []
        for name, hook in self._hooks:
            try:
                await hook(**context)
            except Exception as e:
                failed.append(name)
                logger.error(f"Post-commit hook '{name}' failed: {str(e)}", exc_info=True)
        return failed
