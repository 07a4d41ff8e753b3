"""Caller-supplied confirmation and choice hooks."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Union

ConfirmHook = Callable[[str], Union[bool, Awaitable[bool]]]
ChooseHook = Callable[[str, Sequence[str]], Union[str, Awaitable[str]]]


@dataclass(frozen=True)
class Interaction:
    """Hooks may be plain or async callables; a missing hook never asks."""

    confirm: ConfirmHook | None = None
    choose: ChooseHook | None = None

    async def ask_confirm(self, message: str) -> bool:
        if self.confirm is None:
            return True
        answer = self.confirm(message)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def ask_choice(self, message: str, options: Sequence[str]) -> str:
        if len(options) == 1 or self.choose is None:
            return options[0]
        answer = self.choose(message, options)
        if inspect.isawaitable(answer):
            answer = await answer
        return answer
