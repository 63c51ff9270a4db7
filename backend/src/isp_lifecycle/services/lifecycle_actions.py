"""Strategies deciding whether suspend/resume decisions touch the network."""
import inspect
from typing import Awaitable, Callable, Protocol, Union

from isp_lifecycle.schemas.account import Account

# Callbacks may be plain functions or coroutines returning whether the effect took hold
AccountCallback = Callable[[str, Account], Union[bool, Awaitable[bool]]]


class LifecycleActions(Protocol):
    """Side-effecting half of the suspend/resume state machine."""

    applies_effects: bool

    async def suspend(self, account_id: str, account: Account) -> bool:
        ...

    async def resume(self, account_id: str, account: Account) -> bool:
        ...


class DecisionOnlyActions:
    """
    Record decisions without attempting any real-world effect.

    Callers check ``applies_effects`` and log such decisions as pending.
    """

    applies_effects = False

    async def suspend(self, account_id: str, account: Account) -> bool:
        return False

    async def resume(self, account_id: str, account: Account) -> bool:
        return False


class EnforcingActions:
    """
    Apply decisions through caller-supplied callbacks.

    A callback returning False, or raising, means the effect (e.g. disabling
    the subscriber's PPPoE secret) did not take hold.
    """

    applies_effects = True

    def __init__(self, suspend: AccountCallback, resume: AccountCallback):
        self._suspend = suspend
        self._resume = resume

    async def suspend(self, account_id: str, account: Account) -> bool:
        return await _call(self._suspend, account_id, account)

    async def resume(self, account_id: str, account: Account) -> bool:
        return await _call(self._resume, account_id, account)


async def _call(callback: AccountCallback, account_id: str, account: Account) -> bool:
    result = callback(account_id, account)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)
