import asyncio


class Toggle:
    """
    An synchronisation primitive that can be awaited both until set or cleared.

    For one-directional toggles, `asyncio.Event` is sufficient.
    But these events cannot be awaited until cleared, nor with a verdict
    on whether the awaited state was reached before the deadline.

    The toggles are used as gates: e.g. the "cache is synced" gate of the
    watch source, which is turned on after the first complete listing,
    and turned off if the watch source is stopped.

    The optional name is used only for hinting in reprs.
    """

    def __init__(
            self,
            __state: bool = False,
            *,
            name: str | None = None,
    ) -> None:
        super().__init__()
        self._condition = asyncio.Condition()
        self._state: bool = bool(__state)
        self._name = name

    def __repr__(self) -> str:
        clsname = self.__class__.__name__
        toggled = 'on' if self._state else 'off'
        if self._name is None:
            return f'<{clsname}: {toggled}>'
        else:
            return f'<{clsname}: {self._name}: {toggled}>'

    def __bool__(self) -> bool:
        raise NotImplementedError  # to protect against accidental misuse

    def is_on(self) -> bool:
        return self._state

    def is_off(self) -> bool:
        return not self._state

    async def turn_to(self, __state: bool) -> None:
        """ Turn the toggle on/off, and wake up the tasks waiting for that. """
        async with self._condition:
            self._state = bool(__state)
            self._condition.notify_all()

    async def wait_for(self, __state: bool, *, timeout: float | None = None) -> bool:
        """
        Wait until the toggle is turned on/off as expected (if not yet).

        Returns ``True`` if the state is reached, ``False`` if timed out.
        Without a timeout, it either returns ``True`` or never returns.
        """
        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: self._state == bool(__state)),
                    timeout=timeout)
            except asyncio.TimeoutError:
                return False
            else:
                return True

    @property
    def name(self) -> str | None:
        return self._name
