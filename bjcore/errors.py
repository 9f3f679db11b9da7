"""Exceptions raised by the table core."""


class TableError(Exception):
    """Base class for table core errors."""


class AdapterConfigurationError(TableError):
    """The host adapter is missing capabilities an action needs."""

    def __init__(self, action: str, missing: list[str]) -> None:
        self.action = action
        self.missing = list(missing)
        names = ", ".join(self.missing)
        super().__init__(f"Adapter cannot run {action}: missing {names}")


class UnknownActionError(TableError, ValueError):
    """An action name outside the fixed action set was dispatched."""

    def __init__(self, action: object) -> None:
        self.action = action
        super().__init__(f"Unknown action type: {action!r}")
