"""Azure DevOps status and result codes as closed enums."""

import re
from enum import IntEnum
from typing import Any

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


class _UpstreamEnum(IntEnum):
    """
    Base for upstream integer enums.

    The SDK reports these either as the REST integer code or as a camelCase
    name ("partiallySucceeded"); ``parse`` accepts both and maps anything
    unknown to the zero member.
    """

    @classmethod
    def parse(cls, value: Any) -> "_UpstreamEnum":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls(0)
        if isinstance(value, bool):
            return cls(0)
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls(0)
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                return cls.parse(int(text))
            name = _CAMEL_BOUNDARY.sub("_", text).upper()
            return cls.__members__.get(name, cls(0))
        return cls(0)


class PullRequestStatus(_UpstreamEnum):
    NOT_SET = 0
    ACTIVE = 1
    ABANDONED = 2
    COMPLETED = 3


class BuildStatus(_UpstreamEnum):
    NONE = 0
    IN_PROGRESS = 1
    COMPLETED = 2
    CANCELLING = 4
    POSTPONED = 8
    NOT_STARTED = 32


class BuildResult(_UpstreamEnum):
    NONE = 0
    SUCCEEDED = 2
    PARTIALLY_SUCCEEDED = 4
    FAILED = 8
    CANCELED = 32
