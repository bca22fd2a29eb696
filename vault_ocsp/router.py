from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from attrs import frozen

from .enums import HttpMethod
from .errors import MethodNotAllowedError, MountInitializationError, MountNotFoundError
from .source import MountSource

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str], Awaitable[MountSource]]


@frozen
class MountPath:
    mount: str
    path: str


def _get_method(method: str) -> HttpMethod:
    try:
        return HttpMethod(method)
    except ValueError:
        raise MethodNotAllowedError(f"Method {method} is not allowed") from None


def split_mount_path(method: str, path: str, levels: int) -> MountPath:
    """
    Splits the request path into the PKI mount, made up of the first
    `levels` segments, and the rest of the path.
    """
    assert levels >= 1
    parts = path.strip("/").split("/")

    match _get_method(method):
        case HttpMethod.GET:
            # The OCSP request is base64 encoded in the path,
            # so there must be at least one part more than the mount.
            if len(parts) <= levels:
                raise MountNotFoundError(
                    f"Not enough parts ({len(parts)}) in URL path to fulfill "
                    f"GET request with {levels} level(s) for PKI mount"
                )
        case HttpMethod.POST:
            if len(parts) != levels:
                raise MountNotFoundError(
                    f"Unexpected number of parts ({len(parts)}) in URL path to "
                    f"fulfill POST request with {levels} level(s) for PKI mount"
                )

    mount_path = MountPath("/".join(parts[:levels]), "/".join(parts[levels:]))
    logger.debug(
        "Extracted PKI mount '%s' using %d level(s), remaining path is '%s'",
        mount_path.mount,
        levels,
        mount_path.path,
    )
    return mount_path


class MountRegistry:
    """
    Keeps one MountSource per PKI mount, created on first use.

    Sources that fail to be created are not remembered, so
    the next request for the same mount will try again.
    """

    def __init__(self, source_factory: SourceFactory) -> None:
        self._source_factory = source_factory
        self._sources: dict[str, MountSource] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, mount: str) -> bool:
        return mount in self._sources

    def get(self, mount: str) -> MountSource | None:
        return self._sources.get(mount)

    async def resolve(self, mount: str) -> MountSource:
        if (source := self._sources.get(mount)) is not None:
            return source

        # Concurrent requests for a new mount wait for the first one,
        # so that we only fetch the CA certificate once.
        lock = self._locks.setdefault(mount, asyncio.Lock())
        self._lock_users[mount] = self._lock_users.get(mount, 0) + 1
        try:
            async with lock:
                if (source := self._sources.get(mount)) is not None:
                    return source

                logger.debug("Creating Vault source for PKI mount '%s'", mount)
                source = await self._source_factory(mount)
                logger.debug("Successfully created Vault source for PKI mount '%s'", mount)
                return self._sources.setdefault(mount, source)
        finally:
            # Waiters woken by a failed attempt must find the same lock
            # as requests arriving after it.
            self._lock_users[mount] -= 1
            if not self._lock_users[mount]:
                del self._lock_users[mount]
                del self._locks[mount]


@frozen
class MountRouter:
    """
    Maps a request to the source for its PKI mount.

    With `levels` set to 0, every request goes to `default_mount`,
    and the whole path is left for the OCSP request.
    """

    registry: MountRegistry
    levels: int
    default_mount: str

    def route(self, method: str, path: str) -> MountPath:
        if self.levels == 0:
            _get_method(method)
            return MountPath(self.default_mount, path.lstrip("/"))
        return split_mount_path(method, path, self.levels)

    async def dispatch(self, method: str, path: str) -> tuple[MountSource, str]:
        logger.info("Incoming %s request on: %s", method, path)
        mount_path = self.route(method, path)

        try:
            source = await self.registry.resolve(mount_path.mount)
        except MountInitializationError as error:
            logger.error(
                "Vault source initialization failed for mount '%s': %s",
                mount_path.mount,
                error,
            )
            raise MountNotFoundError(
                f"Could not set up PKI mount '{mount_path.mount}'"
            ) from error

        return source, mount_path.path
