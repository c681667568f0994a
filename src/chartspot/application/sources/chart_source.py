"""Chart source provider - where the ranked (title, artist) list comes from.

Hey future me - two kinds of sources:

LocalSource:  a kworb-style JSON file shipped next to the app. We don't know
              where the process was started from (IDE, terminal, packaged
              app), so we PROBE a fixed, ordered list of candidate paths and
              take the first that exists. If that file is broken we fail with
              SourceParseError - we do NOT silently try the next candidate,
              because a broken file the user edited is something they need
              to see.

RemoteSource: the same JSON over HTTPS. Plain http:// is rejected before any
              network I/O. The body is streamed and aborted as soon as it
              crosses max_bytes - a misconfigured URL pointing at a 2GB file
              must not eat memory.

File format (both):
    [{"rank": 1, "title": "Flowers", "artist": "Miley Cyrus"}, ...]
"""

import asyncio
import logging
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

import httpx
from pydantic import TypeAdapter, ValidationError

from chartspot.config.settings import RankingSettings
from chartspot.domain.dtos import ChartEntry
from chartspot.domain.exceptions import (
    SourceNetworkError,
    SourceNotFoundError,
    SourceParseError,
    SourceTooLargeError,
)
from chartspot.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)

_ENTRIES_ADAPTER = TypeAdapter(list[ChartEntry])

# How far up from the working directory we look for docs/<filename>
ANCESTOR_SEARCH_DEPTH = 6


@dataclass(frozen=True)
class LocalSource:
    """Chart file discovered on the local filesystem."""

    filename: str = "kworb_top10.json"
    resource_dirs: tuple[Path, ...] = ()


@dataclass(frozen=True)
class RemoteSource:
    """Chart file downloaded over HTTPS."""

    url: str
    max_bytes: int = 2_000_000
    timeout: float = 12.0


ChartSource = LocalSource | RemoteSource


def decode_entries(data: bytes | str, location: str) -> list[ChartEntry]:
    """Decode and validate a chart JSON array.

    Raises:
        SourceParseError: Invalid JSON, wrong shape, or duplicate ranks
    """
    try:
        entries = _ENTRIES_ADAPTER.validate_json(data)
    except ValidationError as e:
        raise SourceParseError(
            f"Invalid chart data in {location}: {e.error_count()} error(s)",
            location=location,
        ) from e

    seen: set[int] = set()
    for entry in entries:
        if entry.rank < 1:
            raise SourceParseError(
                f"Invalid rank {entry.rank} in {location}", location=location
            )
        if entry.rank in seen:
            raise SourceParseError(
                f"Duplicate rank {entry.rank} in {location}", location=location
            )
        seen.add(entry.rank)

    return entries


def candidate_paths(
    filename: str,
    resource_dirs: Iterable[Path] = (),
    cwd: Path | None = None,
    executable: Path | None = None,
) -> list[Path]:
    """Ordered list of places a local chart file may live.

    Order:
    1. <cwd>/docs/<filename>
    2. <exe dir>/docs/<filename>, <exe dir>/../docs/<filename>
    3. <ancestor>/docs/<filename> for cwd and up to 6 parents
    4. <resource dir>/<filename>, <resource dir>/docs/<filename>

    Duplicates are dropped but order is kept.
    """
    cwd = cwd or Path.cwd()
    if executable is None and sys.argv and sys.argv[0]:
        executable = Path(sys.argv[0]).resolve()

    relative = Path("docs") / filename
    paths: list[Path] = [cwd / relative]

    if executable is not None:
        exe_dir = executable.parent
        paths.append(exe_dir / relative)
        paths.append(exe_dir.parent / relative)

    directory = cwd
    for _ in range(ANCESTOR_SEARCH_DEPTH + 1):
        paths.append(directory / relative)
        if directory.parent == directory:
            break
        directory = directory.parent

    for resource_dir in resource_dirs:
        paths.append(resource_dir / filename)
        paths.append(resource_dir / relative)

    unique: list[Path] = []
    for path in paths:
        if path not in unique:
            unique.append(path)
    return unique


class ChartSourceProvider:
    """Loads the raw chart list from a local file or a remote URL."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        cwd: Path | None = None,
        executable: Path | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            client: Explicit httpx client (tests); shared pool client otherwise
            cwd: Working directory override for local discovery (tests)
            executable: Executable path override for local discovery (tests)
        """
        self._client = client
        self._cwd = cwd
        self._executable = executable

    @staticmethod
    def local_from_settings(settings: RankingSettings) -> LocalSource:
        return LocalSource(
            filename=settings.local_filename,
            resource_dirs=tuple(settings.resource_dirs),
        )

    async def fetch(self, source: ChartSource) -> list[ChartEntry]:
        """Load chart entries from source.

        Raises:
            SourceNotFoundError: No local candidate exists
            SourceParseError: Found but undecodable
            SourceNetworkError: Remote transport failure or non-2xx status
            SourceTooLargeError: Remote body over the byte budget
        """
        if isinstance(source, RemoteSource):
            return await self.fetch_remote(source)
        return await self.fetch_local(source)

    async def fetch_local(self, source: LocalSource) -> list[ChartEntry]:
        candidates = candidate_paths(
            source.filename,
            source.resource_dirs,
            cwd=self._cwd,
            executable=self._executable,
        )

        for candidate in candidates:
            if not candidate.is_file():
                continue

            try:
                data = await asyncio.to_thread(candidate.read_bytes)
            except OSError as e:
                raise SourceParseError(
                    f"Cannot read chart file {candidate}: {e}", location=str(candidate)
                ) from e

            entries = decode_entries(data, str(candidate))
            logger.info("Loaded %d chart entries from %s", len(entries), candidate)
            return entries

        raise SourceNotFoundError(source.filename, searched=len(candidates))

    async def fetch_remote(self, source: RemoteSource) -> list[ChartEntry]:
        try:
            scheme = urlsplit(source.url).scheme.lower()
        except ValueError as e:
            raise SourceNetworkError(
                f"Malformed chart URL: {e}", url=source.url, status_code=400
            ) from e

        if scheme != "https":
            # Rejected before touching the network
            raise SourceNetworkError(
                f"Only HTTPS chart URLs are allowed, got '{scheme or 'none'}'",
                url=source.url,
                status_code=400,
            )

        client = self._client or await HttpClientPool.get_client()
        body = bytearray()
        try:
            async with client.stream("GET", source.url, timeout=source.timeout) as response:
                if not response.is_success:
                    raise SourceNetworkError(
                        f"Remote chart returned HTTP {response.status_code}",
                        url=source.url,
                        status_code=response.status_code,
                    )

                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > source.max_bytes:
                    raise SourceTooLargeError(source.url, source.max_bytes)

                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > source.max_bytes:
                        raise SourceTooLargeError(source.url, source.max_bytes)
        # InvalidURL is not an HTTPError
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SourceNetworkError(
                f"Failed to download remote chart: {e}", url=source.url
            ) from e

        entries = decode_entries(bytes(body), source.url)
        logger.info("Loaded %d chart entries from %s", len(entries), source.url)
        return entries
