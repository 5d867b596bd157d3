"""HTTP implementation of the ArchiveDownloader port."""

import asyncio
import contextlib
from pathlib import Path
from typing import AsyncGenerator, Generator, Optional

import httpx
from tqdm import tqdm

from ..application.domain import ArchiveDownloader, DownloadedArchive, SessionContext
from ..application.exceptions import DownloadError

from .base_client import BaseClient
from .decorators import BackoffPolicy, call_with_backoff, is_retryable
from .page_models import DownloadForm, DownloadSelection


class HttpArchiveDownloader(BaseClient, ArchiveDownloader):
    """
    A downloader that streams archives to disk atomically.

    With a session context it replays the export form's download button
    as a postback, which is the only trigger the source supports; without
    one it issues a plain GET.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str,
        timeout: float,
        chunk_size: int,
        retry_policy: Optional[BackoffPolicy] = None,
        selection: Optional[DownloadSelection] = None,
        show_progress: bool = True,
    ):
        """Initializes the archive downloader."""
        super().__init__(client, user_agent, timeout, retry_policy)
        self.chunk_size = chunk_size
        self.selection = selection or DownloadSelection()
        self.show_progress = show_progress

    @contextlib.contextmanager
    def _atomic_target(self, destination: Path) -> Generator[Path, None, None]:
        """Yields a sibling `.part` path and removes any leftover on exit."""
        part_path = destination.with_suffix(destination.suffix + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            yield part_path
        finally:
            part_path.unlink(missing_ok=True)

    async def _stream_chunks(
        self, response: httpx.Response, target_file: Path,
    ) -> AsyncGenerator[int, None]:
        """Writes response chunks to a file, yielding the size of each."""
        with open(target_file, "wb") as f:
            async for chunk in response.aiter_bytes(self.chunk_size):
                await asyncio.to_thread(f.write, chunk)
                yield len(chunk)

    async def _consume_stream_with_progress(
        self,
        stream: AsyncGenerator[int, None],
        total_size: Optional[int],
        desc: str,
    ) -> int:
        """Drains the chunk stream into a progress bar and checks the total size."""

        with tqdm(
            total=total_size,
            unit="B",
            unit_scale=True,
            desc=desc,
            disable=not self.show_progress,
        ) as progress_bar:
            written = 0
            async for progress in stream:
                written += progress
                progress_bar.update(progress)

        if total_size and written != total_size:
            raise DownloadError(f"Size mismatch: {written} != {total_size}")
        return written

    def _build_request(
        self, target: str, session: Optional[SessionContext]
    ) -> httpx.Request:
        if session is None:
            return self.client.build_request(
                "GET", target, headers=self._headers(), timeout=self.timeout
            )

        form = DownloadForm.build(session, self.selection)
        self.logger.info("Submitting ASP.NET form postback for the archive.")
        return self.client.build_request(
            "POST",
            target,
            data=form.to_form_data(),
            headers=self._headers(
                {"Content-Type": "application/x-www-form-urlencoded"}
            ),
            timeout=self.timeout,
        )

    @staticmethod
    def _expected_size(response: httpx.Response) -> Optional[int]:
        """Content-Length only describes the decoded body when unencoded."""
        if response.headers.get("Content-Encoding"):
            return None
        length = response.headers.get("Content-Length")
        return int(length) if length and length.isdigit() else None

    async def _stream_from_network(
        self, target: str, session: Optional[SessionContext], target_file: Path
    ) -> int:
        """Sends the request and streams its body into the part file."""
        request = self._build_request(target, session)
        response = await self.client.send(request, stream=True)
        try:
            response.raise_for_status()
            stream = self._stream_chunks(response, target_file)
            return await self._consume_stream_with_progress(
                stream, self._expected_size(response), target_file.name
            )
        finally:
            await response.aclose()

    async def _execute_atomic_download(
        self, target: str, destination: Path, session: Optional[SessionContext]
    ) -> int:
        """Orchestrate one atomic download attempt, translating failures."""
        self.logger.info(f"Downloading {destination.name} from {target}...")
        try:
            with self._atomic_target(destination) as part_path:
                size = await self._stream_from_network(target, session, part_path)
                part_path.replace(destination)
        except httpx.HTTPStatusError as e:
            raise DownloadError(
                f"Archive request returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise DownloadError(
                f"Archive transfer failed: {type(e).__name__}: {e}",
                retryable=is_retryable(e),
            ) from e
        except OSError as e:
            raise DownloadError(f"Could not write {destination}: {e}") from e

        self.logger.info(
            f"Finished downloading {destination.name} "
            f"({size / 1024 / 1024:.2f} MB)"
        )
        return size

    async def download_file(
        self,
        target: str,
        destination: Path,
        session: Optional[SessionContext] = None,
        overwrite: bool = False,
    ) -> DownloadedArchive:
        """
        Makes sure the archive is on disk, fetching it only when needed.

        This is the public method that fulfills the ArchiveDownloader port
        contract. The body is streamed straight to a '.part' file, so memory
        use does not depend on the archive size, and only a complete transfer
        is moved into place.

        Args:
            target: The URL to download from.
            destination: The final desired path for the file.
            session: Captured form state; selects the POST trigger.
            overwrite: Re-download even if the destination already exists.

        Returns:
            A DownloadedArchive describing the file on disk.

        Raises:
            DownloadError: If the transfer fails after all retries, or
                the server rejects the request.
        """

        if destination.exists() and not overwrite:
            self.logger.info(
                f"Archive {destination.name} already exists. Skipping download."
            )
        else:
            await call_with_backoff(
                self._execute_atomic_download,
                target,
                destination,
                session,
                policy=self.retry_policy,
            )

        return DownloadedArchive(
            path=destination, byte_size=destination.stat().st_size
        )
