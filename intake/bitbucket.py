import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from .analysis.models import DiffStat, FileChange, FileStatus
from .auth import BitbucketAuth
from .resilience import RemoteCallError, RetryConfig, safe_call

logger = logging.getLogger(__name__)

MAX_DIFFSTAT_PAGES = 50


class CommentUpdate(str, Enum):
    UPDATED = "updated"
    NOT_FOUND = "not_found"


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) and value > 0 else 0


def _check_status(response) -> None:
    if response.status >= 400:
        raise RemoteCallError(response.status, getattr(response, "reason", None) or "")


def is_unsent_error(error: BaseException) -> bool:
    """Connection never established, so the request did not reach Bitbucket"""
    return isinstance(error, (aiohttp.ClientConnectorError, ConnectionRefusedError))


def parse_diffstat_entries(entries: List[Dict]) -> List[FileChange]:
    """
    Map Bitbucket diffstat values to FileChange records.

    Removed files only carry "old", added files only "new". Entries
    without any path are dropped.
    """
    files = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        new = entry.get("new") or {}
        old = entry.get("old") or {}
        path = new.get("path") or old.get("path")
        if not path:
            logger.debug(f"Skipping diffstat entry without a path: status={entry.get('status')}")
            continue

        status = FileStatus.parse(entry.get("status"))
        files.append(
            FileChange(
                path=path,
                status=status,
                lines_added=_as_int(entry.get("lines_added")),
                lines_removed=_as_int(entry.get("lines_removed")),
                old_path=old.get("path") if status == FileStatus.RENAMED else None,
            )
        )
    return files


class BitbucketClient:
    """
    Thin Bitbucket Cloud REST client. Every request goes through safe_call,
    so callers get None instead of an exception when Bitbucket is
    unavailable.
    """

    def __init__(
        self,
        base_url: str,
        auth: BitbucketAuth,
        retry_config: Optional[RetryConfig] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.retry_config = retry_config or RetryConfig()
        self.session_factory = session_factory or self._new_session

    def _new_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.retry_config.request_timeout)
        )

    def _pr_url(self, workspace: str, repo: str, pr_id: int) -> str:
        return f"{self.base_url}/repositories/{workspace}/{repo}/pullrequests/{pr_id}"

    async def _get_json(self, url: str) -> Dict:
        async with self.session_factory() as session:
            async with session.get(url, headers=self.auth.headers()) as response:
                _check_status(response)
                return await response.json()

    async def fetch_diffstat(
        self,
        workspace: str,
        repo: str,
        pr_id: int,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Optional[DiffStat]:
        """
        Fetch per-file line deltas for a PR, following "next" links.
        Returns None if any page fails.
        """
        log = log or logger
        url = f"{self._pr_url(workspace, repo, pr_id)}/diffstat"
        files: List[FileChange] = []

        for page in range(1, MAX_DIFFSTAT_PAGES + 1):
            data = await safe_call(
                lambda page_url=url: self._get_json(page_url),
                config=self.retry_config,
                context=f"diffstat page {page}",
                log=log,
            )
            if data is None:
                log.warning(f"Diffstat unavailable for {workspace}/{repo}#{pr_id}")
                return None

            files.extend(parse_diffstat_entries(data.get("values") or []))
            url = data.get("next")
            if not url:
                break
        else:
            log.warning(f"Diffstat for {workspace}/{repo}#{pr_id} truncated at {MAX_DIFFSTAT_PAGES} pages")

        log.info(f"Fetched diffstat for {len(files)} files")
        return DiffStat(files=files)

    async def fetch_pr_title(
        self,
        workspace: str,
        repo: str,
        pr_id: int,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Optional[str]:
        data = await safe_call(
            lambda: self._get_json(self._pr_url(workspace, repo, pr_id)),
            config=self.retry_config,
            context="fetch pr title",
            log=log or logger,
        )
        if not data:
            return None
        title = data.get("title")
        return title if isinstance(title, str) and title else None

    async def create_comment(
        self,
        workspace: str,
        repo: str,
        pr_id: int,
        content: str,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Optional[str]:
        """Post a new PR comment, returning its id"""
        url = f"{self._pr_url(workspace, repo, pr_id)}/comments"

        async def _post():
            async with self.session_factory() as session:
                async with session.post(url, headers=self.auth.headers(), json={"content": {"raw": content}}) as response:
                    _check_status(response)
                    return await response.json()

        # retried only when the request never left
        data = await safe_call(
            _post,
            config=self.retry_config,
            context="create comment",
            log=log or logger,
            retryable=is_unsent_error,
        )
        if not data or data.get("id") is None:
            return None
        return str(data["id"])

    async def update_comment(
        self,
        workspace: str,
        repo: str,
        pr_id: int,
        comment_id: str,
        content: str,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Optional[CommentUpdate]:
        """
        Edit an existing comment. NOT_FOUND means the comment was deleted
        on Bitbucket's side; None means the call failed.
        """
        url = f"{self._pr_url(workspace, repo, pr_id)}/comments/{comment_id}"

        async def _put():
            async with self.session_factory() as session:
                async with session.put(url, headers=self.auth.headers(), json={"content": {"raw": content}}) as response:
                    if response.status == 404:
                        return CommentUpdate.NOT_FOUND
                    _check_status(response)
                    return CommentUpdate.UPDATED

        return await safe_call(_put, config=self.retry_config, context="update comment", log=log or logger)
