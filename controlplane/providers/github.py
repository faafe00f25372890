"""GitHub adapter: mirrors one branch of a repository via the git trees API."""

from __future__ import annotations

import logging
import mimetypes
import re
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import quote

from controlplane.providers.base import (
    Provider,
    RemoteContent,
    RemoteEntry,
    RemoteTree,
    content_length_of,
    join_path,
    parse_size,
    raise_for_provider_status,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
SUBMODULE_MIME_TYPE = "application/x-git-submodule"
_DEFAULT_MIME_TYPE = "application/octet-stream"
_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class RepoRef:
    """A repository and the branch (or other ref) being mirrored."""

    owner: str
    repo: str
    ref: str

    @property
    def api_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"


def parse_root_id(root_id: str) -> RepoRef:
    """Parse ``owner/repo`` or ``owner/repo@ref``.

    Raises ValueError for malformed ids. Without a ref the default branch
    (``HEAD``) is mirrored.
    """
    repo_part, _, ref = root_id.partition("@")
    owner, sep, repo = repo_part.partition("/")
    if not sep or not _NAME_RE.match(owner) or not _NAME_RE.match(repo):
        msg = f"Invalid GitHub repository id: {root_id!r}"
        raise ValueError(msg)
    if ref and (".." in ref or ref.startswith("/") or any(c.isspace() for c in ref)):
        msg = f"Invalid GitHub ref: {ref!r}"
        raise ValueError(msg)
    return RepoRef(owner=owner, repo=repo, ref=ref or "HEAD")


def guess_mime_type(path: str) -> str:
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or _DEFAULT_MIME_TYPE


class GitHubAdapter:
    """List and download the files of one repository branch.

    Entry ids are repository-relative paths (stable across commits); the blob
    SHA is the content fingerprint.
    """

    provider = Provider.GITHUB
    unsupported_placeholder = "Git submodules are not synced."

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        base_url: str = GITHUB_API_URL,
    ) -> None:
        self._client = client
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        self._base_url = base_url.rstrip("/")

    def is_unsupported(self, mime_type: str) -> bool:
        return mime_type == SUBMODULE_MIME_TYPE

    async def _get_tree(self, repo: RepoRef, tree_sha: str) -> list[dict[str, object]]:
        resp = await self._client.get(
            f"{self._base_url}{repo.api_path}/git/trees/{quote(tree_sha, safe='')}",
            headers=self._headers,
        )
        raise_for_provider_status(resp, "Listing GitHub tree")
        data = resp.json()
        return list(data.get("tree") or [])

    async def list_tree(self, root_id: str) -> RemoteTree:
        repo = parse_root_id(root_id)
        tree = RemoteTree()
        queue: deque[tuple[str, str]] = deque([(repo.ref, "")])
        while queue:
            tree_sha, tree_path = queue.popleft()
            if tree_path:
                tree.directories.append(tree_path)
            for item in await self._get_tree(repo, tree_sha):
                name = str(item.get("path", ""))
                item_path = join_path(tree_path, name)
                item_type = item.get("type")
                if item_type == "tree":
                    queue.append((str(item["sha"]), item_path))
                    continue
                mime_type = (
                    SUBMODULE_MIME_TYPE if item_type == "commit" else guess_mime_type(name)
                )
                tree.entries.append(
                    RemoteEntry(
                        id=item_path,
                        name=name,
                        path=item_path,
                        mime_type=mime_type,
                        size=parse_size(item.get("size")),
                        modified_time=None,
                        content_fingerprint=str(item["sha"]) if item.get("sha") else None,
                    )
                )
        logger.debug(
            "Listed %s/%s@%s: %d files", repo.owner, repo.repo, repo.ref, len(tree.entries)
        )
        return tree

    @asynccontextmanager
    async def fetch_content(self, root_id: str, entry_id: str) -> AsyncIterator[RemoteContent]:
        repo = parse_root_id(root_id)
        headers = {**self._headers, "Accept": "application/vnd.github.raw"}
        async with self._client.stream(
            "GET",
            f"{self._base_url}{repo.api_path}/contents/{quote(entry_id, safe='/')}",
            params={"ref": repo.ref},
            headers=headers,
        ) as resp:
            raise_for_provider_status(resp, "Downloading GitHub file")
            yield RemoteContent(
                chunks=resp.aiter_bytes(),
                size=content_length_of(resp),
                content_type=guess_mime_type(entry_id),
            )
