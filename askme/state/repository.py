"""Per-project session documents under ``<root>/projects``.

Layout::

    <root>/projects/<project-id>/latest.md        current document
    <root>/projects/<project-id>/latest.md.lock   transient file-lock marker
    <root>/projects/<project-id>/YYYY-MM-DD.md    archived day

``latest.md`` only ever holds sessions that started on one day. The first
invocation of a new day moves the previous day's document into its dated
archive (or appends it to an archive that already exists for that date).
"""
from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from askme.paths import askme_home, normalize_project_id, PROJECTS_DIR_NAME
from askme.state.locks import (
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_STALE_AFTER,
    DEFAULT_TIMEOUT,
    MarkerLock,
    file_lock,
)
from askme.state.logger import log_event
from askme.state.models import ProjectHistory, SessionDocument
from askme.state.persistence import atomic_write_text, read_text
from askme import template

LATEST_FILENAME = "latest.md"
DOCUMENT_SUFFIX = ".md"

T = TypeVar("T")


class SessionRepository:
    """Session document storage rooted at ``<root>/projects``.

    Args:
        root: Configuration root; defaults to ``askme_home()`` at call time
        lock_timeout: Budget for the per-document file lock (seconds)
        lock_retry: Sleep between file-lock attempts (seconds)
        stale_after: Age after which an ownerless marker is reclaimable (seconds)
    """

    def __init__(
        self,
        root: Path | str | None = None,
        *,
        lock_timeout: float = DEFAULT_TIMEOUT,
        lock_retry: float = DEFAULT_RETRY_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
    ) -> None:
        self._root = Path(root) if root is not None else None
        self.lock_timeout = lock_timeout
        self.lock_retry = lock_retry
        self.stale_after = stale_after

    @property
    def projects_dir(self) -> Path:
        root = self._root if self._root is not None else askme_home()
        return root / PROJECTS_DIR_NAME

    # ----- paths ----- #
    def project_id(self, cwd: Path | str) -> str:
        return normalize_project_id(cwd)

    def project_dir(self, cwd: Path | str) -> Path:
        """Directory for ``cwd``'s documents, created if missing."""
        directory = self.projects_dir / self.project_id(cwd)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def latest_path(self, cwd: Path | str) -> Path:
        return self.project_dir(cwd) / LATEST_FILENAME

    def archive_path(self, cwd: Path | str, date: str) -> Path:
        return self.project_dir(cwd) / f"{date}{DOCUMENT_SUFFIX}"

    # ----- locking ----- #
    def lock(self, path: Path) -> MarkerLock:
        return file_lock(path, timeout=self.lock_timeout, retry_interval=self.lock_retry, stale_after=self.stale_after)

    def with_lock(self, path: Path, fn: Callable[[], T]) -> T:
        """Run ``fn`` under the file lock for ``path``."""
        with self.lock(path):
            return fn()

    # ----- documents ----- #
    def read_latest(self, cwd: Path | str) -> str:
        return read_text(self.latest_path(cwd))

    def write_latest(self, cwd: Path | str, content: str) -> Path:
        path = self.latest_path(cwd)
        atomic_write_text(path, content)
        return path

    def archive_if_stale(self, cwd: Path | str, *, today: Optional[str] = None) -> Optional[Path]:
        """Move a previous day's ``latest`` document into its dated archive.

        Returns the archive path when something was archived, else None. Safe
        to call repeatedly; a second call on the same day changes nothing.
        """
        latest = self.latest_path(cwd)
        current_day = today or template.today()
        return self.with_lock(latest, lambda: self._archive_locked(latest, current_day))

    def _archive_locked(self, latest: Path, current_day: str) -> Optional[Path]:
        content = read_text(latest)
        if not content.strip():
            return None
        session_date = template.first_session_date(content)
        if session_date is None or session_date == current_day:
            return None

        archive = latest.with_name(f"{session_date}{DOCUMENT_SUFFIX}")
        if archive.exists():
            atomic_write_text(archive, read_text(archive) + "\n" + content)
            latest.unlink()
            mode = "merge"
        else:
            latest.replace(archive)
            mode = "rename"
        log_event(
            event="session_archived",
            component="repository",
            project=latest.parent.name,
            date=session_date,
            mode=mode,
        )
        return archive

    # ----- history ----- #
    def list_projects(self) -> List[ProjectHistory]:
        """All projects with their documents, most recently touched first."""
        base = self.projects_dir
        if not base.is_dir():
            return []
        projects = []
        for directory in base.iterdir():
            if not directory.is_dir() or directory.name.startswith("."):
                continue
            documents = self._documents(directory)
            if documents:
                projects.append(ProjectHistory(name=directory.name, path=directory, documents=documents))
        projects.sort(key=lambda project: project.last_modified, reverse=True)
        return projects

    @staticmethod
    def _documents(directory: Path) -> List[SessionDocument]:
        documents = []
        for path in directory.glob(f"*{DOCUMENT_SUFFIX}"):
            if path.name.startswith("."):
                continue
            try:
                modified = path.stat().st_mtime
            except FileNotFoundError:
                continue
            documents.append(
                SessionDocument(
                    name=path.name,
                    path=path,
                    modified_at=modified,
                    is_latest=path.name == LATEST_FILENAME,
                    session_count=template.count_sessions(read_text(path)),
                )
            )
        latest = [doc for doc in documents if doc.is_latest]
        archives = sorted((doc for doc in documents if not doc.is_latest), key=lambda doc: doc.name, reverse=True)
        return latest + archives


__all__ = ["LATEST_FILENAME", "SessionRepository"]
