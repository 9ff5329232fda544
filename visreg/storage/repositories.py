"""JSON-file backed document repositories for projects, baselines, runs and results."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Generic, Iterable, Optional, TypeVar

from pydantic import BaseModel

from visreg.errors import NotFoundError
from visreg.models.config import MaskConfig
from visreg.models.project import Baseline, BaselineMetadata, Project
from visreg.models.test_result import TestResult
from visreg.models.test_run import TestRun

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class JsonRepository(Generic[T]):
    """In-memory store of pydantic records, written through to a JSON file when a path is set.

    Mutations hold a lock so async callers can push writes to a worker thread.
    """

    model_cls: type[T]
    label: str = "record"

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._items: dict[str, T] = {}
        self._lock = threading.RLock()
        self.load()

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            self._items = {key: self.model_cls.model_validate(value) for key, value in data.items()}
            logger.debug("Loaded %d %s(s) from %s", len(self._items), self.label, self.path)
        except Exception as e:
            logger.warning("Failed to load %s store %s: %s. Starting empty.", self.label, self.path, e)
            self._items = {}

    def save(self) -> None:
        if self.path is None:
            return
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                key: item.model_dump(mode="json", by_alias=True) for key, item in self._items.items()
            }
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            tmp.replace(self.path)

    def create(self, item: T) -> T:
        item_id = getattr(item, "id")
        with self._lock:
            if item_id in self._items:
                raise ValueError(f"{self.label} {item_id} already exists")
            self._items[item_id] = item
            self.save()
        return item

    def update(self, item: T) -> T:
        with self._lock:
            self._items[getattr(item, "id")] = item
            self.save()
        return item

    def get(self, item_id: str) -> Optional[T]:
        return self._items.get(item_id)

    def require(self, item_id: str) -> T:
        item = self._items.get(item_id)
        if item is None:
            raise NotFoundError(f"{self.label} {item_id} not found")
        return item

    def list(self, predicate: Optional[Callable[[T], bool]] = None) -> list[T]:
        with self._lock:
            items: Iterable[T] = list(self._items.values())
        if predicate is not None:
            items = (i for i in items if predicate(i))
        return list(items)

    def delete(self, item_id: str) -> bool:
        with self._lock:
            if self._items.pop(item_id, None) is None:
                return False
            self.save()
        return True

    def __len__(self) -> int:
        return len(self._items)


class ProjectRepository(JsonRepository[Project]):
    model_cls = Project
    label = "project"

    def find_active(self) -> list[Project]:
        return self.list(lambda p: p.is_active)


class BaselineRepository(JsonRepository[Baseline]):
    model_cls = Baseline
    label = "baseline"

    def find_by_project(self, project_id: str, active_only: bool = False) -> list[Baseline]:
        found = self.list(
            lambda b: b.project_id == project_id and (b.is_active or not active_only)
        )
        return sorted(found, key=lambda b: (b.name, b.version))

    def find_active(self, project_id: str, name: str) -> Optional[Baseline]:
        """The authoritative baseline for (project, name): active, highest version."""
        candidates = self.list(
            lambda b: b.project_id == project_id and b.name == name and b.is_active
        )
        return max(candidates, key=lambda b: b.version, default=None)

    def find_active_by_url(self, project_id: str, url: str) -> Optional[Baseline]:
        candidates = self.list(
            lambda b: b.project_id == project_id and b.is_active and b.metadata.url == url
        )
        return max(candidates, key=lambda b: (b.version, b.created_at), default=None)

    def add_version(
        self,
        project_id: str,
        name: str,
        image: str,
        metadata: BaselineMetadata,
        mask_config: Optional[MaskConfig] = None,
        dom_snapshot: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> Baseline:
        """Create the next version for (project, name) and deactivate earlier active ones."""
        with self._lock:
            existing = self.list(lambda b: b.project_id == project_id and b.name == name)
            version = max((b.version for b in existing), default=0) + 1
            for old in existing:
                if old.is_active:
                    self._items[old.id] = old.deactivate()
            baseline = Baseline(
                project_id=project_id,
                name=name,
                image=image,
                metadata=metadata,
                mask_config=mask_config,
                dom_snapshot=dom_snapshot,
                tags=tags or [],
                version=version,
            )
            self._items[baseline.id] = baseline
            self.save()
        logger.info("Stored baseline %s v%d for project %s", name, version, project_id)
        return baseline


class TestRunRepository(JsonRepository[TestRun]):
    __test__ = False

    model_cls = TestRun
    label = "test run"

    def find_by_project(self, project_id: str) -> list[TestRun]:
        return sorted(self.list(lambda r: r.project_id == project_id), key=lambda r: r.created_at)


class TestResultRepository(JsonRepository[TestResult]):
    __test__ = False

    model_cls = TestResult
    label = "test result"

    def find_by_run(self, test_run_id: str) -> Optional[TestResult]:
        matches = self.list(lambda r: r.test_run_id == test_run_id)
        return max(matches, key=lambda r: r.created_at, default=None)
