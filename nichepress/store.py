"""
Keyword graph store.

The pipeline only depends on the KeywordGraphStore contract. Two
implementations ship with the package:

- InMemoryGraphStore: id-indexed arenas of niches, keyword nodes, articles
  and exploration logs. Used by tests and single-process runs.
- JsonFileGraphStore: the same arenas, flushed to a JSON file after every
  committed write. Used by the CLI.

Atomicity: save_all, save_log, and every block run inside transaction()
either apply completely or not at all.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from .exceptions import (
    DuplicateKeywordError,
    DuplicateNicheError,
    InvalidStatusTransition,
    KeywordNotFoundError,
    NicheNotFoundError,
)
from .models import (
    QUALIFICATION_THRESHOLD,
    Article,
    ExplorationLog,
    KeywordNode,
    KeywordStatus,
    Niche,
)

logger = logging.getLogger(__name__)


class KeywordGraphStore(ABC):
    """Persistence contract consumed by the discovery engine and the pipeline."""

    # ---- niches ----

    @abstractmethod
    def add_niche(self, niche: Niche) -> Niche: ...

    @abstractmethod
    def get_niche(self, niche_id: int) -> Optional[Niche]: ...

    @abstractmethod
    def find_niche_by_name(self, name: str) -> Optional[Niche]: ...

    @abstractmethod
    def list_niches(self) -> list[Niche]: ...

    @abstractmethod
    def update_niche(self, niche: Niche) -> Niche: ...

    @abstractmethod
    def delete_niche(self, niche_id: int) -> None: ...

    # ---- keyword nodes ----

    @abstractmethod
    def exists_by_phrase(self, keyword: str) -> bool: ...

    @abstractmethod
    def find_by_phrase(self, keyword: str) -> Optional[KeywordNode]: ...

    @abstractmethod
    def get_keyword(self, keyword_id: int) -> Optional[KeywordNode]: ...

    @abstractmethod
    def find_keywords_by_niche(
        self,
        niche_id: int,
        status: Optional[KeywordStatus] = None,
        depth: Optional[int] = None,
    ) -> list[KeywordNode]: ...

    @abstractmethod
    def find_unwritten_qualified(self, niche_id: int) -> list[KeywordNode]:
        """UNWRITTEN nodes scoring at least the threshold, best score first, shallow first on ties."""

    @abstractmethod
    def save_keyword(self, node: KeywordNode) -> KeywordNode: ...

    @abstractmethod
    def save_all(self, nodes: list[KeywordNode]) -> list[KeywordNode]: ...

    @abstractmethod
    def count_keywords(self, niche_id: int, status: Optional[KeywordStatus] = None) -> int: ...

    @abstractmethod
    def max_depth(self, niche_id: int) -> Optional[int]: ...

    # ---- articles ----

    @abstractmethod
    def save_article(self, article: Article) -> Article: ...

    @abstractmethod
    def find_articles_by_niche(self, niche_id: int) -> list[Article]: ...

    @abstractmethod
    def find_article_by_keyword(self, keyword_id: int) -> Optional[Article]: ...

    @abstractmethod
    def count_articles(self, niche_id: int) -> int: ...

    # ---- exploration logs ----

    @abstractmethod
    def save_log(self, log: ExplorationLog) -> ExplorationLog: ...

    @abstractmethod
    def find_recent_logs(self, niche_id: int, limit: int = 5) -> list[ExplorationLog]: ...

    # ---- units of work ----

    @abstractmethod
    def transaction(self):
        """Context manager: all writes inside it are applied together or rolled back."""


class InMemoryGraphStore(KeywordGraphStore):
    """Arena-backed store. Every record is indexed by an integer id."""

    def __init__(self):
        self._niches: dict[int, Niche] = {}
        self._keywords: dict[int, KeywordNode] = {}
        self._articles: dict[int, Article] = {}
        self._logs: dict[int, ExplorationLog] = {}
        self._phrase_index: dict[str, int] = {}
        self._next_id = {"niche": 1, "keyword": 1, "article": 1, "log": 1}
        self._depth = 0

    # ---- transactions ----

    def _snapshot(self) -> dict:
        return {
            "niches": dict(self._niches),
            "keywords": {k: v.model_copy() for k, v in self._keywords.items()},
            "articles": dict(self._articles),
            "logs": dict(self._logs),
            "phrase_index": dict(self._phrase_index),
            "next_id": dict(self._next_id),
        }

    def _restore(self, snapshot: dict) -> None:
        self._niches = snapshot["niches"]
        self._keywords = snapshot["keywords"]
        self._articles = snapshot["articles"]
        self._logs = snapshot["logs"]
        self._phrase_index = snapshot["phrase_index"]
        self._next_id = snapshot["next_id"]

    @contextmanager
    def transaction(self) -> Iterator["InMemoryGraphStore"]:
        snapshot = self._snapshot() if self._depth == 0 else None
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if snapshot is not None:
                self._restore(snapshot)
                logger.debug("Store transaction rolled back")
            raise
        self._depth -= 1
        if self._depth == 0:
            self._commit()

    def _commit(self) -> None:
        """Hook for durable stores; called once per outermost committed unit."""

    def _allocate(self, kind: str) -> int:
        new_id = self._next_id[kind]
        self._next_id[kind] += 1
        return new_id

    @staticmethod
    def _phrase_key(keyword: str) -> str:
        return keyword.strip()

    # ---- niches ----

    def add_niche(self, niche: Niche) -> Niche:
        with self.transaction():
            if self.find_niche_by_name(niche.name) is not None:
                raise DuplicateNicheError(niche.name)
            stored = niche.model_copy(update={"id": self._allocate("niche")})
            self._niches[stored.id] = stored
        return stored.model_copy()

    def get_niche(self, niche_id: int) -> Optional[Niche]:
        niche = self._niches.get(niche_id)
        return niche.model_copy() if niche else None

    def find_niche_by_name(self, name: str) -> Optional[Niche]:
        for niche in self._niches.values():
            if niche.name == name:
                return niche.model_copy()
        return None

    def list_niches(self) -> list[Niche]:
        return [n.model_copy() for _, n in sorted(self._niches.items())]

    def update_niche(self, niche: Niche) -> Niche:
        if niche.id is None or niche.id not in self._niches:
            raise NicheNotFoundError(niche.id)
        with self.transaction():
            clash = self.find_niche_by_name(niche.name)
            if clash is not None and clash.id != niche.id:
                raise DuplicateNicheError(niche.name)
            self._niches[niche.id] = niche.model_copy()
        return niche.model_copy()

    def delete_niche(self, niche_id: int) -> None:
        if niche_id not in self._niches:
            raise NicheNotFoundError(niche_id)
        with self.transaction():
            del self._niches[niche_id]
            removed = {k for k, v in self._keywords.items() if v.niche_id == niche_id}
            for keyword_id in removed:
                self._phrase_index.pop(self._phrase_key(self._keywords[keyword_id].keyword), None)
                del self._keywords[keyword_id]
            # Nodes of other niches may hang off a removed node: detach them
            for keyword_id, node in self._keywords.items():
                if node.parent_id in removed:
                    self._keywords[keyword_id] = node.model_copy(update={"parent_id": None})
            for article_id in [a for a, v in self._articles.items() if v.niche_id == niche_id]:
                del self._articles[article_id]
            for log_id in [i for i, v in self._logs.items() if v.niche_id == niche_id]:
                del self._logs[log_id]
        logger.info(f"Deleted niche {niche_id} with its keywords, articles and logs")

    # ---- keyword nodes ----

    def exists_by_phrase(self, keyword: str) -> bool:
        return self._phrase_key(keyword) in self._phrase_index

    def find_by_phrase(self, keyword: str) -> Optional[KeywordNode]:
        keyword_id = self._phrase_index.get(self._phrase_key(keyword))
        return self.get_keyword(keyword_id) if keyword_id is not None else None

    def get_keyword(self, keyword_id: int) -> Optional[KeywordNode]:
        node = self._keywords.get(keyword_id)
        return node.model_copy() if node else None

    def find_keywords_by_niche(
        self,
        niche_id: int,
        status: Optional[KeywordStatus] = None,
        depth: Optional[int] = None,
    ) -> list[KeywordNode]:
        return [
            node.model_copy()
            for _, node in sorted(self._keywords.items())
            if node.niche_id == niche_id
            and (status is None or node.status == status)
            and (depth is None or node.depth_level == depth)
        ]

    def find_unwritten_qualified(self, niche_id: int) -> list[KeywordNode]:
        candidates = [
            node
            for node in self.find_keywords_by_niche(niche_id, status=KeywordStatus.UNWRITTEN)
            if node.qualification_score is not None and node.qualification_score >= QUALIFICATION_THRESHOLD
        ]
        return sorted(candidates, key=lambda n: (-n.qualification_score, n.depth_level))

    def _check_node(self, node: KeywordNode) -> None:
        if node.niche_id not in self._niches:
            raise NicheNotFoundError(node.niche_id)

        owner = self._phrase_index.get(self._phrase_key(node.keyword))
        if owner is not None and owner != node.id:
            raise DuplicateKeywordError(node.keyword)

        if node.id is not None and node.id in self._keywords:
            current = self._keywords[node.id]
            allowed = {current.status}
            if current.status == KeywordStatus.UNWRITTEN:
                allowed.add(KeywordStatus.WRITTEN)
            if node.status not in allowed:
                raise InvalidStatusTransition(
                    f"Keyword '{current.keyword}' is {current.status.value} and cannot become {node.status.value}"
                )

        # Parent links must point at existing nodes and never loop back
        seen = {node.id} if node.id is not None else set()
        parent_id = node.parent_id
        while parent_id is not None:
            if parent_id in seen:
                raise ValueError(f"Keyword '{node.keyword}' would become its own ancestor")
            parent = self._keywords.get(parent_id)
            if parent is None:
                raise KeywordNotFoundError(parent_id)
            seen.add(parent_id)
            parent_id = parent.parent_id

    def _put_keyword(self, node: KeywordNode) -> KeywordNode:
        self._check_node(node)
        if node.id is None:
            node = node.model_copy(update={"id": self._allocate("keyword")})
        else:
            previous = self._keywords.get(node.id)
            if previous is not None and previous.keyword != node.keyword:
                self._phrase_index.pop(self._phrase_key(previous.keyword), None)
            node = node.model_copy()
        self._keywords[node.id] = node
        self._phrase_index[self._phrase_key(node.keyword)] = node.id
        return node.model_copy()

    def save_keyword(self, node: KeywordNode) -> KeywordNode:
        with self.transaction():
            return self._put_keyword(node)

    def save_all(self, nodes: list[KeywordNode]) -> list[KeywordNode]:
        with self.transaction():
            return [self._put_keyword(node) for node in nodes]

    def count_keywords(self, niche_id: int, status: Optional[KeywordStatus] = None) -> int:
        return len(self.find_keywords_by_niche(niche_id, status=status))

    def max_depth(self, niche_id: int) -> Optional[int]:
        depths = [n.depth_level for n in self._keywords.values() if n.niche_id == niche_id]
        return max(depths) if depths else None

    # ---- articles ----

    def save_article(self, article: Article) -> Article:
        with self.transaction():
            node = self._keywords.get(article.keyword_id)
            if node is None:
                raise KeywordNotFoundError(article.keyword_id)
            existing = self.find_article_by_keyword(article.keyword_id)
            if existing is not None and existing.id != article.id:
                raise InvalidStatusTransition(f"Keyword '{node.keyword}' already has an article")
            if article.id is None:
                article = article.model_copy(update={"id": self._allocate("article")})
            self._articles[article.id] = article.model_copy()
        return article.model_copy()

    def find_articles_by_niche(self, niche_id: int) -> list[Article]:
        articles = [a.model_copy() for a in self._articles.values() if a.niche_id == niche_id]
        return sorted(articles, key=lambda a: (a.created_at, a.id), reverse=True)

    def find_article_by_keyword(self, keyword_id: int) -> Optional[Article]:
        for article in self._articles.values():
            if article.keyword_id == keyword_id:
                return article.model_copy()
        return None

    def count_articles(self, niche_id: int) -> int:
        return sum(1 for a in self._articles.values() if a.niche_id == niche_id)

    # ---- exploration logs ----

    def save_log(self, log: ExplorationLog) -> ExplorationLog:
        if log.niche_id not in self._niches:
            raise NicheNotFoundError(log.niche_id)
        if log.id is not None:
            raise ValueError("Exploration logs are append-only")
        with self.transaction():
            stored = log.model_copy(update={"id": self._allocate("log")})
            self._logs[stored.id] = stored
        return stored

    def find_recent_logs(self, niche_id: int, limit: int = 5) -> list[ExplorationLog]:
        logs = [log for log in self._logs.values() if log.niche_id == niche_id]
        logs.sort(key=lambda log: (log.executed_at, log.id), reverse=True)
        return logs[:limit]


class JsonFileGraphStore(InMemoryGraphStore):
    """
    InMemoryGraphStore persisted to a single JSON file.

    The file is rewritten (via a temp file and rename) after every committed
    unit of work, so a crash never leaves a half-written store.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        self._niches = {n["id"]: Niche.model_validate(n) for n in data.get("niches", [])}
        self._keywords = {k["id"]: KeywordNode.model_validate(k) for k in data.get("keywords", [])}
        self._articles = {a["id"]: Article.model_validate(a) for a in data.get("articles", [])}
        self._logs = {g["id"]: ExplorationLog.model_validate(g) for g in data.get("logs", [])}
        self._phrase_index = {self._phrase_key(k.keyword): k.id for k in self._keywords.values()}
        self._next_id = copy.deepcopy(data.get("next_id", self._next_id))
        logger.info(
            f"Loaded store from {self.path}: {len(self._niches)} niches, "
            f"{len(self._keywords)} keywords, {len(self._articles)} articles"
        )

    def _commit(self) -> None:
        payload = {
            "niches": [n.model_dump(mode="json") for n in self._niches.values()],
            "keywords": [k.model_dump(mode="json") for k in self._keywords.values()],
            "articles": [a.model_dump(mode="json") for a in self._articles.values()],
            "logs": [g.model_dump(mode="json") for g in self._logs.values()],
            "next_id": self._next_id,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.path)
