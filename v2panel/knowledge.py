"""Knowledge-base articles shown to users, grouped by category."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from .entities import Knowledge, KnowledgeInfo
from .store import Database, Table

SHOWN = 1


class KnowledgeService:
    """Manages knowledge-base articles."""

    def __init__(self, db: Database) -> None:
        self.table = Table(db, Knowledge)

    def save(self, article: Knowledge) -> int:
        """Update the article when it has an id, insert it otherwise; returns its id."""
        if article.id:
            self.table.update_by_id(article.id, article)
            return article.id
        return self.table.save(article)

    def delete(self, ids: Iterable[int]) -> int:
        """Delete articles by id."""
        return self.table.delete_by_ids(ids)

    def list_all(self, query: Knowledge) -> list[Knowledge]:
        """Articles matching title and category fragments, id and show flag when set.

        Ordered by order_id, highest first.
        """
        conditions = ['"title" LIKE ?', '"category" LIKE ?']
        params: list[object] = [f"%{query.title}%", f"%{query.category}%"]
        if query.id:
            conditions.append('"id" = ?')
            params.append(query.id)
        if query.show:
            conditions.append('"show" = ?')
            params.append(query.show)
        return self.table.select(" AND ".join(conditions), params, order_by='"order_id" DESC, "id"')

    def list_shown(self, query: Knowledge) -> list[KnowledgeInfo]:
        """Visible articles matching the query, grouped by category.

        A category takes the place of its last article in the ordered list;
        within a category articles keep that order.
        """
        articles = self.list_all(dataclasses.replace(query, show=SHOWN))
        last_seen: dict[str, int] = {}
        for position, article in enumerate(articles):
            last_seen[article.category] = position
        categories = sorted(last_seen, key=last_seen.__getitem__)
        return [
            KnowledgeInfo(
                category=category,
                data=[article for article in articles if article.category == category],
            )
            for category in categories
        ]