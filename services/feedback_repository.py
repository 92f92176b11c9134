"""SQL for the feedback table, independent of the engine behind the adapter."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from services.database import QueryAdapter

logger = logging.getLogger(__name__)

NOW_SQL = "strftime('%Y-%m-%d %H:%M:%f', 'now')"

# API field name -> column
SORT_FIELDS = {
    'id': 'id',
    'projectType': 'project_type',
    'rating': 'rating',
    'innovation': 'innovation',
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
}
# column names are accepted as sort keys too
SORTABLE_COLUMNS = {**SORT_FIELDS, **{column: column for column in SORT_FIELDS.values()}}

ENTRY_FIELDS = (
    ('id', 'id'),
    ('project_type', 'projectType'),
    ('rating', 'rating'),
    ('innovation', 'innovation'),
    ('comments', 'comments'),
    ('created_at', 'createdAt'),
    ('updated_at', 'updatedAt'),
)


class InvalidSortField(ValueError):
    pass


@dataclass
class Page:
    items: list
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {
            'currentPage': self.page,
            'totalPages': self.total_pages,
            'totalItems': self.total,
            'itemsPerPage': self.limit,
        }


def to_entry(row: Optional[dict]) -> Optional[dict]:
    if row is None:
        return None
    return {api_name: row.get(column) for column, api_name in ENTRY_FIELDS}


def _rounded(value) -> float:
    return round(float(value), 2) if value else 0


class FeedbackRepository:
    """Feedback CRUD and statistics on top of a ``QueryAdapter``."""

    def __init__(self, adapter: QueryAdapter):
        self.adapter = adapter

    def list(self, page: int = 1, limit: int = 10, sort_by: str = 'createdAt', order: str = 'desc') -> Page:
        column = SORTABLE_COLUMNS.get(sort_by)
        if column is None:
            raise InvalidSortField(sort_by)
        # anything but an explicit 'asc' sorts newest/highest first, matching the 'desc' default
        direction = 'ASC' if (order or '').lower() == 'asc' else 'DESC'
        offset = (page - 1) * limit

        total = self.adapter.fetch_one('SELECT COUNT(*) AS total FROM feedback')['total']
        if offset >= total:
            return Page(items=[], page=page, limit=limit, total=total)

        # column and direction come from fixed whitelists above
        rows = self.adapter.fetch_all(
            f'SELECT * FROM feedback ORDER BY {column} {direction}, id {direction} LIMIT ? OFFSET ?',
            (limit, offset),
        )
        return Page(items=[to_entry(r) for r in rows], page=page, limit=limit, total=total)

    def list_by_project(self, project_type: str, page: int = 1, limit: int = 10) -> Page:
        offset = (page - 1) * limit
        total = self.adapter.fetch_one(
            'SELECT COUNT(*) AS total FROM feedback WHERE project_type = ?',
            (project_type,),
        )['total']
        # past the last page; also keeps huge offsets out of the engine's integer range
        if offset >= total:
            return Page(items=[], page=page, limit=limit, total=total)

        rows = self.adapter.fetch_all(
            '''
            SELECT * FROM feedback
            WHERE project_type = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            ''',
            (project_type, limit, offset),
        )
        return Page(items=[to_entry(r) for r in rows], page=page, limit=limit, total=total)

    def get(self, feedback_id: int) -> Optional[dict]:
        return to_entry(self.adapter.fetch_one('SELECT * FROM feedback WHERE id = ?', (feedback_id,)))

    def create(self, project_type, rating, innovation=None, comments=None) -> Optional[dict]:
        result = self.adapter.execute(
            'INSERT INTO feedback (project_type, rating, innovation, comments) VALUES (?, ?, ?, ?)',
            (project_type, rating, innovation or None, comments or None),
        )
        logger.info('Created feedback %s for %s', result.last_inserted_id, project_type)
        return self.get(result.last_inserted_id)

    def update(self, feedback_id: int, project_type=None, rating=None, innovation=None, comments=None) -> Optional[dict]:
        """Apply the non-null fields to an entry and bump ``updated_at``.

        Returns the updated entry, or None when no row has ``feedback_id``.
        The existence check and the write are the same statement.
        """
        result = self.adapter.execute(
            f'''
            UPDATE feedback
            SET project_type = COALESCE(?, project_type),
                rating = COALESCE(?, rating),
                innovation = COALESCE(?, innovation),
                comments = COALESCE(?, comments),
                updated_at = {NOW_SQL}
            WHERE id = ?
            ''',
            (project_type, rating, innovation, comments, feedback_id),
        )
        if not result.rows_changed:
            return None
        return self.get(feedback_id)

    def delete(self, feedback_id: int) -> bool:
        result = self.adapter.execute('DELETE FROM feedback WHERE id = ?', (feedback_id,))
        if result.rows_changed:
            logger.info('Deleted feedback %s', feedback_id)
        return bool(result.rows_changed)

    def stats(self) -> dict:
        project_rows = self.adapter.fetch_all(
            '''
            SELECT
                project_type,
                COUNT(*) AS total_feedback,
                AVG(rating) AS average_rating,
                MAX(rating) AS highest_rating,
                MIN(rating) AS lowest_rating
            FROM feedback
            GROUP BY project_type
            ORDER BY project_type
            '''
        )
        overall = self.adapter.fetch_one(
            'SELECT COUNT(*) AS total_feedback, AVG(rating) AS average_rating FROM feedback'
        )
        innovation_rows = self.adapter.fetch_all(
            '''
            SELECT innovation, COUNT(*) AS count
            FROM feedback
            WHERE innovation IS NOT NULL
            GROUP BY innovation
            ORDER BY innovation
            '''
        )
        return {
            'totalFeedback': overall['total_feedback'],
            'overallAverageRating': _rounded(overall['average_rating']),
            'projectStats': [
                {
                    'projectType': row['project_type'],
                    'totalFeedback': row['total_feedback'],
                    'averageRating': _rounded(row['average_rating']),
                    'highestRating': row['highest_rating'],
                    'lowestRating': row['lowest_rating'],
                }
                for row in project_rows
            ],
            'innovationDistribution': [
                {'innovation': row['innovation'], 'count': row['count']}
                for row in innovation_rows
            ],
        }

    def all_entries(self) -> list:
        """Every entry, oldest first."""
        return [to_entry(r) for r in self.adapter.fetch_all('SELECT * FROM feedback ORDER BY id ASC')]
