"""Paginated notification feed with optimistic read/delete."""
from dataclasses import replace
from typing import List, Optional

from .api_interface import APIClient, APIError
from .auth import AuthError
from .config import NOTIFICATION_PAGE_SIZE, get_logger
from .data_models import NotificationItem, Pagination
from .state import OptimisticUpdate, StateCell, run_optimistic
from .unread import UnreadCounter

logger = get_logger("notifications")


class NotificationFeed:
    def __init__(self, api: APIClient, unread: UnreadCounter, limit: int = NOTIFICATION_PAGE_SIZE):
        self.api = api
        self.unread = unread
        self.notifications = StateCell([], name="notifications")
        self.pagination = StateCell(Pagination(page=1, limit=limit), name="notifications.pagination")
        self.loading = StateCell(False, name="notifications.loading")
        self.error = StateCell(None, name="notifications.error")
        self._unread_only = False

    @property
    def items(self) -> List[NotificationItem]:
        return self.notifications.get()

    def fetch(self, page: int = 1, limit: Optional[int] = None, unread_only: bool = False) -> bool:
        """Load one page. Page 1 replaces the list; later pages append."""
        limit = limit or self.pagination.get().limit
        self._unread_only = unread_only
        self.loading.set(True)
        self.error.set(None)
        try:
            items, pagination = self.api.get_notifications(page=page, limit=limit, unread_only=unread_only)
        except APIError as e:
            if e.is_rate_limited:
                logger.info("Notifications rate limited; will retry later")
            else:
                logger.warning("Error fetching notifications: %s", e)
                self.error.set("Failed to fetch notifications")
            return False
        except AuthError as e:
            logger.warning("Error fetching notifications: %s", e)
            self.error.set("Failed to fetch notifications")
            return False
        finally:
            self.loading.set(False)

        if page == 1:
            self.notifications.set(items)
        else:
            def _append(current):
                seen = {n.id for n in current}
                return list(current) + [n for n in items if n.id not in seen]
            self.notifications.update(_append)
        self.pagination.set(pagination)
        return True

    def load_more(self) -> bool:
        """Fetch the next page; returns False when there is nothing to do."""
        pagination = self.pagination.get()
        if self.loading.get() or pagination.page >= pagination.total_pages:
            return False
        return self.fetch(pagination.page + 1, pagination.limit, self._unread_only)

    def refresh(self) -> None:
        self.fetch(1, self.pagination.get().limit, self._unread_only)
        self.unread.fetch()

    def _find(self, notification_id: str) -> Optional[NotificationItem]:
        return next((n for n in self.items if n.id == str(notification_id)), None)

    def _set_read(self, notification_id: str, is_read: bool) -> None:
        def _flip(items):
            out = []
            for n in items:
                if n.id == notification_id:
                    n = replace(n, is_read=is_read)
                out.append(n)
            return out
        self.notifications.update(_flip)

    def mark_as_read(self, notification_id: str) -> bool:
        target = self._find(notification_id)
        if target is None:
            return False
        was_unread = not target.is_read

        def _apply():
            self._set_read(target.id, True)
            if was_unread:
                self.unread.decrement()

        def _compensate():
            self._set_read(target.id, False)
            if was_unread:
                self.unread.fetch()

        update = OptimisticUpdate(_apply, _compensate, description=f"mark notification {target.id} read")
        try:
            run_optimistic(update, lambda: self.api.mark_notification_read(target.id))
        except (APIError, AuthError) as e:
            logger.warning("Error marking notification %s as read: %s", target.id, e)
            return False
        return True

    def mark_all_as_read(self) -> bool:
        flipped = set()

        def _apply():
            def _read_all(items):
                flipped.update(n.id for n in items if not n.is_read)
                return [replace(n, is_read=True) for n in items]
            self.notifications.update(_read_all)
            self.unread.reset()

        def _compensate():
            self.notifications.update(
                lambda items: [replace(n, is_read=False) if n.id in flipped else n for n in items]
            )
            # The count may have been polled meanwhile; ask the server again
            self.unread.fetch()

        update = OptimisticUpdate(_apply, _compensate, description="mark all notifications read")
        try:
            run_optimistic(update, self.api.mark_all_notifications_read)
        except (APIError, AuthError) as e:
            logger.warning("Error marking all notifications as read: %s", e)
            return False
        return True

    def delete(self, notification_id: str) -> bool:
        target = self._find(notification_id)
        if target is None:
            return False
        position = {}

        def _apply():
            def _drop(items):
                position["index"] = items.index(target)
                return [n for n in items if n.id != target.id]
            self.notifications.update(_drop)
            if not target.is_read:
                self.unread.decrement()

        def _compensate():
            def _insert(items):
                items = list(items)
                items.insert(min(position.get("index", len(items)), len(items)), target)
                return items
            self.notifications.update(_insert)
            if not target.is_read:
                self.unread.fetch()

        update = OptimisticUpdate(_apply, _compensate, description=f"delete notification {target.id}")
        try:
            run_optimistic(update, lambda: self.api.delete_notification(target.id))
        except (APIError, AuthError) as e:
            logger.warning("Error deleting notification %s: %s", target.id, e)
            return False
        return True

    def reset(self) -> None:
        self.notifications.set([])
        self.pagination.set(Pagination(page=1, limit=self.pagination.get().limit))
        self.error.set(None)
