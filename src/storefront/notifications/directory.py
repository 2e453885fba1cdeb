"""Who can be reached by a broadcast.

User accounts are owned elsewhere; the storefront only needs the ids of
every known user and of the administrators.
"""

from abc import ABC, abstractmethod

from storefront.ordering.lookup import known_customer_ids


class UserDirectory(ABC):
    @abstractmethod
    def all_user_ids(self) -> list[str]: ...

    @abstractmethod
    def admin_user_ids(self) -> list[str]: ...


class OrderCustomerDirectory(UserDirectory):
    """Known users are everyone who has placed an order, plus the admins."""

    def __init__(self, admin_user_ids=()):
        self._admins = [str(user_id) for user_id in admin_user_ids]

    def all_user_ids(self) -> list[str]:
        users = known_customer_ids()
        return users + [admin for admin in self._admins if admin not in users]

    def admin_user_ids(self) -> list[str]:
        return list(self._admins)


class StaticUserDirectory(UserDirectory):
    def __init__(self, user_ids=(), admin_user_ids=()):
        self._users = [str(user_id) for user_id in user_ids]
        self._admins = [str(user_id) for user_id in admin_user_ids]

    def all_user_ids(self) -> list[str]:
        return list(self._users)

    def admin_user_ids(self) -> list[str]:
        return list(self._admins)
