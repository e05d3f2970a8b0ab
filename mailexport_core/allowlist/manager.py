"""
AllowListManager: idempotent management of allow-listed addresses.

The remote API is the source of truth. Add and remove are safe to repeat,
so transient transport failures are retried for every operation here. An
optional advisory cache of listings can be enabled; any successful mutation
clears it.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Literal

from loguru import logger

from mailexport_core.domain.codec import entry_from_wire
from mailexport_core.domain.models import AllowListDeleteResult, AllowListEntry
from mailexport_core.domain.params import check_email
from mailexport_core.runtime.errors import (
    InconsistentStateError,
    NotFoundError,
    RemoteApiError,
    ServiceError,
    ValidationError,
)
from mailexport_core.runtime.protocols import Endpoint, Endpoints, RequestPerformer
from mailexport_core.runtime.retry import RetryPolicy, with_retry

EmailCase = Literal["preserve", "lower"]


class AllowListListing:
    """
    Lazy, restartable view of allow-list entries.

    Nothing is fetched until iteration starts, and every new iteration
    fetches again.

    Usage:
        async for entry in manager.list("ops@"):
            ...
    """

    def __init__(self, manager: "AllowListManager", email_prefix: str | None):
        self._manager = manager
        self.email_prefix = email_prefix

    def __aiter__(self) -> AsyncIterator[AllowListEntry]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AllowListEntry]:
        for entry in await self._manager._fetch(self.email_prefix):
            yield entry

    async def to_list(self) -> list[AllowListEntry]:
        return [entry async for entry in self]


class AllowListManager:
    """
    Add, remove and list allow-listed email addresses.

    Usage:
        manager = AllowListManager(transport)
        entry = await manager.add("vip@example.com", "key account")
        result = await manager.remove("vip@example.com")
    """

    def __init__(
        self,
        transport: RequestPerformer,
        retry_policy: RetryPolicy | None = None,
        email_case: EmailCase | None = None,
        cache_enabled: bool | None = None,
    ):
        """
        Args:
            transport: Executes remote requests.
            retry_policy: Retries for transient transport failures.
            email_case: "lower" folds addresses to lowercase before sending;
                "preserve" sends them as given. Defaults to settings.
            cache_enabled: Cache listings until the next mutation.
        """
        from mailexport_core.config import settings

        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self.email_case: EmailCase = email_case or settings.ALLOWLIST_EMAIL_CASE
        self.cache_enabled = (
            settings.ALLOWLIST_CACHE_ENABLED if cache_enabled is None else cache_enabled
        )
        self._cache: dict[str | None, list[AllowListEntry]] = {}

    def normalize(self, email: str) -> str:
        """Validate an address and apply the configured case policy.

        Raises:
            ValidationError: The address is not syntactically valid.
        """
        try:
            email = check_email(email)
        except (TypeError, AttributeError, ValueError) as e:
            raise ValidationError(str(e), operation="allowlist", cause=e)
        return email.lower() if self.email_case == "lower" else email

    def invalidate_cache(self) -> None:
        if self._cache:
            logger.debug(f"Dropping {len(self._cache)} cached allow-list listings")
        self._cache.clear()

    async def _call(self, endpoint: Endpoint, payload: dict[str, Any], operation: str) -> Any:
        call = with_retry(self._retry_policy)(self._transport.perform_request)
        try:
            return await call(endpoint, payload)
        except ServiceError as e:
            raise e.with_context(operation=operation)

    async def add(self, email: str, comment: str | None = None) -> AllowListEntry:
        """
        Allow-list an address, or update its comment if already listed.

        Args:
            email: Address to allow-list.
            comment: Optional reason, stored as the entry's detail.

        Returns:
            The entry as the remote API now reports it.

        Raises:
            ValidationError: Invalid address.
            RemoteApiError: The remote API reported the add as unsuccessful.
        """
        email = self.normalize(email)
        payload: dict[str, Any] = {"email": email}
        if comment is not None:
            payload["comment"] = comment

        response = await self._call(Endpoints.ALLOWLIST_ADD, payload, "allowlist_add")
        if not response.get("added"):
            raise RemoteApiError(
                "NOT_ADDED",
                f"Remote API did not add {email} to the allow-list",
                operation="allowlist_add",
            )
        self.invalidate_cache()
        logger.info(f"Allow-listed {email}")

        entry = await self.get(email)
        if entry is None:
            # Not visible in listings yet
            return AllowListEntry(email=email, detail=comment)
        return entry

    async def remove(self, email: str) -> AllowListDeleteResult:
        """
        Remove an address from the allow-list.

        Returns:
            ``deleted=False`` when the address was not listed; that is not
            an error.
        """
        email = self.normalize(email)
        try:
            response = await self._call(
                Endpoints.ALLOWLIST_DELETE, {"email": email}, "allowlist_remove"
            )
        except NotFoundError:
            logger.debug(f"{email} was not on the allow-list")
            self.invalidate_cache()
            return AllowListDeleteResult(email=email, deleted=False)

        self.invalidate_cache()
        result = AllowListDeleteResult(
            email=str(response.get("email") or email),
            deleted=bool(response.get("deleted")),
        )
        if result.deleted:
            logger.info(f"Removed {email} from the allow-list")
        return result

    def list(self, email_prefix: str | None = None) -> AllowListListing:
        """
        Entries whose address matches ``email_prefix`` (matched remotely).

        Returns:
            A lazy, restartable async iterable.
        """
        if email_prefix is not None:
            email_prefix = email_prefix.strip()
            if self.email_case == "lower":
                email_prefix = email_prefix.lower()
        return AllowListListing(self, email_prefix or None)

    async def get(self, email: str) -> AllowListEntry | None:
        """The entry for exactly ``email``, or None."""
        email = self.normalize(email)
        entries = await self._fetch(email)
        for entry in entries:
            if entry.email == email:
                return entry
        for entry in entries:
            if entry.email.casefold() == email.casefold():
                return entry
        return None

    async def _fetch(self, email_prefix: str | None) -> list[AllowListEntry]:
        if self.cache_enabled and email_prefix in self._cache:
            return list(self._cache[email_prefix])

        payload: dict[str, Any] = {}
        if email_prefix:
            payload["email"] = email_prefix
        response = await self._call(Endpoints.ALLOWLIST_LIST, payload, "allowlist_list")
        if not isinstance(response, list):
            raise InconsistentStateError(
                "Allow-list response is not a list", operation="allowlist_list"
            )
        entries = [entry_from_wire(item) for item in response]

        if self.cache_enabled:
            self._cache[email_prefix] = entries
        return list(entries)
