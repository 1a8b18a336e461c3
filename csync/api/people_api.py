"""
Google People API wrapper for contact synchronization.

Provides a per-account interface to the Google People API for:
- Listing contacts and contact groups with pagination
- Fetching, creating, updating, and deleting contacts and groups
- Exponential backoff retry logic for rate limits and server errors
- A hard per-call timeout on the underlying HTTP transport
"""

import logging
from collections.abc import Callable
from typing import Any

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from csync.api.retry import (
    DEFAULT_POLICY,
    BackoffPolicy,
    call_with_backoff,
    is_revision_conflict,
)
from csync.auth.google_auth import AuthenticationError

# Every readable person field
ALL_PERSON_FIELDS = ",".join(
    [
        "addresses",
        "ageRanges",
        "biographies",
        "birthdays",
        "calendarUrls",
        "clientData",
        "coverPhotos",
        "emailAddresses",
        "events",
        "externalIds",
        "genders",
        "imClients",
        "interests",
        "locales",
        "locations",
        "memberships",
        "metadata",
        "miscKeywords",
        "names",
        "nicknames",
        "occupations",
        "organizations",
        "phoneNumbers",
        "photos",
        "relations",
        "sipAddresses",
        "skills",
        "urls",
        "userDefined",
    ]
)

# Fields accepted by people.updateContact
UPDATE_PERSON_FIELDS = ",".join(
    [
        "addresses",
        "biographies",
        "birthdays",
        "clientData",
        "emailAddresses",
        "events",
        "externalIds",
        "genders",
        "imClients",
        "interests",
        "locales",
        "locations",
        "memberships",
        "names",
        "nicknames",
        "occupations",
        "organizations",
        "phoneNumbers",
        "relations",
        "sipAddresses",
        "urls",
        "userDefined",
    ]
)

# Fields needed to build the identity index of a replica
LIST_PERSON_FIELDS = "names,organizations,clientData,metadata"

# Fields read for contact groups
GROUP_FIELDS = "clientData,groupType,metadata,name"

# API maximum page size
DEFAULT_PAGE_SIZE = 1000

# Hard timeout for a single HTTP call (seconds)
DEFAULT_API_TIMEOUT = 60.0

logger = logging.getLogger(__name__)


class PeopleAPIError(Exception):
    """Raised when a People API operation fails."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RevisionConflictError(PeopleAPIError):
    """
    Raised when the server rejects a write as conflicting.

    Usually the etag sent with an update is stale; a create answers 409
    when the name is already taken. The message carries the server text.
    """

    pass


class ApiTimeoutError(PeopleAPIError):
    """Raised when a single API call exceeds the transport timeout."""

    pass


class PeopleAPI:
    """
    Google People API wrapper for one account.

    Attributes:
        credentials: Google OAuth2 credentials
        account: Label of the account, used in log and error messages
        timeout: Hard timeout applied to every HTTP call

    Usage:
        api = PeopleAPI(credentials, account="me@example.com")

        people = api.list_people(LIST_PERSON_FIELDS)
        person = api.get_person("people/c123")
        api.update_person("people/c123", body, etag=person["etag"])

        groups = api.list_contact_groups()
        api.create_contact_group("Family", client_data=[...])
    """

    def __init__(
        self,
        credentials: Credentials,
        account: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_API_TIMEOUT,
        retry_policy: BackoffPolicy = DEFAULT_POLICY,
    ):
        """
        Initialize the People API wrapper.

        Args:
            credentials: Valid Google OAuth2 credentials with contacts scope
            account: Account label (normally the e-mail address)
            page_size: Number of entries per page when listing (max 1000)
            timeout: Hard timeout in seconds for each HTTP call
            retry_policy: Backoff schedule for transient failures
        """
        self.credentials = credentials
        self.account = account
        self.page_size = min(page_size, 1000)
        self.timeout = timeout
        self.retry_policy = retry_policy
        self._service = None

    @property
    def service(self) -> Any:
        """
        Get or create the Google API service object.

        Raises:
            PeopleAPIError: If service cannot be created
        """
        if self._service is None:
            try:
                http = google_auth_httplib2.AuthorizedHttp(
                    self.credentials, http=httplib2.Http(timeout=self.timeout)
                )
                self._service = build("people", "v1", http=http, cache_discovery=False)
                logger.debug(f"Created People API service for {self.account}")
            except Exception as e:
                logger.error(f"Failed to create People API service: {e}")
                raise PeopleAPIError(f"Failed to create API service: {e}") from e
        return self._service

    def _retry_with_backoff(
        self, operation: Callable[[], Any], operation_name: str
    ) -> Any:
        """
        Execute an operation with exponential backoff retry.

        Transient HTTP failures are retried without limit. Timeouts and
        credential failures end the call immediately.

        Raises:
            ApiTimeoutError: If the call timed out
            AuthenticationError: If the credentials could not be refreshed
            RevisionConflictError: On a conflict status or a stale etag
            PeopleAPIError: For other API errors
        """

        def attempt() -> Any:
            try:
                return operation()
            except TimeoutError as e:
                raise ApiTimeoutError(
                    f"Timed out after {self.timeout:.0f}s during {operation_name} "
                    f"for {self.account}"
                ) from e
            except RefreshError as e:
                raise AuthenticationError(
                    f"Credentials for {self.account} could not be refreshed: {e}"
                ) from e

        try:
            return call_with_backoff(
                attempt, f"{operation_name} [{self.account}]", self.retry_policy
            )
        except HttpError as e:
            status_code = e.resp.status
            if is_revision_conflict(e):
                raise RevisionConflictError(
                    f"{operation_name} for {self.account} was rejected with "
                    f"status {status_code}: {e.reason}",
                    status=status_code,
                ) from e
            if status_code != 404:
                logger.error(
                    f"{operation_name} failed with status {status_code}: {e}"
                )
            raise PeopleAPIError(
                f"{operation_name} failed for {self.account}: {e}",
                status=status_code,
            ) from e

    def _list_paginated(
        self,
        list_call: Callable[[dict[str, Any]], Any],
        items_key: str,
        params: dict[str, Any],
        operation_name: str,
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token

            def execute_list(p: dict[str, Any] = page_params) -> Any:
                return list_call(p)

            response = self._retry_with_backoff(execute_list, operation_name)
            items.extend(response.get(items_key, []))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return items

    # =========================================================================
    # Contacts
    # =========================================================================

    def list_people(
        self, person_fields: str = LIST_PERSON_FIELDS
    ) -> list[dict[str, Any]]:
        """
        List every contact of the account.

        Args:
            person_fields: Comma separated person fields to read

        Returns:
            List of person dicts as returned by the API
        """
        logger.debug(f"Listing contacts of {self.account}")

        people = self._list_paginated(
            lambda p: self.service.people().connections().list(**p).execute(),
            "connections",
            {
                "resourceName": "people/me",
                "personFields": person_fields,
                "pageSize": self.page_size,
            },
            "list_people",
        )

        logger.debug(f"Listed {len(people)} contacts of {self.account}")
        return people

    def get_person(
        self, resource_name: str, person_fields: str = ALL_PERSON_FIELDS
    ) -> dict[str, Any]:
        """
        Get a single contact by resource name.

        Raises:
            PeopleAPIError: If contact not found or request fails
        """
        logger.debug(f"Getting contact: {resource_name}")

        def execute_get() -> Any:
            return (
                self.service.people()
                .get(resourceName=resource_name, personFields=person_fields)
                .execute()
            )

        return dict(
            self._retry_with_backoff(execute_get, f"get_person({resource_name})")
        )

    def create_person(self, body: dict[str, Any]) -> dict[str, Any]:
        """
        Create a new contact.

        Args:
            body: Person body, without resourceName or etag

        Returns:
            Created person with resourceName and etag populated
        """

        def execute_create() -> Any:
            return (
                self.service.people()
                .createContact(body=body, personFields=LIST_PERSON_FIELDS)
                .execute()
            )

        response = self._retry_with_backoff(execute_create, "create_person")
        logger.debug(
            f"Created contact {response.get('resourceName')} in {self.account}"
        )
        return dict(response)

    def update_person(
        self,
        resource_name: str,
        body: dict[str, Any],
        etag: str,
        update_fields: str = UPDATE_PERSON_FIELDS,
    ) -> dict[str, Any]:
        """
        Update an existing contact.

        Args:
            resource_name: Contact to update
            body: Person body carrying the fields in update_fields
            etag: Etag the update is conditional on
            update_fields: Comma separated fields to overwrite

        Returns:
            Updated person with its new etag

        Raises:
            RevisionConflictError: If the etag is stale
            PeopleAPIError: If the update fails
        """
        request_body = dict(body)
        request_body["etag"] = etag

        def execute_update() -> Any:
            return (
                self.service.people()
                .updateContact(
                    resourceName=resource_name,
                    body=request_body,
                    updatePersonFields=update_fields,
                    personFields=LIST_PERSON_FIELDS,
                )
                .execute()
            )

        response = self._retry_with_backoff(
            execute_update, f"update_person({resource_name})"
        )
        logger.debug(f"Updated contact {resource_name} in {self.account}")
        return dict(response)

    def delete_person(self, resource_name: str) -> bool:
        """
        Delete a contact.

        Returns:
            True if deletion succeeded or the contact was already gone
        """

        def execute_delete() -> Any:
            return (
                self.service.people()
                .deleteContact(resourceName=resource_name)
                .execute()
            )

        try:
            self._retry_with_backoff(execute_delete, f"delete_person({resource_name})")
        except PeopleAPIError as e:
            if e.status == 404:
                logger.debug(f"Contact already deleted: {resource_name}")
                return True
            raise

        logger.debug(f"Deleted contact {resource_name} in {self.account}")
        return True

    # =========================================================================
    # Contact groups
    # =========================================================================

    def list_contact_groups(
        self, group_fields: str = GROUP_FIELDS
    ) -> list[dict[str, Any]]:
        """
        List all contact groups, system groups included.

        System groups can be identified by their groupType field.
        """
        logger.debug(f"Listing contact groups of {self.account}")

        groups = self._list_paginated(
            lambda p: self.service.contactGroups().list(**p).execute(),
            "contactGroups",
            {"pageSize": self.page_size, "groupFields": group_fields},
            "list_contact_groups",
        )

        logger.debug(f"Listed {len(groups)} contact groups of {self.account}")
        return groups

    def get_contact_group(
        self, resource_name: str, group_fields: str = GROUP_FIELDS
    ) -> dict[str, Any]:
        """Get a single contact group by resource name."""

        def execute_get() -> Any:
            return (
                self.service.contactGroups()
                .get(resourceName=resource_name, groupFields=group_fields)
                .execute()
            )

        return dict(
            self._retry_with_backoff(execute_get, f"get_contact_group({resource_name})")
        )

    def create_contact_group(
        self, name: str, client_data: list[dict[str, str]] | None = None
    ) -> dict[str, Any]:
        """
        Create a new contact group.

        Args:
            name: Name for the new contact group
            client_data: clientData entries to store on the group

        Returns:
            Created contact group with resourceName and etag
        """
        contact_group: dict[str, Any] = {"name": name}
        if client_data:
            contact_group["clientData"] = client_data

        body = {"contactGroup": contact_group, "readGroupFields": GROUP_FIELDS}

        def execute_create() -> Any:
            return self.service.contactGroups().create(body=body).execute()

        response = self._retry_with_backoff(
            execute_create, f"create_contact_group({name})"
        )
        logger.debug(
            f"Created contact group {response.get('resourceName')} ({name}) "
            f"in {self.account}"
        )
        return dict(response)

    def update_contact_group(
        self,
        resource_name: str,
        etag: str,
        name: str | None = None,
        client_data: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        """
        Update the name and/or clientData of a contact group.

        Only the fields that are given are written.

        Raises:
            ValueError: If neither name nor client_data is given
            RevisionConflictError: If the etag is stale
        """
        contact_group: dict[str, Any] = {"etag": etag}
        update_fields = []
        if name is not None:
            contact_group["name"] = name
            update_fields.append("name")
        if client_data is not None:
            contact_group["clientData"] = client_data
            update_fields.append("clientData")
        if not update_fields:
            raise ValueError("update_contact_group needs a name or client_data")

        body = {
            "contactGroup": contact_group,
            "updateGroupFields": ",".join(update_fields),
            "readGroupFields": GROUP_FIELDS,
        }

        def execute_update() -> Any:
            return (
                self.service.contactGroups()
                .update(resourceName=resource_name, body=body)
                .execute()
            )

        response = self._retry_with_backoff(
            execute_update, f"update_contact_group({resource_name})"
        )
        logger.debug(f"Updated contact group {resource_name} in {self.account}")
        return dict(response)

    def delete_contact_group(self, resource_name: str) -> bool:
        """
        Delete a contact group, keeping its member contacts.

        Returns:
            True if deletion succeeded or the group was already gone
        """

        def execute_delete() -> Any:
            return (
                self.service.contactGroups()
                .delete(resourceName=resource_name, deleteContacts=False)
                .execute()
            )

        try:
            self._retry_with_backoff(
                execute_delete, f"delete_contact_group({resource_name})"
            )
        except PeopleAPIError as e:
            if e.status == 404:
                logger.debug(f"Contact group already deleted: {resource_name}")
                return True
            raise

        logger.debug(f"Deleted contact group {resource_name} in {self.account}")
        return True
