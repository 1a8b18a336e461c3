"""
Unit tests for the People API module.

Tests the PeopleAPI class with mocked Google API responses.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from csync.api.people_api import (
    ALL_PERSON_FIELDS,
    DEFAULT_API_TIMEOUT,
    DEFAULT_PAGE_SIZE,
    GROUP_FIELDS,
    LIST_PERSON_FIELDS,
    UPDATE_PERSON_FIELDS,
    ApiTimeoutError,
    PeopleAPI,
    PeopleAPIError,
    RevisionConflictError,
)
from csync.auth.google_auth import AuthenticationError


def http_error(status, content=b"error"):
    mock_resp = MagicMock()
    mock_resp.status = status
    return HttpError(mock_resp, content)


@pytest.fixture
def api():
    """Create a PeopleAPI instance with mocked service."""
    api = PeopleAPI(MagicMock(), account="me@example.com")
    api._service = MagicMock()
    return api


class TestPeopleAPIInitialization:
    """Tests for PeopleAPI initialization."""

    def test_init_with_credentials(self):
        """Test initialization with credentials."""
        mock_creds = MagicMock()
        api = PeopleAPI(mock_creds)

        assert api.credentials == mock_creds
        assert api.page_size == DEFAULT_PAGE_SIZE
        assert api.timeout == DEFAULT_API_TIMEOUT
        assert api._service is None

    def test_init_page_size_capped_at_1000(self):
        """Test that page size is capped at 1000."""
        api = PeopleAPI(MagicMock(), page_size=2000)

        assert api.page_size == 1000


class TestPeopleAPIService:
    """Tests for the service property."""

    @patch("csync.api.people_api.build")
    @patch("csync.api.people_api.google_auth_httplib2.AuthorizedHttp")
    @patch("csync.api.people_api.httplib2.Http")
    def test_service_uses_timeout_transport(
        self, mock_http, mock_authorized, mock_build
    ):
        """Test the service is built on an HTTP transport with a timeout."""
        mock_creds = MagicMock()
        api = PeopleAPI(mock_creds, timeout=12)

        service = api.service

        mock_http.assert_called_once_with(timeout=12)
        mock_authorized.assert_called_once_with(mock_creds, http=mock_http.return_value)
        mock_build.assert_called_once_with(
            "people", "v1", http=mock_authorized.return_value, cache_discovery=False
        )
        assert service == mock_build.return_value

    @patch("csync.api.people_api.build")
    @patch("csync.api.people_api.google_auth_httplib2.AuthorizedHttp")
    def test_service_cached(self, mock_authorized, mock_build):
        """Test that service is cached after first access."""
        api = PeopleAPI(MagicMock())

        assert api.service is api.service
        mock_build.assert_called_once()

    @patch("csync.api.people_api.build")
    @patch("csync.api.people_api.google_auth_httplib2.AuthorizedHttp")
    def test_service_creation_failure_raises_error(self, mock_authorized, mock_build):
        """Test that service creation failure raises PeopleAPIError."""
        mock_build.side_effect = Exception("Connection failed")

        api = PeopleAPI(MagicMock())

        with pytest.raises(PeopleAPIError, match="Failed to create API service"):
            _ = api.service


class TestRetryWithBackoff:
    """Tests for error translation around retried calls."""

    def test_successful_operation_returns_result(self, api):
        result = api._retry_with_backoff(lambda: {"result": "success"}, "op")
        assert result == {"result": "success"}

    @patch("time.sleep")
    def test_rate_limit_retries_with_backoff(self, mock_sleep, api):
        """Test that rate limit errors trigger retries with backoff."""
        operation = MagicMock(
            side_effect=[http_error(429), http_error(429), {"result": "success"}]
        )

        result = api._retry_with_backoff(operation, "test_operation")

        assert result == {"result": "success"}
        assert operation.call_count == 3
        assert mock_sleep.call_count == 2

    def test_conflict_becomes_revision_conflict(self, api):
        """Test HTTP 409 is reported as RevisionConflictError."""
        operation = MagicMock(side_effect=http_error(409))

        with pytest.raises(RevisionConflictError) as excinfo:
            api._retry_with_backoff(operation, "update")

        assert excinfo.value.status == 409
        assert operation.call_count == 1

    def test_not_found_keeps_status(self, api):
        operation = MagicMock(side_effect=http_error(404))

        with pytest.raises(PeopleAPIError) as excinfo:
            api._retry_with_backoff(operation, "get")

        assert excinfo.value.status == 404
        assert not isinstance(excinfo.value, RevisionConflictError)

    @patch("time.sleep")
    def test_timeout_is_terminal(self, mock_sleep, api):
        """Test a transport timeout ends the call without retrying."""
        operation = MagicMock(side_effect=TimeoutError("timed out"))

        with pytest.raises(ApiTimeoutError, match="Timed out"):
            api._retry_with_backoff(operation, "list")

        assert operation.call_count == 1
        mock_sleep.assert_not_called()

    def test_refresh_error_is_authentication_error(self, api):
        operation = MagicMock(side_effect=RefreshError("invalid_grant"))

        with pytest.raises(AuthenticationError, match="me@example.com"):
            api._retry_with_backoff(operation, "list")


class TestContacts:
    """Tests for the contact methods."""

    def test_list_people_paginates(self, api):
        """Test every page of connections is collected."""
        list_call = api._service.people.return_value.connections.return_value.list
        list_call.return_value.execute.side_effect = [
            {"connections": [{"resourceName": "people/1"}], "nextPageToken": "p2"},
            {"connections": [{"resourceName": "people/2"}]},
        ]

        people = api.list_people()

        assert [p["resourceName"] for p in people] == ["people/1", "people/2"]
        assert list_call.call_args_list[0].kwargs["personFields"] == LIST_PERSON_FIELDS
        assert list_call.call_args_list[1].kwargs["pageToken"] == "p2"

    def test_list_people_empty(self, api):
        list_call = api._service.people.return_value.connections.return_value.list
        list_call.return_value.execute.return_value = {}

        assert api.list_people() == []

    def test_get_person_reads_all_fields(self, api):
        get_call = api._service.people.return_value.get
        get_call.return_value.execute.return_value = {"resourceName": "people/1"}

        assert api.get_person("people/1") == {"resourceName": "people/1"}
        get_call.assert_called_with(
            resourceName="people/1", personFields=ALL_PERSON_FIELDS
        )

    def test_update_person_sends_etag(self, api):
        """Test updates are conditional on the given etag."""
        update_call = api._service.people.return_value.updateContact
        update_call.return_value.execute.return_value = {"etag": "new"}

        result = api.update_person("people/1", {"names": []}, etag="old")

        assert result == {"etag": "new"}
        kwargs = update_call.call_args.kwargs
        assert kwargs["body"] == {"names": [], "etag": "old"}
        assert kwargs["updatePersonFields"] == UPDATE_PERSON_FIELDS

    def test_delete_person_already_gone(self, api):
        """Test deleting a missing contact counts as success."""
        delete_call = api._service.people.return_value.deleteContact
        delete_call.return_value.execute.side_effect = http_error(404)

        assert api.delete_person("people/1") is True

    def test_delete_person_failure(self, api):
        delete_call = api._service.people.return_value.deleteContact
        delete_call.return_value.execute.side_effect = http_error(400)

        with pytest.raises(PeopleAPIError):
            api.delete_person("people/1")


class TestContactGroups:
    """Tests for the contact group methods."""

    def test_create_contact_group_with_client_data(self, api):
        create_call = api._service.contactGroups.return_value.create
        create_call.return_value.execute.return_value = {
            "resourceName": "contactGroups/abc"
        }
        client_data = [{"key": "csync-uid", "value": "a" * 20}]

        api.create_contact_group("Family", client_data=client_data)

        body = create_call.call_args.kwargs["body"]
        assert body["contactGroup"] == {"name": "Family", "clientData": client_data}
        assert body["readGroupFields"] == GROUP_FIELDS

    def test_update_contact_group_only_given_fields(self, api):
        """Test only the fields passed in are listed for update."""
        update_call = api._service.contactGroups.return_value.update
        update_call.return_value.execute.return_value = {"etag": "e2"}

        api.update_contact_group("contactGroups/abc", "e1", name="Friends")

        body = update_call.call_args.kwargs["body"]
        assert body["contactGroup"] == {"etag": "e1", "name": "Friends"}
        assert body["updateGroupFields"] == "name"

    def test_update_contact_group_needs_a_field(self, api):
        with pytest.raises(ValueError):
            api.update_contact_group("contactGroups/abc", "e1")

    def test_update_contact_group_conflict(self, api):
        update_call = api._service.contactGroups.return_value.update
        update_call.return_value.execute.side_effect = http_error(409)

        with pytest.raises(RevisionConflictError):
            api.update_contact_group("contactGroups/abc", "stale", name="x")

    def test_duplicate_name_on_create_reports_server_text(self, api):
        """Test a rejected create names the server's reason, not a stale etag."""
        create_call = api._service.contactGroups.return_value.create
        message = "Contact group name already exists"
        content = json.dumps({"error": {"code": 409, "message": message}})
        create_call.return_value.execute.side_effect = http_error(
            409, content.encode()
        )

        with pytest.raises(RevisionConflictError) as excinfo:
            api.create_contact_group("Family")

        assert message in str(excinfo.value)
        assert "status 409" in str(excinfo.value)

    def test_delete_contact_group_keeps_members(self, api):
        delete_call = api._service.contactGroups.return_value.delete
        delete_call.return_value.execute.return_value = {}

        assert api.delete_contact_group("contactGroups/abc") is True
        delete_call.assert_called_with(
            resourceName="contactGroups/abc", deleteContacts=False
        )


class TestModuleConstants:
    """Tests for module constants."""

    def test_update_fields_are_readable(self):
        assert set(UPDATE_PERSON_FIELDS.split(",")) <= set(ALL_PERSON_FIELDS.split(","))

    def test_update_fields_exclude_metadata(self):
        assert "metadata" not in UPDATE_PERSON_FIELDS.split(",")

    def test_list_fields_include_client_data(self):
        assert "clientData" in LIST_PERSON_FIELDS
