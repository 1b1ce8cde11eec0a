"""Tests for the remote boundary: row normalization and the HTTP client."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from notesync.errors import RemoteError
from notesync.remote import RemoteClient, normalize_rows, note_to_row
from notesync.store import Note


def remote_row(note_id="n1", **overrides):
    row = {
        "id": note_id,
        "user_id": "alice",
        "title": "Groceries",
        "content": "milk",
        "created_at": "2024-03-01T10:00:00+00:00",
        "updated_at": "2024-03-01T11:00:00.123456Z",
        "deleted": False,
    }
    row.update(overrides)
    return row


def mock_response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.content = b"" if json_data is None else b"{}"
    response.json.return_value = json_data
    return response


class TestNormalizeRows:
    """Tests for remote row-shape normalization."""

    def test_plain_list(self):
        """Test a bare list of rows."""
        notes = normalize_rows([remote_row("a"), remote_row("b")])

        assert [n.id for n in notes] == ["a", "b"]
        assert notes[0].owner_id == "alice"
        assert notes[0].body == "milk"
        assert notes[0].updated_at == datetime(
            2024, 3, 1, 11, 0, 0, 123456, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": [remote_row()]},
            {"rows": [remote_row()]},
            {"rows": {"_array": [remote_row()]}},
            remote_row(),
        ],
    )
    def test_wrapped_shapes(self, payload):
        """Test every supported container yields the same note."""
        notes = normalize_rows(payload)
        assert len(notes) == 1
        assert notes[0].id == "n1"

    def test_empty_payloads(self):
        """Test None and empty containers yield nothing."""
        assert normalize_rows(None) == []
        assert normalize_rows([]) == []
        assert normalize_rows({"data": None}) == []
        assert normalize_rows({}) == []

    def test_pulled_rows_are_synced_and_live(self):
        """Test pulled notes are flagged synced and not deleted."""
        note = normalize_rows([remote_row(deleted=True)])[0]
        assert note.synced is True
        assert note.deleted is False

    def test_missing_content_becomes_empty(self):
        """Test a null content column maps to an empty body."""
        note = normalize_rows([remote_row(content=None)])[0]
        assert note.body == ""

    def test_local_column_names_accepted(self):
        """Test owner_id/body columns are understood too."""
        row = remote_row()
        row["owner_id"] = row.pop("user_id")
        row["body"] = row.pop("content")

        note = normalize_rows([row])[0]

        assert note.owner_id == "alice"
        assert note.body == "milk"

    def test_malformed_rows_skipped(self):
        """Test rows missing required fields are dropped, others kept."""
        bad = remote_row("bad")
        del bad["updated_at"]

        notes = normalize_rows([bad, "junk", remote_row("good")])

        assert [n.id for n in notes] == ["good"]

    def test_unsupported_payload(self):
        """Test a scalar payload is rejected."""
        with pytest.raises(TypeError):
            normalize_rows(42)

    def test_note_to_row(self):
        """Test local notes map onto remote column names."""
        note = Note.create("alice", "Groceries", "milk")
        row = note_to_row(note)

        assert row["user_id"] == "alice"
        assert row["content"] == "milk"
        assert row["deleted"] is False
        assert "owner_id" not in row


class TestRemoteClient:
    """Tests for RemoteClient."""

    @pytest.fixture
    def client(self):
        return RemoteClient(
            "http://backend:54321/",
            api_key="anon",
            token_provider=lambda: "user-token",
            max_retries=2,
        )

    def test_client_initialization(self, client):
        """Test trailing slash is stripped."""
        assert client.base_url == "http://backend:54321"
        assert client.table == "notes"

    def test_headers_use_session_token(self, client):
        """Test the bearer token comes from the token provider."""
        headers = client._headers(prefer="return=minimal")

        assert headers["apikey"] == "anon"
        assert headers["Authorization"] == "Bearer user-token"
        assert headers["Prefer"] == "return=minimal"

    def test_headers_fall_back_to_api_key(self):
        """Test the api key is used when nobody is signed in."""
        client = RemoteClient("http://backend", api_key="anon", token_provider=lambda: None)
        assert client._headers()["Authorization"] == "Bearer anon"

    @pytest.mark.asyncio
    async def test_fetch_active(self, client):
        """Test fetch filters by owner and normalizes rows."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(
                return_value=mock_response(200, [remote_row("a"), remote_row("b")])
            )
            mock_get.return_value = mock_http

            notes = await client.fetch_active("alice")

        assert [n.id for n in notes] == ["a", "b"]
        args, kwargs = mock_http.request.call_args
        assert args == ("GET", "/rest/v1/notes")
        assert kwargs["params"]["user_id"] == "eq.alice"
        assert kwargs["params"]["deleted"] == "eq.false"
        assert kwargs["params"]["order"] == "updated_at.desc"

    @pytest.mark.asyncio
    async def test_upsert_one(self, client):
        """Test upsert posts the row with merge-duplicates."""
        note = Note.create("alice", "Groceries", "milk")

        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=mock_response(201))
            mock_get.return_value = mock_http

            await client.upsert_one(note)

        args, kwargs = mock_http.request.call_args
        assert args[0] == "POST"
        assert kwargs["json"]["id"] == note.id
        assert kwargs["json"]["content"] == "milk"
        assert kwargs["params"] == {"on_conflict": "id"}
        assert "merge-duplicates" in kwargs["headers"]["Prefer"]

    @pytest.mark.asyncio
    async def test_mark_deleted(self, client):
        """Test soft delete patches the owner's row."""
        ts = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(return_value=mock_response(204))
            mock_get.return_value = mock_http

            await client.mark_deleted("n1", "alice", updated_at=ts)

        args, kwargs = mock_http.request.call_args
        assert args[0] == "PATCH"
        assert kwargs["params"] == {"id": "eq.n1", "user_id": "eq.alice"}
        assert kwargs["json"]["deleted"] is True
        assert kwargs["json"]["updated_at"].startswith("2024-03-01T12:00:00")

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, client):
        """Test a 401 fails immediately as an auth RemoteError."""
        with patch.object(client, "_get_client") as mock_get:
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(
                return_value=mock_response(401, text="JWT expired")
            )
            mock_get.return_value = mock_http

            with pytest.raises(RemoteError) as exc_info:
                await client.fetch_active("alice")

        assert exc_info.value.status_code == 401
        assert exc_info.value.is_auth_error
        assert mock_http.request.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self, client):
        """Test a 5xx is retried and then succeeds."""
        with patch.object(client, "_get_client") as mock_get, patch(
            "notesync.remote.client.asyncio.sleep", new=AsyncMock()
        ):
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(
                side_effect=[mock_response(503), mock_response(200, [])]
            )
            mock_get.return_value = mock_http

            notes = await client.fetch_active("alice")

        assert notes == []
        assert mock_http.request.call_count == 2

    @pytest.mark.asyncio
    async def test_connection_failure_exhausts_retries(self, client):
        """Test connection errors become RemoteError after max retries."""
        with patch.object(client, "_get_client") as mock_get, patch(
            "notesync.remote.client.asyncio.sleep", new=AsyncMock()
        ):
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
            mock_get.return_value = mock_http

            with pytest.raises(RemoteError) as exc_info:
                await client.upsert_one(Note.create("alice", "t"))

        assert "Max retries" in str(exc_info.value)
        assert mock_http.request.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_remote_error(self, client):
        """Test timeouts surface as RemoteError."""
        with patch.object(client, "_get_client") as mock_get, patch(
            "notesync.remote.client.asyncio.sleep", new=AsyncMock()
        ):
            mock_http = AsyncMock()
            mock_http.request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
            mock_get.return_value = mock_http

            with pytest.raises(RemoteError):
                await client.mark_deleted("n1", "alice")

    @pytest.mark.asyncio
    async def test_no_remote_url(self):
        """Test calls fail cleanly without a configured backend."""
        client = RemoteClient("")

        with pytest.raises(RemoteError, match="No remote URL"):
            await client.fetch_active("alice")

    @pytest.mark.asyncio
    async def test_close(self, client):
        """Test close releases the underlying client."""
        http = await client._get_client()
        assert isinstance(http, httpx.AsyncClient)

        await client.close()

        assert client._client is None
