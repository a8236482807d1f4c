"""
Tests for the wire payload models.
"""

import json

import pytest
from pydantic import ValidationError

from manta_mpu.core.domain.wire import (
    CommitBody, CommitResponse, ObjectReferencePayload, OpenSessionRequest,
    OpenSessionResponse, SessionStateResponse, UploadPartResponse
)


class TestWireModels:
    """Test cases for wire models."""

    def test_open_request_uses_camel_case(self) -> None:
        body = OpenSessionRequest(object_path="/acct/stor/obj", durability_level=2).to_json_bytes()
        assert json.loads(body) == {"objectPath": "/acct/stor/obj", "durabilityLevel": 2}

    def test_open_request_rejects_zero_durability(self) -> None:
        with pytest.raises(ValidationError):
            OpenSessionRequest(object_path="/acct/stor/obj", durability_level=0)

    def test_open_response_strips_trailing_slash(self) -> None:
        response = OpenSessionResponse.model_validate({"id": "u1", "partsLocation": "/acct/uploads/u/u1/"})
        assert response.parts_location == "/acct/uploads/u/u1"

    def test_open_response_requires_id(self) -> None:
        with pytest.raises(ValidationError):
            OpenSessionResponse.model_validate({"partsLocation": "/acct/uploads/u/u1"})

    def test_upload_response_ignores_extra_fields(self) -> None:
        response = UploadPartResponse.model_validate({"serverIdentifier": "e1", "unknown": True})
        assert response.server_identifier == "e1"
        assert response.size_bytes is None

    def test_commit_body_requires_identifiers(self) -> None:
        with pytest.raises(ValidationError):
            CommitBody(parts_location="/p", ordered_identifiers=[])
        body = CommitBody(parts_location="/p", ordered_identifiers=["b", "a"])
        assert json.loads(body.to_json_bytes())["orderedIdentifiers"] == ["b", "a"]

    def test_commit_response_reference_forms(self) -> None:
        as_object = CommitResponse.model_validate({"objectReference": {"path": "/acct/stor/obj", "sizeBytes": 3}})
        assert isinstance(as_object.object_reference, ObjectReferencePayload)
        assert as_object.object_reference.size_bytes == 3

        as_string = CommitResponse.model_validate({"objectReference": "/acct/stor/obj"})
        assert as_string.object_reference == "/acct/stor/obj"

        assert CommitResponse.model_validate({}).object_reference is None

    @pytest.mark.parametrize("payload,committed,aborted", [
        ({"state": "created"}, False, False),
        ({"state": "finalizing", "result": "committed"}, True, False),
        ({"state": "finalizing", "result": "aborted"}, False, True),
    ])
    def test_session_state(self, payload: dict, committed: bool, aborted: bool) -> None:
        state = SessionStateResponse.model_validate(payload)
        assert state.is_committed is committed
        assert state.is_aborted is aborted
