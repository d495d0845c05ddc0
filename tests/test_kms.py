"""Tests for the key service backends."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, HTTPClientError, ReadTimeoutError

from kms_envelope import (
    EnvelopeManager,
    InMemoryKeyService,
    Key,
    KeyServiceError,
    KmsManager,
)

KEY_ID = "alias/test"


def client_error(code: str, status: int = 400, op: str = "GenerateDataKey") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


def mock_kms_client() -> MagicMock:
    client = MagicMock()
    client.generate_data_key.return_value = {
        "Plaintext": b"\x01" * 32,
        "CiphertextBlob": b"wrapped-dek",
    }
    client.decrypt.return_value = {"Plaintext": b"\x01" * 32}
    return client


# =============================================================================
# KmsManager
# =============================================================================


async def test_generate_data_key():
    client = mock_kms_client()
    kms = KmsManager(client, region="us-east-1")

    dek = await kms.generate_data_key(KEY_ID)

    assert dek.plaintext.as_bytes() == b"\x01" * 32
    assert dek.ciphertext == b"wrapped-dek"
    client.generate_data_key.assert_called_once_with(KeyId=KEY_ID, KeySpec="AES_256")
    assert "plaintext" not in repr(dek)


async def test_decrypt():
    client = mock_kms_client()
    kms = KmsManager(client)

    assert await kms.decrypt(KEY_ID, b"wrapped-dek") == b"\x01" * 32
    client.decrypt.assert_called_once_with(
        KeyId=KEY_ID, CiphertextBlob=b"wrapped-dek", EncryptionAlgorithm="SYMMETRIC_DEFAULT"
    )


async def test_envelope_over_kms_manager():
    client = mock_kms_client()
    envelope = EnvelopeManager(KmsManager(client), KEY_ID, "aad")

    sealed = await envelope.seal_aes_256(b"via kms")
    assert b"wrapped-dek" in sealed
    assert await envelope.unseal_aes_256(sealed) == b"via kms"
    assert client.decrypt.call_args.kwargs["CiphertextBlob"] == b"wrapped-dek"


@pytest.mark.parametrize(
    "response",
    [
        {"CiphertextBlob": b"wrapped"},
        {"Plaintext": b"\x01" * 32},
        {},
    ],
)
async def test_generate_data_key_missing_fields(response):
    client = MagicMock()
    client.generate_data_key.return_value = response

    with pytest.raises(KeyServiceError) as exc_info:
        await KmsManager(client).generate_data_key(KEY_ID)
    assert exc_info.value.retryable is False


async def test_decrypt_missing_plaintext():
    client = MagicMock()
    client.decrypt.return_value = {}
    with pytest.raises(KeyServiceError, match="Plaintext not found"):
        await KmsManager(client).decrypt(KEY_ID, b"x")


@pytest.mark.parametrize(
    "error,retryable",
    [
        (client_error("ThrottlingException"), True),
        (client_error("KMSInternalException", 500), True),
        (client_error("KeyUnavailableException"), True),
        (client_error("DependencyTimeoutException", 503), True),
        (client_error("AccessDeniedException"), False),
        (client_error("InvalidCiphertextException"), False),
        (client_error("NotFoundException"), False),
        (ReadTimeoutError(endpoint_url="https://kms.us-east-1.amazonaws.com"), True),
        (HTTPClientError(error="connection reset by peer"), True),
    ],
)
async def test_kms_errors_classified(error, retryable):
    client = MagicMock()
    client.generate_data_key.side_effect = error
    kms = KmsManager(client)

    with pytest.raises(KeyServiceError) as exc_info:
        await kms.generate_data_key(KEY_ID)
    assert exc_info.value.retryable is retryable
    assert kms.classify_retryable(error) is retryable


async def test_kms_retryable_error_reaches_envelope_caller():
    client = MagicMock()
    client.decrypt.side_effect = client_error("ThrottlingException", op="Decrypt")
    sealer = EnvelopeManager(KmsManager(mock_kms_client()), KEY_ID, "aad")
    opener = EnvelopeManager(KmsManager(client), KEY_ID, "aad")

    sealed = await sealer.seal_aes_256(b"data")
    with pytest.raises(KeyServiceError) as exc_info:
        await opener.unseal_aes_256(sealed)
    assert exc_info.value.retryable is True


async def test_encrypt_and_decrypt_file(tmp_path):
    client = MagicMock()
    client.encrypt.return_value = {"CiphertextBlob": b"kms-ciphertext"}
    client.decrypt.return_value = {"Plaintext": b"small secret"}
    kms = KmsManager(client)
    src, enc, dst = tmp_path / "src", tmp_path / "enc", tmp_path / "dst"
    src.write_bytes(b"small secret")

    await kms.encrypt_file(KEY_ID, str(src), str(enc))
    await kms.decrypt_file(KEY_ID, str(enc), str(dst))

    assert enc.read_bytes() == b"kms-ciphertext"
    assert dst.read_bytes() == b"small secret"
    client.encrypt.assert_called_once_with(
        KeyId=KEY_ID, Plaintext=b"small secret", EncryptionAlgorithm="SYMMETRIC_DEFAULT"
    )


async def test_create_symmetric_default_key():
    client = MagicMock()
    client.create_key.return_value = {
        "KeyMetadata": {"KeyId": "1234", "Arn": "arn:aws:kms:us-east-1:0:key/1234"}
    }

    key = await KmsManager(client).create_symmetric_default_key("my-key")

    assert key == Key(id="1234", arn="arn:aws:kms:us-east-1:0:key/1234")
    kwargs = client.create_key.call_args.kwargs
    assert kwargs["KeySpec"] == "SYMMETRIC_DEFAULT"
    assert kwargs["KeyUsage"] == "ENCRYPT_DECRYPT"
    assert kwargs["Tags"] == [{"TagKey": "Name", "TagValue": "my-key"}]


async def test_schedule_to_delete_ignores_missing_and_pending():
    client = MagicMock()
    kms = KmsManager(client)

    client.schedule_key_deletion.side_effect = client_error("NotFoundException")
    await kms.schedule_to_delete("1234")

    client.schedule_key_deletion.side_effect = ClientError(
        {"Error": {"Code": "KMSInvalidStateException", "Message": "key is pending deletion"}},
        "ScheduleKeyDeletion",
    )
    await kms.schedule_to_delete("1234")

    client.schedule_key_deletion.side_effect = client_error("AccessDeniedException")
    with pytest.raises(KeyServiceError):
        await kms.schedule_to_delete("1234")


# =============================================================================
# InMemoryKeyService
# =============================================================================


async def test_in_memory_roundtrip(key_service):
    dek = await key_service.generate_data_key("test-key")
    assert len(dek.plaintext) == 32
    assert await key_service.decrypt("test-key", dek.ciphertext) == dek.plaintext.as_bytes()


async def test_in_memory_wrong_key(key_service):
    other = await key_service.create_key()
    dek = await key_service.generate_data_key("test-key")

    with pytest.raises(KeyServiceError, match="invalid ciphertext"):
        await key_service.decrypt(other, dek.ciphertext)


async def test_in_memory_deleted_key(key_service):
    dek = await key_service.generate_data_key("test-key")
    await key_service.delete_key("test-key")

    with pytest.raises(KeyServiceError, match="not found") as exc_info:
        await key_service.decrypt("test-key", dek.ciphertext)
    assert exc_info.value.retryable is False


async def test_in_memory_rejects_unsupported_spec_and_algorithm(key_service):
    with pytest.raises(KeyServiceError):
        await key_service.generate_data_key("test-key", "AES_128")
    with pytest.raises(KeyServiceError):
        await key_service.decrypt("test-key", b"x" * 60, "RSAES_OAEP_SHA_256")


def test_in_memory_never_retryable():
    assert InMemoryKeyService().classify_retryable(RuntimeError("x")) is False
