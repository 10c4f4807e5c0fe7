from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

import embeddings_client
from embeddings_client import embed_texts
from errors import ConfigurationError, TransientExternalError


def _item(index: int, vector: list[float]) -> MagicMock:
    item = MagicMock()
    item.index = index
    item.embedding = vector
    return item


def test_embed_texts_returns_vectors_in_input_order() -> None:
    response = MagicMock()
    response.data = [_item(1, [0.5, 0.25]), _item(0, [0.123456789, 1.0])]
    mock_client = MagicMock()
    mock_client.embeddings.create.return_value = response

    with patch("embeddings_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        vectors = embed_texts(["first", "second"], model="text-embedding-3-small")

    assert vectors == [(0.123457, 1.0), (0.5, 0.25)]
    mock_client.embeddings.create.assert_called_once_with(model="text-embedding-3-small", input=["first", "second"])


def test_embed_texts_empty_input_makes_no_call() -> None:
    with patch("embeddings_client.OpenAI") as mock_openai:
        assert embed_texts([]) == []
    mock_openai.assert_not_called()


def test_embed_texts_batches_large_inputs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(embeddings_client, "BATCH_SIZE", 2)
    mock_client = MagicMock()
    mock_client.embeddings.create.side_effect = lambda model, input: MagicMock(
        data=[_item(i, [float(len(t))]) for i, t in enumerate(input)]
    )

    with patch("embeddings_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        vectors = embed_texts(["a", "bb", "ccc"])

    assert vectors == [(1.0,), (2.0,), (3.0,)]
    assert mock_client.embeddings.create.call_count == 2


def test_embed_texts_raises_without_api_key() -> None:
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            embed_texts(["text"])


def test_embed_texts_retries_then_raises_transient_error() -> None:
    mock_client = MagicMock()
    mock_client.embeddings.create.side_effect = RuntimeError("503 upstream")

    with patch("embeddings_client.OpenAI", return_value=mock_client), \
         patch("embeddings_client.time.sleep"), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        with pytest.raises(TransientExternalError, match="after 2 attempts"):
            embed_texts(["text"], max_attempts=2)

    assert mock_client.embeddings.create.call_count == 2


@pytest.mark.parametrize("error_cls,status", [
    (openai.AuthenticationError, 401),
    (openai.BadRequestError, 400),
])
def test_embed_texts_does_not_retry_rejected_requests(error_cls: type, status: int) -> None:
    response = httpx.Response(status, request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))
    mock_client = MagicMock()
    mock_client.embeddings.create.side_effect = error_cls("rejected", response=response, body=None)

    with patch("embeddings_client.OpenAI", return_value=mock_client), \
         patch("embeddings_client.time.sleep") as mock_sleep, \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        with pytest.raises(ConfigurationError, match="rejected"):
            embed_texts(["text"], max_attempts=3)

    assert mock_client.embeddings.create.call_count == 1
    mock_sleep.assert_not_called()
