from django.core.exceptions import ImproperlyConfigured

import numpy as np
import pytest
from cryptography.fernet import Fernet

from src.common import EmbeddingCipher, InvalidToken, decrypt_embedding, encrypt_embedding
from users.models import FaceEmbedding

from tests.support import reference_vector


def test_embedding_survives_encryption():
    vector = np.linspace(-1.0, 1.0, 128)

    token = encrypt_embedding(vector)

    assert vector.tobytes() not in token
    np.testing.assert_array_equal(decrypt_embedding(token), vector)


def test_token_from_another_key_is_rejected():
    foreign = EmbeddingCipher(key_override=Fernet.generate_key())

    with pytest.raises(InvalidToken):
        decrypt_embedding(foreign.encrypt(np.ones(4)))


def test_invalid_key_is_a_configuration_error():
    with pytest.raises(ImproperlyConfigured):
        EmbeddingCipher(key_override="short").encrypt(np.ones(4))


def test_encrypt_requires_an_array():
    with pytest.raises(TypeError):
        encrypt_embedding([0.1, 0.2])


@pytest.mark.django_db
def test_stored_embeddings_are_encrypted(user):
    vector = reference_vector(3)

    FaceEmbedding.build(user, 0, vector).save()

    stored = FaceEmbedding.objects.get(user=user)
    assert bytes(stored.vector) != vector.tobytes()
    np.testing.assert_array_equal(stored.as_array(), vector)
