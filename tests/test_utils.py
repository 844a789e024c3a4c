import pytest

from app.utils import cosine_similarity, extract_json_object, hash_text, slugify


def test_slugify_basic():
    assert slugify("Late Night Thrills!") == "late-night-thrills"


def test_slugify_with_underscore_separator():
    assert slugify("Action RPG", separator="_") == "action_rpg"


def test_extract_json_object_from_markdown():
    payload = """
    Here is your payload:
    ```json
    {"collections": []}
    ```
    """
    assert extract_json_object(payload) == {"collections": []}


def test_extract_json_object_rejects_prose():
    with pytest.raises(ValueError):
        extract_json_object("I could not think of anything.")


def test_hash_text_is_stable_and_content_sensitive():
    first = hash_text("Game: Hades\nGenres: Roguelike")
    assert first == hash_text("Game: Hades\nGenres: Roguelike")
    assert first != hash_text("Game: Hades\nGenres: Action")
    assert len(first) == 64


def test_cosine_similarity_bounds():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_similarity_zero_vector_scores_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_similarity_rejects_dimension_mismatch():
    with pytest.raises(ValueError, match="different dimensions"):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])
