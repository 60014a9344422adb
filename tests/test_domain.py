import json

import pytest

from gononymous.board.domain import Character, PostDto, post_dto_to_dao

AVATAR = "https://rickandmortyapi.com/api/character/avatar/1.jpeg"


def test_character_to_json():
    character = Character(name="Rick Sanchez", avatar_url=AVATAR)
    assert character.to_json() == '{"name":"Rick Sanchez","image":"' + AVATAR + '"}'


def test_character_from_json():
    character = Character.from_json('{"name":"Rick Sanchez","image":"' + AVATAR + '"}')
    assert character.name == "Rick Sanchez"
    assert character.avatar_url == AVATAR


def test_character_from_json_missing_image():
    character = Character.from_json('{"name":"Rick Sanchez"}')
    assert character.name == "Rick Sanchez"
    assert character.avatar_url == ""


def test_character_from_json_ignores_unknown_keys():
    character = Character.from_json(
        '{"id": 1, "name": "Rick Sanchez", "status": "Alive", "species": "Human"}'
    )
    assert character == Character(name="Rick Sanchez", avatar_url="")


def test_character_from_json_matches_keys_case_insensitively():
    character = Character.from_json('{"Name": "Morty", "IMAGE": "x.png"}')
    assert character == Character(name="Morty", avatar_url="x.png")


def test_character_round_trip():
    original = Character(name="Summer & <Beth>", avatar_url="a.png")
    assert Character.from_json(original.to_json()) == original


def test_character_json_escapes_html():
    text = Character(name="<b>", avatar_url="").to_json()
    assert text == '{"name":"\\u003cb\\u003e","image":""}'


def test_character_from_bad_json():
    with pytest.raises(ValueError):
        Character.from_json('{ "invalid": "json" ')


def test_character_from_non_object():
    with pytest.raises(ValueError):
        Character.from_json("[1, 2]")


def test_character_wrong_field_type():
    with pytest.raises(ValueError):
        Character.from_json(json.dumps({"name": 5}))


def test_post_dto_to_dao_copies_text_fields_only():
    dto = PostDto(
        id="p1",
        author_id="u1",
        author_name="Rick",
        title="Title",
        subject="Subject",
        content="Body",
        image="img.png",
    )
    dao = post_dto_to_dao(dto)
    assert (dao.title, dao.subject, dao.content) == ("Title", "Subject", "Body")
    assert dao.post_id == ""
    assert dao.user_id == ""
    assert dao.image_url == ""