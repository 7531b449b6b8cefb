"""
Model Registry Tests.

Tests:
- Model construction and zero values
- Tag parsing and name strategies
- Registration (table names, prefixes, primary keys, failures)
- Bootstrap (reverse fields, implicit m2m through tables)
"""

import datetime
from typing import List, Optional

import pytest

from tessera import Model, column
from tessera.faults import ModelRegistrationFault
from tessera.models import (
    FieldType,
    bootstrap,
    camel_string,
    model_cache,
    parse_tag,
    register_model,
    register_model_with_prefix,
    register_model_with_suffix,
    snake_string,
    snake_string_with_acronym,
)
from tessera.models.utils import apply_name_strategy, set_name_strategy

from orm_models import Post, Tag, User


class TestModelInstances:
    """Model() fills zero values."""

    def test_zero_values(self):
        user = User()
        assert user.id == 0
        assert user.user_name == ""
        assert user.is_staff is False
        assert user.created is None
        assert user.profile is None
        assert user.posts == []

    def test_keyword_values(self):
        user = User(user_name="slene", nums=3)
        assert user.user_name == "slene"
        assert user.nums == 3

    def test_unknown_keyword(self):
        with pytest.raises(TypeError):
            User(nickname="x")


class TestTagParsing:
    """parse_tag and naming helpers."""

    def test_attrs_and_tags(self):
        attrs, tags = parse_tag("auto;size(100);Column(UserName);bogus(1)")
        assert attrs == {"auto": True}
        assert tags == {"size": "100", "column": "UserName"}

    def test_empty_tag(self):
        assert parse_tag("") == ({}, {})

    def test_snake_string(self):
        assert snake_string("UserProfile") == "user_profile"
        assert snake_string("XxYY") == "xx_y_y"

    def test_snake_string_with_acronym(self):
        assert snake_string_with_acronym("HTTPServer") == "http_server"

    def test_camel_string(self):
        assert camel_string("post_tags") == "PostTags"

    def test_name_strategy(self):
        set_name_strategy("snake_string_with_acronym")
        assert apply_name_strategy("APIKey") == "api_key"
        set_name_strategy("snake_string")
        assert apply_name_strategy("APIKey") == "a_p_i_key"

    def test_unknown_name_strategy(self):
        with pytest.raises(ValueError):
            set_name_strategy("kebab")


class TestRegistration:
    """register_model and friends."""

    def test_table_names_and_columns(self, registered_models):
        mi = model_cache.get("user")
        assert mi.full_name == "orm_models.User"
        assert mi.fields.pk.name == "id"
        assert mi.fields.pk.auto
        assert mi.fields.dbcols == [
            "id", "user_name", "email", "status", "is_staff", "nums",
            "created", "updated", "profile_id",
        ]

    def test_field_types(self, registered_models):
        fields = model_cache.get("user").fields
        assert fields.get_by_name("user_name").field_type == FieldType.VARCHAR
        assert fields.get_by_name("user_name").size == 30
        assert fields.get_by_name("user_name").unique
        assert fields.get_by_name("is_staff").field_type == FieldType.BOOLEAN
        assert fields.get_by_name("created").field_type == FieldType.DATE
        assert fields.get_by_name("created").auto_now_add
        assert fields.get_by_name("updated").auto_now
        assert fields.get_by_name("status").initial == "1"
        assert fields.get_by_name("profile").null

        post = model_cache.get("post").fields
        assert post.get_by_name("content").field_type == FieldType.TEXT
        assert post.get_by_name("title").index

    def test_lookup_by_column_and_case(self, registered_models):
        fields = model_cache.get("post").fields
        user = fields.get_by_name("user")
        assert fields.get_by_any("user_id") is user
        assert fields.get_by_any("USER") is user

    def test_get_by_md(self, registered_models):
        assert model_cache.get_by_md(User()) is model_cache.get("user")
        assert model_cache.get_by_md(User) is model_cache.get("user")

    def test_prefix_and_suffix(self):
        class Category(Model):
            id: int = column("auto")

        class Label(Model):
            id: int = column("auto")

        register_model_with_prefix("app_", Category)
        register_model_with_suffix("_v2", Label)
        assert model_cache.get("app_category") is not None
        assert model_cache.get("label_v2") is not None

    def test_implicit_id_primary_key(self):
        class Counter(Model):
            id: int
            hits: int

        register_model(Counter)
        pk = model_cache.get("counter").fields.pk
        assert pk.name == "id"
        assert pk.auto

    def test_repeat_register(self):
        register_model(Tag)
        with pytest.raises(ModelRegistrationFault, match="repeat Register"):
            register_model(Tag)

    def test_non_class(self):
        with pytest.raises(ModelRegistrationFault, match="non-class"):
            register_model(Tag())

    def test_auto_on_string(self):
        class Broken(Model):
            id: str = column("auto")

        with pytest.raises(ModelRegistrationFault, match="non-integer type cannot set auto"):
            register_model(Broken)

    def test_wrong_rel_value(self):
        class Broken(Model):
            id: int = column("auto")
            user: Optional[User] = column("rel(many)")

        with pytest.raises(ModelRegistrationFault, match="rel only allow"):
            register_model(Broken)

    def test_two_primary_keys(self):
        class Broken(Model):
            code: int = column("pk")
            other: int = column("pk")

        with pytest.raises(ModelRegistrationFault, match="one pk field only"):
            register_model(Broken)

    def test_set_null_requires_null(self):
        class Broken(Model):
            id: int = column("auto")
            user: Optional[User] = column("rel(fk);on_delete(set_null)")

        with pytest.raises(ModelRegistrationFault, match="set_null need set field null"):
            register_model(Broken)

    def test_unsupported_type(self):
        class Broken(Model):
            id: int = column("auto")
            blob: bytes

        with pytest.raises(ModelRegistrationFault, match="unsupport field type"):
            register_model(Broken)

    def test_skipped_attribute(self):
        class Note(Model):
            id: int = column("auto")
            cached: str = column("-")
            when: datetime.datetime

        register_model(Note)
        fields = model_cache.get("note").fields
        assert fields.get_by_name("cached") is None
        assert fields.get_by_name("when").field_type == FieldType.DATETIME


class TestBootstrap:
    """Relation wiring."""

    def test_reverse_fk(self, registered_models):
        user = model_cache.get("user").fields
        post = model_cache.get("post").fields
        assert user.get_by_name("posts").reverse_field_info is post.get_by_name("user")
        assert post.get_by_name("user").reverse_field_info is user.get_by_name("posts")
        assert post.get_by_name("user").column == "user_id"

    def test_reverse_one(self, registered_models):
        profile = model_cache.get("profile").fields
        user = model_cache.get("user").fields
        assert profile.get_by_name("user").field_type == FieldType.REL_REVERSE_ONE
        assert profile.get_by_name("user").reverse_field_info is user.get_by_name("profile")
        assert user.get_by_name("profile").unique

    def test_implicit_through_table(self, registered_models):
        through = model_cache.get("post_tags")
        assert through is not None
        assert through.is_through
        assert through.model is None
        assert through.fields.dbcols == ["id", "post_id", "tag_id"]
        assert through.uniques == ["post_id", "tag_id"]

        tags = model_cache.get("post").fields.get_by_name("tags")
        assert tags.rel_through_model_info is through
        assert tags.rel_table == "post_tags"
        assert tags.reverse_field_info.column == "post_id"
        assert tags.reverse_field_info_two.column == "tag_id"

    def test_reverse_m2m(self, registered_models):
        posts = model_cache.get("tag").fields.get_by_name("posts")
        tags = model_cache.get("post").fields.get_by_name("tags")
        assert posts.reverse_field_info_m2m is tags
        assert tags.reverse_field_info_m2m is posts
        assert posts.rel_through_model_info is tags.rel_through_model_info
        assert posts.reverse_field_info.column == "tag_id"

    def test_synthesized_reverse_field(self):
        class Author(Model):
            id: int = column("auto")

        class Book(Model):
            id: int = column("auto")
            author: Optional[Author] = column("rel(fk)")

        register_model(Author, Book)
        bootstrap()
        reverse = model_cache.get("author").fields.get_by_name("book")
        assert reverse is not None
        assert reverse.field_type == FieldType.REL_REVERSE_MANY
        assert reverse.reverse_field_info is model_cache.get("book").fields.get_by_name("author")

    def test_unregistered_target(self):
        register_model(Post, Tag)
        with pytest.raises(ModelRegistrationFault, match="may be miss Register"):
            bootstrap()
        assert not model_cache.done

    def test_failed_bootstrap_drops_through_tables(self):
        class Writer(Model):
            id: int = column("auto")

        class Book(Model):
            id: int = column("auto")

        class Shelf(Model):
            id: int = column("auto")
            books: List[Book] = column("rel(m2m)")

        class Review(Model):
            id: int = column("auto")
            book: Optional[Book] = column("rel(fk)")
            writer: Optional[Writer] = column("rel(fk)")

        register_model(Shelf, Book, Review)
        with pytest.raises(ModelRegistrationFault, match="may be miss Register"):
            bootstrap()
        assert model_cache.get("shelf_books") is None
        assert [mi.table for mi in model_cache.all_ordered()] == ["shelf", "book", "review"]

        register_model(Writer)
        bootstrap()
        assert model_cache.done
        assert model_cache.get("shelf_books").is_through
        review = model_cache.get("review").fields
        assert model_cache.get("writer").fields.get_by_name("review").reverse_field_info is review.get_by_name("writer")

    def test_failed_bootstrap_drops_reverse_fields(self):
        class Person(Model):
            id: int = column("auto")

        class Visa(Model):
            id: int = column("auto")
            person: Optional[Person] = column("rel(fk)")

        class Passport(Model):
            id: int = column("auto")
            holder: Optional[Person] = column("reverse(one)")

        register_model(Person, Visa, Passport)
        with pytest.raises(ModelRegistrationFault, match="not found in model"):
            bootstrap()
        person = model_cache.get("person").fields
        assert person.get_by_name("visa") is None
        assert person.fields_reverse == []
        assert person.orders == ["id"]
        assert not model_cache.done

    def test_bootstrap_is_idempotent(self, registered_models):
        tables = set(model_cache.all())
        bootstrap()
        assert set(model_cache.all()) == tables

    def test_registration_order(self, registered_models):
        tables = [mi.table for mi in model_cache.all_ordered()]
        assert tables[:5] == ["user", "profile", "post", "tag", "setting"]
        assert "post_tags" in tables[5:]

    def test_list_annotation_needs_model(self):
        class Broken(Model):
            id: int = column("auto")
            names: List[str] = column("rel(m2m)")

        with pytest.raises(ModelRegistrationFault):
            register_model(Broken)
