"""Tests for the markdown metadata block reader and writer."""

from kbase import frontmatter


class TestParse:

    def test_basic(self):
        text = "---\nid: 3\ntitle: Fix login\ntags:\n- auth\n---\n\nBody text\n"
        metadata, body = frontmatter.parse(text)
        assert metadata == {"id": 3, "title": "Fix login", "tags": ["auth"]}
        assert body == "Body text\n"

    def test_no_block_is_all_body(self):
        assert frontmatter.parse("just text") == ({}, "just text")

    def test_empty_block(self):
        assert frontmatter.parse("---\n---\nbody") == ({}, "body")

    def test_unquoted_dates_become_strings(self):
        metadata, _ = frontmatter.parse(
            "---\nstart_date: 2025-07-28\ncreated_at: 2025-07-28T10:00:00.5Z\n---\n"
        )
        assert metadata["start_date"] == "2025-07-28"
        assert metadata["created_at"] == "2025-07-28T10:00:00.500Z"

    def test_malformed_yaml(self, caplog):
        metadata, body = frontmatter.parse("---\ntitle: [unclosed\n---\nbody")
        assert metadata == {}
        assert body == "body"
        assert "Malformed metadata block" in caplog.text

    def test_not_a_mapping(self):
        metadata, _ = frontmatter.parse("---\n- a\n- b\n---\n")
        assert metadata == {}

    def test_crlf(self):
        metadata, body = frontmatter.parse("---\r\ntitle: x\r\n---\r\n\r\nline\r\n")
        assert metadata == {"title": "x"}
        assert body == "line\r\n"


class TestRender:

    def test_key_order_preserved(self):
        text = frontmatter.render({"id": 1, "title": "b", "base": "tasks"}, "")
        assert text.index("id:") < text.index("title:") < text.index("base:")

    def test_round_trip_keeps_strings_strings(self):
        metadata = {
            "id": 4,
            "title": "yes",
            "start_date": "2025-07-28",
            "created_at": "2025-07-28T10:00:00.000Z",
            "tags": ["ünïcode", "123"],
        }
        body = "# Heading\n\n---\n\nA rule above.\n"
        assert frontmatter.parse(frontmatter.render(metadata, body)) == (metadata, body)
