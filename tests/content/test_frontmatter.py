from datetime import UTC, datetime

import pytest

from content_publisher_mcp.content.frontmatter import create_metadata, extract_frontmatter, generate_slug, normalize_tags

NOW = datetime(2024, 3, 5, 14, 7, 9, tzinfo=UTC)


class TestExtractFrontmatter:
    def test_note_with_frontmatter(self):
        frontmatter, body = extract_frontmatter("---\ntitle: Hello\ntags: [a, b]\n---\n# Body\n")

        assert frontmatter == {"title": "Hello", "tags": ["a", "b"]}
        assert body == "# Body\n"

    def test_windows_line_endings(self):
        frontmatter, body = extract_frontmatter("---\r\ntitle: Hello\r\n---\r\nBody")

        assert frontmatter == {"title": "Hello"}
        assert body == "Body"

    def test_note_without_frontmatter(self):
        assert extract_frontmatter("# Just a heading\n") == ({}, "# Just a heading\n")

    def test_frontmatter_not_at_start(self):
        markdown = "Intro\n---\ntitle: Hello\n---\n"

        assert extract_frontmatter(markdown) == ({}, markdown)

    def test_invalid_yaml(self):
        markdown = "---\ntitle: [unclosed\n---\nBody"

        assert extract_frontmatter(markdown) == ({}, markdown)

    def test_frontmatter_that_is_not_a_mapping(self):
        markdown = "---\n- one\n- two\n---\nBody"

        assert extract_frontmatter(markdown) == ({}, markdown)


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Hello World", "hello-world"),
        ("  Leading and trailing!  ", "leading-and-trailing"),
        ("C++ & Rust: a comparison", "c-rust-a-comparison"),
        ("2024 Recap", "2024-recap"),
        ("!!!", ""),
    ],
)
def test_generate_slug(title: str, expected: str):
    assert generate_slug(title) == expected


def test_normalize_tags():
    assert normalize_tags(None) == []
    assert normalize_tags("python, notes ,") == ["python", "notes"]
    assert normalize_tags(["python", 3, None]) == ["python", "3"]
    assert normalize_tags("single") == ["single"]


class TestCreateMetadata:
    def test_defaults(self):
        metadata = create_metadata("No frontmatter here", now=NOW)

        assert metadata == {
            "title": "Untitled Note",
            "slug": "untitled-note",
            "date": "2024-03-05T14:07:09+00:00",
            "description": "",
            "tags": [],
        }

    def test_frontmatter_values(self):
        markdown = "---\ntitle: My Post\ndescription: About things\ntags: one, two\ndate: 2023-01-01\n---\nBody"

        metadata = create_metadata(markdown, now=NOW)

        assert metadata["title"] == "My Post"
        assert metadata["slug"] == "my-post"
        assert metadata["description"] == "About things"
        assert metadata["tags"] == ["one", "two"]
        assert str(metadata["date"]) == "2023-01-01"

    def test_overrides_win_over_frontmatter(self):
        markdown = "---\ntitle: From Frontmatter\nslug: frontmatter-slug\n---\nBody"

        metadata = create_metadata(markdown, overrides={"title": "Override", "slug": "custom"}, now=NOW)

        assert metadata["title"] == "Override"
        assert metadata["slug"] == "custom"

    def test_empty_overrides_are_ignored(self):
        markdown = "---\ntitle: From Frontmatter\ndescription: Kept\n---\nBody"

        metadata = create_metadata(markdown, overrides={"title": "", "description": None}, now=NOW)

        assert metadata["title"] == "From Frontmatter"
        assert metadata["description"] == "Kept"

    def test_frontmatter_disabled(self):
        markdown = "---\ntitle: From Frontmatter\n---\nBody"

        metadata = create_metadata(markdown, use_frontmatter=False, now=NOW)

        assert metadata["title"] == "Untitled Note"

    def test_slug_follows_override_title(self):
        markdown = "---\ntitle: Old Title\n---\nBody"

        metadata = create_metadata(markdown, overrides={"title": "New Title"}, now=NOW)

        assert metadata["slug"] == "new-title"
