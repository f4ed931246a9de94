"""Tests for content targeting (slide filtering by display tags)."""

from __future__ import annotations

from signage.targeting import filter_slides, normalize_tags, slide_matches

SLIDES = [
    {"content": "A", "targetTags": []},
    {"content": "B", "targetTags": ["gym"]},
    {"content": "C", "targetTags": ["all"]},
]


class TestNormalizeTags:
    def test_list(self):
        assert normalize_tags(["Gym", " Library ", "gym"]) == ["gym", "library"]

    def test_comma_string(self):
        assert normalize_tags("lobby, Cafeteria,,") == ["lobby", "cafeteria"]

    def test_none_and_junk(self):
        assert normalize_tags(None) == []
        assert normalize_tags(["ok", 3, None]) == ["ok"]


class TestFilterSlides:
    def test_gym_display_sees_everything(self):
        assert [s["content"] for s in filter_slides(SLIDES, ["gym"])] == ["A", "B", "C"]

    def test_untagged_display_sees_everything(self):
        assert filter_slides(SLIDES, []) == SLIDES
        assert filter_slides(SLIDES, None) == SLIDES

    def test_library_display_skips_gym_slide(self):
        assert [s["content"] for s in filter_slides(SLIDES, ["library"])] == ["A", "C"]

    def test_case_insensitive(self):
        slides = [{"content": "X", "targetTags": ["GYM"]}]
        assert filter_slides(slides, ["Gym"]) == slides

    def test_all_tag_case_insensitive(self):
        assert slide_matches({"targetTags": ["ALL"]}, ["office"])

    def test_preserves_order(self):
        slides = [{"content": str(i), "targetTags": ["x"] if i % 2 else []} for i in range(6)]
        kept = filter_slides(slides, ["y"])
        assert [s["content"] for s in kept] == ["0", "2", "4"]

    def test_empty_slides(self):
        assert filter_slides([], ["gym"]) == []
        assert filter_slides(None, ["gym"]) == []

    def test_missing_target_tags_shown_everywhere(self):
        assert slide_matches({"content": "no tags"}, ["gym"])

    def test_object_slides(self):
        class S:
            targetTags = ["library"]

        assert slide_matches(S(), ["library"])
        assert not slide_matches(S(), ["gym"])
