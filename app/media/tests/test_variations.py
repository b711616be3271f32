"""
Tests for the variation catalog.

Tests cover:
- Declared variations per asset kind and category
- Determinism of the catalog
- Source references between variations
- Accepted MIME types
"""

import pytest

from media.categories import MimeCategory
from media.exceptions import UnknownFileType, UnknownMimeType
from media.variations import (
    ACCEPTED_MIME_TYPES,
    CATALOG,
    FileType,
    Variation,
    file_types_for,
    is_accepted,
    iter_catalog,
    variation_category,
    variations_for,
)


class TestVariationsFor:
    """Tests for variations_for()."""

    def test_backglass_image_variations(self):
        names = [v.name for v in variations_for(FileType.BACKGLASS, "image/png")]

        assert names == ["small", "small-2x", "medium", "medium-2x"]

    def test_backglass_directb2s_derives_from_extracted_image(self):
        variations = {v.name: v for v in variations_for(FileType.BACKGLASS, "application/x-directb2s")}

        assert variations["full"].source is None
        assert variations["full"].mime_type == "image/jpeg"
        assert variations["small"].source == "full"
        assert variations["medium"].source == "full"

    def test_video_playfield_has_still_and_clip(self):
        variations = {v.name: v for v in variations_for(FileType.PLAYFIELD_FS, "video/mp4")}

        assert variations["still"].mime_type == "image/png"
        assert variations["still-medium"].source == "still"
        assert variations["small-rotated"].mime_type == "video/mp4"
        assert variations["small-rotated"].rotate == 90

    def test_same_arguments_give_same_result(self):
        first = variations_for(FileType.PLAYFIELD, "image/jpeg")
        second = variations_for(FileType.PLAYFIELD, "image/jpeg")

        assert first == second

    def test_kind_without_derivatives_returns_empty_tuple(self):
        assert variations_for(FileType.RELEASE, "application/x-visual-pinball-table-x") == ()
        assert variations_for(FileType.ROM, "application/zip") == ()

    def test_category_without_derivatives_returns_empty_tuple(self):
        assert variations_for(FileType.LOGO, "video/mp4") == ()

    def test_unknown_file_type_raises(self):
        with pytest.raises(UnknownFileType) as exc_info:
            variations_for("wheel", "image/png")

        assert exc_info.value.details == {"file_type": "wheel"}

    def test_unknown_mime_type_raises(self):
        with pytest.raises(UnknownMimeType):
            variations_for(FileType.BACKGLASS, "image/gif")


class TestCatalogConsistency:
    """Structural checks over the whole catalog."""

    def test_every_file_type_has_a_catalog(self):
        assert set(CATALOG) == set(FileType.values)

    def test_variation_names_unique_per_entry(self):
        for by_category in CATALOG.values():
            for variations in by_category.values():
                names = [v.name for v in variations]
                assert len(names) == len(set(names))

    def test_sources_are_declared_in_same_entry(self):
        for file_type, mime_type, variation in iter_catalog():
            if variation.source is None:
                continue
            names = [v.name for v in variations_for(file_type, mime_type)]
            assert variation.source in names, (file_type, mime_type, variation.name)

    def test_iter_catalog_covers_accepted_types(self):
        triples = list(iter_catalog())

        assert (FileType.LOGO, "image/png", Variation("medium", width=300, height=150)) in triples
        assert all(mime in ACCEPTED_MIME_TYPES[file_type] for file_type, mime, _ in triples)


class TestAcceptedMimeTypes:
    """Tests for is_accepted() and file_types_for()."""

    def test_logo_only_accepts_png(self):
        assert is_accepted(FileType.LOGO, "image/png")
        assert not is_accepted(FileType.LOGO, "image/jpeg")

    def test_directb2s_only_for_backglass(self):
        assert file_types_for("application/x-directb2s") == [FileType.BACKGLASS]

    def test_unknown_kind_accepts_nothing(self):
        assert not is_accepted("wheel", "image/png")


class TestVariationCategory:
    """Tests for variation_category()."""

    def test_inherits_original_category(self):
        assert variation_category(Variation("small"), "image/jpeg") == MimeCategory.IMAGE

    def test_own_mime_type_wins(self):
        still = Variation("still", mime_type="image/png")

        assert variation_category(still, "video/mp4") == MimeCategory.IMAGE

    def test_original_when_no_variation(self):
        assert variation_category(None, "video/mp4") == MimeCategory.VIDEO
