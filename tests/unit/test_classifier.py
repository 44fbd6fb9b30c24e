"""Unit tests for AssetClassifier."""

import pytest

from bundle_pipeline.core.classifier import AssetClassifier
from bundle_pipeline.core.exceptions import MissingConfiguration
from bundle_pipeline.core.models import PipelineSettings


class TestAssetClassifier:
    @pytest.fixture
    def classifier(self):
        return AssetClassifier.from_settings(PipelineSettings())

    def test_classifies_configuration_and_assets(self, classifier):
        bundle = classifier.classify(
            {
                "index.html": b"var uCount = 10;",
                "img_0.png": b"a",
                "img_1.jpg": b"bb",
                "readme.txt": b"ignored",
            }
        )
        assert bundle.configuration_name == "index.html"
        assert bundle.configuration_text == "var uCount = 10;"
        assert [a.name for a in bundle.assets] == ["img_0.png", "img_1.jpg"]
        assert bundle.assets[0].content_type == "image/png"
        assert bundle.assets[1].content_type == "image/jpeg"
        assert bundle.total_bytes == 3

    @pytest.mark.parametrize(
        "name",
        [
            "GoFixedSizeIcon.png",
            "GoFullScreenIcon.png",
            "80X80.png",
            "ks_logo.png",
            "instructions_1.png",
        ],
    )
    def test_excluded_images(self, classifier, name):
        bundle = classifier.classify({"index.html": b"", name: b"x"})
        assert bundle.assets == []

    def test_reserved_document_is_not_configuration(self, classifier):
        with pytest.raises(MissingConfiguration):
            classifier.classify({"instructions.html": b"var a = 1;", "img.png": b"x"})

    def test_missing_configuration(self, classifier):
        with pytest.raises(MissingConfiguration):
            classifier.classify({"img.png": b"x"})

    def test_first_configuration_document_wins(self, classifier):
        bundle = classifier.classify(
            {"b.html": b"var a = 2;", "a.html": b"var a = 1;", "img.png": b"x"}
        )
        assert bundle.configuration_name == "b.html"

    def test_extensions_case_insensitive(self, classifier):
        bundle = classifier.classify({"INDEX.HTML": b"", "IMG_1.PNG": b"x"})
        assert bundle.configuration_name == "INDEX.HTML"
        assert [a.name for a in bundle.assets] == ["IMG_1.PNG"]

    def test_nested_entries_use_base_name(self, classifier):
        bundle = classifier.classify(
            {"bundle/index.html": b"", "bundle/frames/img_1.png": b"x"}
        )
        assert bundle.configuration_name == "bundle/index.html"
        assert bundle.assets[0].name == "img_1.png"

    def test_empty_asset_list_is_not_an_error(self, classifier):
        bundle = classifier.classify({"index.html": b"var a = 1;"})
        assert bundle.assets == []
        assert bundle.total_bytes == 0

    def test_custom_rules(self):
        classifier = AssetClassifier(
            config_extension=".htm", image_extensions=(".webp",), excluded_prefixes=("skip",)
        )
        bundle = classifier.classify(
            {"main.htm": b"", "a.webp": b"x", "skip_me.webp": b"y", "b.png": b"z"}
        )
        assert [a.name for a in bundle.assets] == ["a.webp"]
