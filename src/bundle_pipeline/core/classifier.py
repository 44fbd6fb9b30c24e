"""Splitting extracted bundle entries into the configuration document and assets."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .asset_utils import base_name, infer_content_type
from .exceptions import MissingConfiguration
from .logging_config import get_logger
from .models import DEFAULT_EXCLUDED_PREFIXES, AssetItem, PipelineSettings

logger = get_logger("classifier")


@dataclass
class ClassifiedBundle:
    """The configuration document plus every transferable asset of a bundle."""

    configuration_name: str
    configuration_text: str
    assets: List[AssetItem] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(asset.size for asset in self.assets)


class AssetClassifier:
    """Partitions extracted entries by filename rules."""

    def __init__(
        self,
        config_extension: str = ".html",
        reserved_prefix: str = "instructions",
        image_extensions: Sequence[str] = (".png", ".jpg", ".jpeg"),
        excluded_prefixes: Sequence[str] = tuple(DEFAULT_EXCLUDED_PREFIXES),
    ):
        self._config_extension = config_extension.lower()
        self._reserved_prefix = reserved_prefix
        self._image_extensions = tuple(ext.lower() for ext in image_extensions)
        self._excluded_prefixes = tuple(excluded_prefixes)

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "AssetClassifier":
        return cls(
            config_extension=settings.config_document_extension,
            reserved_prefix=settings.reserved_document_prefix,
            image_extensions=settings.image_extensions,
            excluded_prefixes=settings.excluded_prefixes,
        )

    def is_configuration_document(self, name: str) -> bool:
        return name.lower().endswith(self._config_extension) and not name.startswith(
            self._reserved_prefix
        )

    def is_asset(self, name: str) -> bool:
        return name.lower().endswith(self._image_extensions) and not name.startswith(
            self._excluded_prefixes
        )

    def classify(self, entries: Dict[str, bytes]) -> ClassifiedBundle:
        """
        Locate the configuration document and collect the assets.

        The first configuration candidate in enumeration order wins. An empty
        asset list is not an error here.

        Raises:
            MissingConfiguration: If no configuration document exists.
        """
        candidates: List[str] = []
        configuration: Optional[str] = None
        assets: Dict[str, AssetItem] = {}

        for entry_name, payload in entries.items():
            name = base_name(entry_name)

            if self.is_configuration_document(name):
                candidates.append(entry_name)
                if configuration is None:
                    configuration = entry_name

            if self.is_asset(name):
                if name in assets:
                    logger.warning(
                        f"Duplicate asset name '{name}' in bundle; keeping '{entry_name}'"
                    )
                assets[name] = AssetItem(
                    name=name, data=payload, content_type=infer_content_type(name)
                )

        if configuration is None:
            raise MissingConfiguration(
                "No main configuration document "
                f"(*{self._config_extension}) found in the archive"
            )

        if len(candidates) > 1:
            logger.warning(
                f"Bundle holds {len(candidates)} configuration documents "
                f"{candidates}; using '{configuration}'"
            )

        logger.info(
            f"Classified bundle: configuration '{configuration}', {len(assets)} assets"
        )
        return ClassifiedBundle(
            configuration_name=configuration,
            configuration_text=entries[configuration].decode("utf-8", errors="replace"),
            assets=list(assets.values()),
        )
