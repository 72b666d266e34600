"""
File-based cache of successful extractions.

One JSON file per (site type, page content) pair. The cache is constructed
once by the caller and handed to the Extractor; there is no shared default
instance.
"""

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .schemas import ExtractedRecord, PageData
from .site_types import SiteType
from .logger import get_module_logger

logger = get_module_logger("extraction_cache")


class ExtractionCache:
    """
    File-based cache for extracted field maps.

    Files are named "<site type>_<content hash>.json" so the cache directory
    stays easy to audit and edit by hand.
    """

    def __init__(self, cache_dir: Union[str, Path, None] = None):
        """
        Args:
            cache_dir: Directory to store cache files.
                      Defaults to ./extraction_cache/
        """
        if cache_dir is None:
            cache_dir = Path.cwd() / "extraction_cache"

        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Extraction cache initialized at: {self.cache_dir}")

    @staticmethod
    def make_key(page: PageData, site_type: Union[str, SiteType, None]) -> str:
        """Cache key from the site type and a hash of the page content."""
        site = SiteType.parse(site_type).value
        content = json.dumps(
            [page.url, page.title, page.text_content, page.description],
            ensure_ascii=False
        )
        # 16 hex chars (64 bits) is plenty for one machine's cache
        digest = hashlib.sha256(content.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"{site}_{digest}"

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def get(self, page: PageData, site_type: Union[str, SiteType, None]) -> Optional[ExtractedRecord]:
        """Return the cached field map, or None on a miss or unreadable entry."""
        key = self.make_key(page, site_type)
        cache_file = self._path(key)

        if not cache_file.exists():
            logger.debug(f"Cache miss for key: {key}")
            return None

        try:
            data = json.loads(cache_file.read_text(encoding="utf-8"))
            record = data["data"]
            if not isinstance(record, dict):
                raise ValueError("cached data is not an object")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load cached extraction {key}: {e}")
            return None

        logger.info(f"Cache hit for key: {key}")
        return record

    def put(
        self,
        page: PageData,
        site_type: Union[str, SiteType, None],
        data: ExtractedRecord,
        extra_info: Optional[dict] = None
    ) -> str:
        """Store a field map. Returns the cache key used."""
        key = self.make_key(page, site_type)
        cache_file = self._path(key)

        cache_data = {
            "cache_key": key,
            "site_type": SiteType.parse(site_type).value,
            "url": page.url,
            "created_at": datetime.now().isoformat(),
            "data": data,
            "extra_info": extra_info or {}
        }

        cache_file.write_text(json.dumps(cache_data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Cached extraction with key: {key} -> {cache_file}")
        return key

    def exists(self, page: PageData, site_type: Union[str, SiteType, None]) -> bool:
        return self._path(self.make_key(page, site_type)).exists()

    def delete(self, page: PageData, site_type: Union[str, SiteType, None]) -> bool:
        """Delete one cached extraction."""
        key = self.make_key(page, site_type)
        cache_file = self._path(key)
        if cache_file.exists():
            cache_file.unlink()
            logger.info(f"Deleted cache for key: {key}")
            return True
        return False

    def clear(self) -> int:
        """Clear all cached extractions. Returns count of deleted files."""
        count = 0
        for cache_file in self.cache_dir.glob("*.json"):
            cache_file.unlink()
            count += 1
        logger.info(f"Cleared {count} cached extractions")
        return count

    def list_cached(self) -> list[dict]:
        """List all cached entries, skipping unreadable files."""
        entries = []
        for cache_file in sorted(self.cache_dir.glob("*.json")):
            try:
                data = json.loads(cache_file.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.debug(f"Skipping unreadable cache file {cache_file}: {e}")
                continue
            entries.append({
                "cache_key": data.get("cache_key"),
                "site_type": data.get("site_type"),
                "url": data.get("url"),
                "created_at": data.get("created_at"),
                "file": str(cache_file)
            })
        return entries
