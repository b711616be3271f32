"""
Visual Pinball table processor.

VPT and VPX tables are OLE compound documents. Textures, sounds, game items
and collections are stored as separate streams of the "GameStg" storage,
table properties as UTF-16 streams of the "TableInfo" storage.

The block index lists every stream with its MD5 hash and size, so equal
textures and sounds can be looked up across releases. The table file itself
is never modified.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import TYPE_CHECKING, Any

import olefile

from media.categories import MimeCategory
from media.processors.base import OptimizationProcessor, PermanentProcessingError

if TYPE_CHECKING:
    from media.variations import Variation

logger = logging.getLogger(__name__)

GAME_STORAGE = "GameStg"
INFO_STORAGE = "TableInfo"

BLOCK_TYPES = {
    "Image": "image",
    "Sound": "sound",
    "GameItem": "gameitem",
    "Collection": "collection",
}

BLOCK_STREAM_PATTERN = re.compile(r"^(Image|Sound|GameItem|Collection)(\d+)$")


class TableProcessingError(PermanentProcessingError):
    """Raised when a file is not a readable Visual Pinball table."""

    pass


class TableBlockIndexProcessor(OptimizationProcessor):
    """Indexes the blocks a table file is made of."""

    name = "table.blockindex"

    def can_process(self, media_file, variation=None) -> bool:
        return variation is None and media_file.get_category() == MimeCategory.TABLE

    def get_order(self, variation: "Variation | None" = None) -> int:
        return 400

    def modifies_file(self) -> bool:
        return False

    def run(self, media_file, src_path, dest_path, variation=None) -> dict[str, Any]:
        if not olefile.isOleFile(src_path):
            raise TableProcessingError("File is not an OLE compound document")

        blocks = []
        info = {}
        try:
            with olefile.OleFileIO(src_path) as ole:
                if not ole.exists(GAME_STORAGE):
                    raise TableProcessingError(f"Table has no {GAME_STORAGE} storage")

                for entry in ole.listdir():
                    if len(entry) != 2:
                        continue
                    storage, stream = entry

                    if storage == INFO_STORAGE:
                        data = ole.openstream(entry).read()
                        info[stream] = data.decode("utf-16-le", errors="ignore").replace("\0", "")
                        continue

                    match = BLOCK_STREAM_PATTERN.match(stream)
                    if storage != GAME_STORAGE or not match:
                        continue
                    data = ole.openstream(entry).read()
                    if not data:
                        logger.warning(
                            "Ignoring empty table stream",
                            extra={"media_file_id": str(media_file.pk), "stream": stream},
                        )
                        continue
                    blocks.append({
                        "stream": stream,
                        "type": BLOCK_TYPES[match.group(1)],
                        "hash": hashlib.md5(data).hexdigest(),
                        "bytes": len(data),
                    })
        except OSError as e:
            # olefile reports corrupt structures as OSError
            raise TableProcessingError(f"Cannot read table file: {e}") from e

        counts = {block_type: 0 for block_type in BLOCK_TYPES.values()}
        for block in blocks:
            counts[block["type"]] += 1

        logger.info(
            "Indexed table blocks",
            extra={"media_file_id": str(media_file.pk), **counts},
        )
        return {"blocks": blocks, "counts": counts, "info": info}
