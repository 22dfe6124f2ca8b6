"""JSON file adapter for snapshot documents.

Implements ISnapshotStore on top of the local filesystem. Structural problems
that make the whole file unusable (missing file, invalid JSON, a top level
that is not an object) raise SnapshotFileError; everything finer-grained is
left to the mapper's tolerant parsing.
"""

import json
import logging
from pathlib import Path

from ...api.exceptions import SnapshotFileError
from ..domain.entities import SnapshotDocument
from ..domain.ports import ISnapshotMapper, ISnapshotStore
from .snapshot_mapper import SnapshotMapper

logger = logging.getLogger(__name__)


class JsonSnapshotStore(ISnapshotStore):
    """Reads and writes the intermediate document as indented UTF-8 JSON."""

    def __init__(self, mapper: ISnapshotMapper | None = None, indent: int = 2):
        self.mapper = mapper or SnapshotMapper()
        self.indent = indent

    def save(self, document: SnapshotDocument, path: str) -> None:
        payload = self.mapper.to_document(document)
        target = Path(path)

        logger.info(f"Saving {len(document.devices)} device(s) to {target}")
        try:
            with target.open("w", encoding="utf-8") as f:
                json.dump(payload, f, indent=self.indent, ensure_ascii=False)
                f.write("\n")
        except OSError as e:
            raise SnapshotFileError(
                f"Could not write snapshot: {e.strerror or e}",
                path=str(target),
                cause=e,
            )

    def load(self, path: str) -> SnapshotDocument:
        source = Path(path)
        if not source.is_file():
            raise SnapshotFileError(f"File not found: {source}", path=str(source))

        try:
            with source.open("r", encoding="utf-8-sig") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotFileError(
                f"Snapshot is not valid JSON: {e.msg} (line {e.lineno})",
                path=str(source),
                cause=e,
            )
        except OSError as e:
            raise SnapshotFileError(
                f"Could not read snapshot: {e.strerror or e}",
                path=str(source),
                cause=e,
            )

        if not isinstance(data, dict):
            raise SnapshotFileError(
                "Snapshot must be a JSON object with a 'devices' array",
                path=str(source),
            )

        document = self.mapper.from_document(data)
        logger.info(
            f"Loaded {len(document.devices)} device(s) from {source}"
            + (f", skipped {document.skipped_entries} malformed entries" if document.skipped_entries else "")
        )
        return document
