"""Idempotent pack and child record writes.

Layout::

    packs/<packId>
    packs/<packId>/overlays/<childId>
    packs/<packId>/soundEffects/<childId>
    packs/<packId>/lutFiles/<childId>
    packs/<packId>/lutPreviews/<childId>

Child ids are derived from destination paths (artifacts) or from the
normalized unit name (preview pairs), so writing the same content twice
overwrites instead of duplicating.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .categories import Category
from .errors import PackNotFoundError
from .models import MediaArtifact, Pack, PreviewPair
from .pairing import normalize_name
from ..storage.document_store import Document, DocumentStore

logger = logging.getLogger(__name__)

PACKS = 'packs'
OVERLAYS = 'overlays'
SOUND_EFFECTS = 'soundEffects'
LUT_FILES = 'lutFiles'
LUT_PREVIEWS = 'lutPreviews'

_ID_LENGTH = 20


def _digest(*parts: str) -> str:
    return hashlib.sha1('\x00'.join(parts).encode('utf-8')).hexdigest()[:_ID_LENGTH]


def pack_id_for(storage_path: str) -> str:
    """Stable pack id for an archive location."""
    return _digest('pack', storage_path)


def artifact_id_for(storage_path: str) -> str:
    return _digest('artifact', storage_path)


def pair_id_for(pack_id: str, unit: str) -> str:
    return _digest('pair', pack_id, normalize_name(unit))


def child_collection(pack_id: str, name: str) -> str:
    return f"{PACKS}/{pack_id}/{name}"


def artifact_collection(category: Category) -> str:
    if category is Category.OVERLAYS:
        return OVERLAYS
    if category is Category.SFX:
        return SOUND_EFFECTS
    return LUT_FILES


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TableAssignment:
    """A table file to record on an existing preview record."""

    preview_id: str
    unit: str
    table_path: str


class MetadataSynchronizer:
    """Reads and writes pack records in the document store."""

    def __init__(self, store: DocumentStore, clock: Callable[[], str] = utc_now):
        self.store = store
        self.clock = clock

    def find_pack(self, storage_path: str) -> Optional[Document]:
        """Pack record for an archive location, if one exists."""
        found = self.store.query(PACKS, 'storagePath', storage_path, limit=1)
        return found[0] if found else None

    def get_pack(self, pack_id: str) -> Optional[Document]:
        return self.store.get(PACKS, pack_id)

    def resolve_pack_id(self, storage_path: str) -> str:
        """Id of the existing pack for ``storage_path``, or a new stable one."""
        existing = self.find_pack(storage_path)
        if existing is not None:
            return existing.id
        return pack_id_for(storage_path)

    def is_processed(self, pack_id: str, category: Category) -> bool:
        """Cheap existence probe: does any child record exist?"""
        for name in category.child_collections:
            if self.store.query(child_collection(pack_id, name), limit=1):
                return True
        return False

    def existing_children(self, pack_id: str, category: Category) -> Dict[str, List[Document]]:
        return {
            name: self.store.query(child_collection(pack_id, name))
            for name in category.child_collections
        }

    def commit_pack(self, pack: Pack, artifacts: Sequence[MediaArtifact],
                    pairs: Sequence[PreviewPair] = ()) -> int:
        """Write the pack and all of its children in one atomic batch.

        Returns:
            Number of child records written

        Raises:
            CommitError: If the batch fails; nothing is written
        """
        now = self.clock()
        existing = self.get_pack(pack.id)
        created_at = existing.data.get('createdAt', now) if existing else now

        batch = self.store.batch()
        batch.set(PACKS, pack.id, {**pack.to_document(), 'createdAt': created_at, 'updatedAt': now})

        children = 0
        collection = child_collection(pack.id, artifact_collection(pack.category))
        for artifact_id, artifact in self._unique_artifacts(artifacts).items():
            batch.set(collection, artifact_id, {**artifact.to_document(pack), 'createdAt': now})
            children += 1

        pairs_collection = child_collection(pack.id, LUT_PREVIEWS)
        for pair in pairs:
            batch.set(pairs_collection, pair_id_for(pack.id, pair.unit), {**pair.to_document(pack), 'createdAt': now})
            children += 1

        batch.commit()
        logger.info(f"Committed pack: {{'pack_id': {pack.id!r}, 'category': {pack.category.folder!r}, 'children': {children}}}")
        return children

    @staticmethod
    def _unique_artifacts(artifacts: Iterable[MediaArtifact]) -> Dict[str, MediaArtifact]:
        unique: Dict[str, MediaArtifact] = {}
        for artifact in artifacts:
            artifact_id = artifact_id_for(artifact.storage_path)
            if artifact_id in unique:
                logger.warning(f"Duplicate destination, keeping last: {{'path': {artifact.storage_path!r}}}")
            unique[artifact_id] = artifact
        return unique

    def fill_table_files(self, pack: Pack, assignments: Sequence[TableAssignment],
                         table_artifacts: Sequence[MediaArtifact]) -> int:
        """Record newly found table files on existing preview records.

        Only previews without a table file are touched; the update fails
        the whole batch if a preview record disappeared meanwhile.

        Returns:
            Number of new lutFiles records
        """
        now = self.clock()
        batch = self.store.batch()
        previews = child_collection(pack.id, LUT_PREVIEWS)
        for assignment in assignments:
            batch.update(previews, assignment.preview_id, {
                'lutFilePath': assignment.table_path,
                'fileName': assignment.table_path.rsplit('/', 1)[-1],
                'updatedAt': now,
            })

        files = child_collection(pack.id, LUT_FILES)
        created = 0
        for artifact_id, artifact in self._unique_artifacts(table_artifacts).items():
            if self.store.get(files, artifact_id) is None:
                created += 1
            batch.set(files, artifact_id, {**artifact.to_document(pack), 'createdAt': now}, merge=True)

        batch.update(PACKS, pack.id, {'updatedAt': now})
        batch.commit()
        logger.info(f"Filled table files: {{'pack_id': {pack.id!r}, 'assigned': {len(assignments)}, 'new_files': {created}}}")
        return created

    def rename_pack(self, pack_id: str, title: str) -> int:
        """Change a pack's title and every child's copy of it atomically.

        Returns:
            Number of child records updated

        Raises:
            PackNotFoundError: If the pack does not exist
            CommitError: If the batch fails
        """
        pack_doc = self.get_pack(pack_id)
        if pack_doc is None:
            raise PackNotFoundError(f"Pack not found: {pack_id}", pack_id=pack_id)

        category = Category.parse(pack_doc.data['category'])
        now = self.clock()
        batch = self.store.batch()
        batch.update(PACKS, pack_id, {'title': title, 'updatedAt': now})

        updated = 0
        for name, docs in self.existing_children(pack_id, category).items():
            for doc in docs:
                batch.update(child_collection(pack_id, name), doc.id, {'packTitle': title})
                updated += 1

        batch.commit()
        logger.info(f"Renamed pack: {{'pack_id': {pack_id!r}, 'title': {title!r}, 'children': {updated}}}")
        return updated
