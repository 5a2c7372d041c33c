"""End-to-end package build: roles in, sealed archive out.

The builder drives one pass through the pipeline::

    INIT -> ROLE_PROCESSING -> MANIFEST_WRITTEN -> SEALED

Roles are processed concurrently on a thread pool.  Each role task adds its
direct files first and its links afterwards, so a link always resolves against
content that is already committed.  The first failing role cancels its
siblings, the pool is drained, and the first error is re-raised; the builder
then moves to ``FAILED`` and refuses to write a manifest or an archive.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .cancellation import CancellationToken, CancellationTokenGroup, RoleCancelled
from .catalog import ContentCatalog
from .dedup import DeduplicationStrategy, strategy_for
from .errors import PackageStateError, UnknownLayoutError
from .logging_utils import build_adapter, generate_correlation_id
from .manifest import ManifestWriter
from .models import ContentOrigin, LayoutDefinition, Role
from .naming import NAMED_STREAMS, SERVICE_DEFINITION, IdGenerator, layout_name_for_role
from .opc import ArchiveAssembler
from .settings import PackageSettings
from .store import ContentStore, FileContentStore, ZipContentStore

__all__ = ["BuildState", "BuildResult", "PackageBuilder"]

logger = logging.getLogger(__name__)


class BuildState(str, Enum):
    INIT = "init"
    ROLE_PROCESSING = "role_processing"
    MANIFEST_WRITTEN = "manifest_written"
    SEALED = "sealed"
    FAILED = "failed"


@dataclass(frozen=True)
class BuildResult:
    """Summary of a sealed package."""

    archive: Path
    layouts: Tuple[str, ...]
    contents: int
    correlation_id: str


class PackageBuilder:
    """Build one package from a role table.

    Args:
        store: Content store to stage into.  Defaults to a
            :class:`FileContentStore` under ``staging_dir`` when given, else an
            in-memory :class:`ZipContentStore`.
        settings: Build settings; defaults to :class:`PackageSettings`.
        staging_dir: Staging directory used when ``store`` is omitted.
        id_generator: Token source for ``LocalContent`` storage names.
        dedup: Deduplication policy; derived from ``settings.hashing_algorithm``
            when omitted.
    """

    def __init__(
        self,
        store: Optional[ContentStore] = None,
        *,
        settings: Optional[PackageSettings] = None,
        staging_dir: Optional[Union[str, Path]] = None,
        id_generator: Optional[IdGenerator] = None,
        dedup: Optional[DeduplicationStrategy] = None,
    ) -> None:
        self.settings = settings or PackageSettings()
        if store is None:
            store = FileContentStore(staging_dir) if staging_dir is not None else ZipContentStore()
        self.store = store
        self.catalog = ContentCatalog(
            store,
            product_version=self.settings.product_version,
            dedup=dedup if dedup is not None else strategy_for(self.settings.hashing_algorithm),
            id_generator=id_generator,
        )
        self.correlation_id = generate_correlation_id()
        self.log = build_adapter(logger, self.correlation_id)
        self._state = BuildState.INIT

    @property
    def state(self) -> BuildState:
        return self._state

    def _require(self, *states: BuildState) -> None:
        if self._state not in states:
            allowed = ", ".join(state.value for state in states)
            raise PackageStateError(f"build is '{self._state.value}'; expected one of: {allowed}")

    # ------------------------------------------------------------------ roles

    def _process_role(self, role: Role, layout_name: str, token: CancellationToken) -> LayoutDefinition:
        direct = [role_file for role_file in role.files if not role_file.is_link]
        links = [role_file for role_file in role.files if role_file.is_link]
        for role_file in direct + links:
            token.raise_if_cancelled(f"role '{role.name}'")
            self.catalog.add_file_definition(layout_name, role_file.request(), role_file.origin)
        layout = self.catalog.get_layout_definition(layout_name)
        if layout is None:
            raise UnknownLayoutError(layout_name)
        return layout

    def process_roles(self, roles: Sequence[Role]) -> List[LayoutDefinition]:
        """Register a layout per role and add every role's files concurrently.

        Raises:
            DuplicateLayoutError: If two roles share a name.
            CsPackError: The first error raised by any role task.
        """

        self._require(BuildState.INIT, BuildState.ROLE_PROCESSING)
        self._state = BuildState.ROLE_PROCESSING
        pairs = []
        try:
            for role in roles:
                pairs.append((role, self.catalog.add_layout_definition(layout_name_for_role(role.name)).name))
        except Exception:
            self._state = BuildState.FAILED
            raise
        if not pairs:
            return []

        group = CancellationTokenGroup()
        futures: Dict[Future, Role] = {}
        results: Dict[str, LayoutDefinition] = {}
        first_error: Optional[BaseException] = None
        max_workers = max(1, min(self.settings.max_workers, len(pairs)))

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cspack-role") as executor:
            for role, layout_name in pairs:
                future = executor.submit(self._process_role, role, layout_name, group.create_token())
                futures[future] = role
            pending = set(futures)
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    role = futures[future]
                    if future.cancelled():
                        continue
                    try:
                        layout = future.result()
                    except RoleCancelled:
                        self.log.debug("role cancelled", extra={"stage": "build", "role": role.name})
                    except Exception as exc:
                        if first_error is None:
                            first_error = exc
                            self.log.error(
                                "role processing failed",
                                extra={"stage": "build", "role": role.name, "error": str(exc)},
                            )
                            group.cancel_all()
                            for sibling in pending:
                                sibling.cancel()
                    else:
                        results[role.name] = layout
                        self.log.info(
                            "role processed",
                            extra={"stage": "build", "role": role.name, "layout": layout.name},
                        )

        if first_error is not None:
            self._state = BuildState.FAILED
            raise first_error
        return [results[role.name] for role, _ in pairs]

    # ---------------------------------------------------------------- streams

    def _add_store_contents(self, store: str, items: Mapping[str, ContentOrigin]) -> None:
        self._require(BuildState.INIT, BuildState.ROLE_PROCESSING)
        for name, origin in items.items():
            self.catalog.add_content_definition(store, name, origin)

    def add_named_streams(self, streams: Mapping[str, ContentOrigin]) -> None:
        self._add_store_contents(NAMED_STREAMS, streams)

    def add_service_definitions(self, definitions: Mapping[str, ContentOrigin]) -> None:
        self._add_store_contents(SERVICE_DEFINITION, definitions)

    # ---------------------------------------------------------- finalisation

    def write_manifest(self) -> None:
        self._require(BuildState.INIT, BuildState.ROLE_PROCESSING)
        ManifestWriter(self.catalog).write()
        self._state = BuildState.MANIFEST_WRITTEN

    def seal(self, output_path: Union[str, Path]) -> Path:
        """Assemble the archive at ``output_path``; the build is terminal afterwards."""

        self._require(BuildState.MANIFEST_WRITTEN)
        assembler = ArchiveAssembler(
            self.store,
            compression=self.settings.compression,
            keep_staging=self.settings.keep_staging,
        )
        archive = assembler.assemble(output_path)
        self._state = BuildState.SEALED
        return archive

    def build(
        self,
        roles: Iterable[Role],
        output_path: Union[str, Path],
        *,
        named_streams: Optional[Mapping[str, ContentOrigin]] = None,
        service_definitions: Optional[Mapping[str, ContentOrigin]] = None,
    ) -> BuildResult:
        """Run the whole pipeline and return a summary of the sealed package."""

        role_list = list(roles)
        self.log.info(
            "package build started",
            extra={"stage": "build", "archive": str(output_path), "size": len(role_list)},
        )
        layouts = self.process_roles(role_list)
        try:
            if service_definitions:
                self.add_service_definitions(service_definitions)
            if named_streams:
                self.add_named_streams(named_streams)
            self.write_manifest()
            archive = self.seal(output_path)
        except Exception:
            self._state = BuildState.FAILED
            raise
        result = BuildResult(
            archive=archive,
            layouts=tuple(layout.name for layout in layouts),
            contents=len(self.catalog.contents),
            correlation_id=self.correlation_id,
        )
        self.log.info(
            "package build finished",
            extra={"stage": "build", "archive": str(archive), "size": result.contents},
        )
        return result
