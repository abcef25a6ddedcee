"""In-memory datasets standing in for sequential files and VSAM clusters.

A DatasetStore belongs to one Runtime and survives across its runs, so a
program can write a file that a later run reads back. Nothing is written
to disk.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from cobol_ast.nodes import AccessMode, FileControlEntry, FileOrganization, OpenMode

logger = logging.getLogger(__name__)


@dataclass
class Dataset:
    """A named record store: a record list, or a key to record map when indexed."""

    name: str
    organization: FileOrganization
    records: List[str] = field(default_factory=list)
    keyed: Dict[str, str] = field(default_factory=dict)

    @property
    def is_indexed(self) -> bool:
        return self.organization == FileOrganization.INDEXED

    def __len__(self) -> int:
        return len(self.keyed) if self.is_indexed else len(self.records)

    def record_at(self, position: int) -> Optional[str]:
        """Record at a 0-based position; indexed datasets iterate in key order."""
        if self.is_indexed:
            keys = sorted(self.keyed)
            return self.keyed[keys[position]] if position < len(keys) else None
        return self.records[position] if position < len(self.records) else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization": self.organization.value.lower(),
            "records": dict(self.keyed) if self.is_indexed else list(self.records),
        }


class DatasetStore:
    """Catalog of datasets owned by one runtime."""

    def __init__(self):
        self._datasets: Dict[str, Dataset] = {}

    def __contains__(self, name: str) -> bool:
        return name.upper() in self._datasets

    def names(self) -> List[str]:
        return sorted(self._datasets)

    def get(self, name: str) -> Optional[Dataset]:
        return self._datasets.get(name.upper())

    def define_sequential(self, name: str, records: Optional[List[str]] = None) -> Dataset:
        dataset = Dataset(name.upper(), FileOrganization.SEQUENTIAL, records=list(records or []))
        self._datasets[dataset.name] = dataset
        return dataset

    def define_indexed(self, name: str, records: Optional[Mapping[str, str]] = None) -> Dataset:
        keyed = {str(key).strip(): value for key, value in (records or {}).items()}
        dataset = Dataset(name.upper(), FileOrganization.INDEXED, keyed=keyed)
        self._datasets[dataset.name] = dataset
        return dataset

    def create(self, name: str, organization: FileOrganization) -> Dataset:
        """Create an empty dataset, replacing any existing one."""
        if organization == FileOrganization.INDEXED:
            return self.define_indexed(name)
        return self.define_sequential(name)

    def delete(self, name: str) -> None:
        self._datasets.pop(name.upper(), None)

    def load(self, config: Mapping[str, Mapping[str, Any]]) -> None:
        """Define datasets from the ``datasets`` section of the configuration.

        Args:
            config: Dataset name to ``{organization: sequential|indexed, records: ...}``

        Raises:
            ValueError: On an unknown organization or mismatched records shape
        """
        for name, settings in config.items():
            organization = str(settings.get("organization", "sequential")).upper()
            records: Union[List[str], Dict[str, str], None] = settings.get("records")
            if organization == FileOrganization.INDEXED.value:
                if records is not None and not isinstance(records, Mapping):
                    raise ValueError(f"Indexed dataset {name} needs a key to record mapping")
                self.define_indexed(name, records)
            elif organization == FileOrganization.SEQUENTIAL.value:
                if records is not None and isinstance(records, Mapping):
                    raise ValueError(f"Sequential dataset {name} needs a list of records")
                self.define_sequential(name, [str(record) for record in (records or [])])
            else:
                raise ValueError(f"Unknown organization '{organization}' for dataset {name}")
            logger.debug(f"Loaded dataset {name} ({organization})")

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: dataset.to_dict() for name, dataset in sorted(self._datasets.items())}


@dataclass
class FileHandle:
    """An open file of the running task."""

    file_name: str
    entry: FileControlEntry
    dataset: Dataset
    mode: OpenMode
    position: int = 0

    @property
    def keyed_access(self) -> bool:
        """Indexed file read by key rather than in key order."""
        return (
            self.dataset.is_indexed
            and self.entry.record_key is not None
            and self.entry.access_mode != AccessMode.SEQUENTIAL
        )
