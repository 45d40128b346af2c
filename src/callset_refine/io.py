"""
Site sources, population panels and sinks.

This module provides:
- ``SiteSource`` implementations that either buffer a one-shot stream or
  re-open their input for every pass
- In-memory population panels indexed by position
- JSON-lines encoding of sites for the command-line tools
"""

from __future__ import annotations

import json
from collections import defaultdict
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Protocol,
    Tuple,
)

from .variants import PanelRecord, SampleGenotype, Site


class SiteSource(Protocol):
    """A finite, forward-only stream of sites that can be opened once per pass."""

    def open(self) -> Iterator[Site]:
        ...


class PopulationPanel(Protocol):
    """Lookup of panel records that start at a site's position."""

    def records_at(self, site: Site) -> List[PanelRecord]:
        ...


class BufferedSource:
    """Wraps a one-shot iterable and keeps every site it has produced in memory.

    Later passes replay the buffer, continuing from the underlying iterator
    if an earlier pass stopped before the end.
    """

    def __init__(self, sites: Iterable[Site]):
        self._iterator = iter(sites)
        self._buffer: List[Site] = []
        self._exhausted = False

    def __len__(self) -> int:
        return len(self._buffer)

    def open(self) -> Iterator[Site]:
        return self._stream()

    def _stream(self) -> Iterator[Site]:
        index = 0
        while True:
            if index < len(self._buffer):
                yield self._buffer[index]
                index += 1
                continue
            if self._exhausted:
                return
            try:
                site = next(self._iterator)
            except StopIteration:
                self._exhausted = True
                return
            self._buffer.append(site)


class ReopenableSource:
    """Calls ``factory`` for a fresh stream on every pass."""

    def __init__(self, factory: Callable[[], Iterable[Site]]):
        self.factory = factory

    def open(self) -> Iterator[Site]:
        return iter(self.factory())


def _encode_genotype(genotype: SampleGenotype) -> Dict[str, Any]:
    record: Dict[str, Any] = {"sample_id": genotype.sample_id, "ploidy": genotype.ploidy}
    if genotype.log10_likelihoods is not None:
        record["GL"] = list(genotype.log10_likelihoods)
    record["GT"] = list(genotype.alleles) if genotype.alleles is not None else None
    if genotype.quality is not None:
        record["GQ"] = genotype.quality
    if genotype.allele_depths is not None:
        record["AD"] = list(genotype.allele_depths)
    if genotype.attributes:
        record["attributes"] = dict(genotype.attributes)
    return record


def _decode_genotype(record: Dict[str, Any]) -> SampleGenotype:
    if "GL" in record and record["GL"] is not None:
        log10 = tuple(float(v) for v in record["GL"])
    elif "PL" in record and record["PL"] is not None:
        log10 = tuple(-float(v) / 10.0 for v in record["PL"])
    else:
        log10 = None
    gt = record.get("GT")
    ad = record.get("AD")
    return SampleGenotype(
        sample_id=str(record["sample_id"]),
        ploidy=int(record.get("ploidy", 2)),
        log10_likelihoods=log10,
        alleles=tuple(int(a) for a in gt) if gt is not None else None,
        quality=record.get("GQ"),
        allele_depths=tuple(int(d) for d in ad) if ad is not None else None,
        attributes=dict(record.get("attributes", {})),
    )


def site_to_record(site: Site) -> Dict[str, Any]:
    return {
        "contig": site.contig,
        "position": site.position,
        "ref": site.ref,
        "alts": list(site.alts),
        "info": dict(site.info),
        "samples": [_encode_genotype(g) for g in site.genotypes],
    }


def site_from_record(record: Dict[str, Any]) -> Site:
    return Site(
        contig=str(record["contig"]),
        position=int(record["position"]),
        ref=str(record["ref"]),
        alts=tuple(record.get("alts", ())),
        genotypes=tuple(_decode_genotype(g) for g in record.get("samples", ())),
        info=dict(record.get("info", {})),
    )


def panel_record_from_dict(record: Dict[str, Any]) -> PanelRecord:
    return PanelRecord(
        contig=str(record["contig"]),
        position=int(record["position"]),
        ref=str(record["ref"]),
        alts=tuple(record.get("alts", ())),
        info=dict(record.get("info", {})),
        genotypes=tuple(tuple(int(a) for a in gt) for gt in record.get("genotypes", ())),
    )


def _read_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as fh:
        for line_number, raw_line in enumerate(fh, start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON on line {line_number} of {path}: {e}") from e


class JsonLinesSiteSource:
    """Re-openable source reading one JSON site record per line."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Site file not found: {self.path}")

    def open(self) -> Iterator[Site]:
        return (site_from_record(record) for record in _read_jsonl(self.path))


class InMemoryPanel:
    """Population panel records indexed by ``(contig, position)``."""

    def __init__(self, records: Iterable[PanelRecord] = ()):
        self._index: Dict[Tuple[str, int], List[PanelRecord]] = defaultdict(list)
        for record in records:
            self._index[(record.contig, record.position)].append(record)

    def __len__(self) -> int:
        return sum(len(v) for v in self._index.values())

    def records_at(self, site: Site) -> List[PanelRecord]:
        """Panel records starting at the site's position."""
        return list(self._index.get((site.contig, site.position), ()))

    @classmethod
    def from_jsonl(cls, *paths: str | Path) -> "InMemoryPanel":
        records = []
        for path in paths:
            records.extend(panel_record_from_dict(r) for r in _read_jsonl(Path(path)))
        return cls(records)


class ListSink:
    """Collects annotated sites in memory."""

    def __init__(self):
        self.sites: List[Site] = []

    def add(self, site: Site) -> None:
        self.sites.append(site)


class JsonLinesSiteSink:
    """Writes one JSON site record per line."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = None

    def __enter__(self) -> "JsonLinesSiteSink":
        self._fh = open(self.path, "w", encoding="utf-8")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def add(self, site: Site) -> None:
        if self._fh is None:
            self._fh = open(self.path, "w", encoding="utf-8")
        self._fh.write(json.dumps(site_to_record(site)) + "\n")

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
